from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import CONFIG_FILENAME, load_project_config
from .context.analyzer import ContextAnalyzer
from .protocol.parser import StreamParser
from .protocol.types import ConversationMessage

TEMPLATE_CONFIG = """# taskloop project config
name = "my-assistant"

[context]
max_tokens = 128000
base_threshold = 0.6
emergency_threshold = 0.8
algorithm = "decision"

[llm.deepseek]
api_key = "${DEEPSEEK_API_KEY}"
api_base = "https://api.deepseek.com/v1"
model = "deepseek-chat"

[session]
provider = "deepseek"
max_turns = 10
""".lstrip()


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def cmd_parse(args) -> int:
    """Parse assistant output, feeding it in chunks as a stream would arrive."""
    text = _read_input(args.file)
    config = load_project_config(Path(args.config_dir))
    parser = StreamParser(config.tool_registry())

    state = parser.new_state()
    size = max(1, args.chunk_size) if args.chunk_size else len(text) or 1
    for start in range(0, len(text), size):
        parser.feed(state, text[start : start + size])
    blocks = parser.finish(state)

    print(json.dumps([b.to_dict() for b in blocks], indent=2))
    return 0


def cmd_analyze(args) -> int:
    """Print the context analysis for a JSON list of messages."""
    try:
        raw = json.loads(_read_input(args.history))
    except json.JSONDecodeError as e:
        print(f"[taskloop] Invalid history JSON: {e}", file=sys.stderr)
        return 1
    if not isinstance(raw, list):
        print("[taskloop] History must be a JSON list of messages", file=sys.stderr)
        return 1

    try:
        history = [ConversationMessage.from_dict(item) for item in raw]
    except ValueError as e:
        print(f"[taskloop] Invalid message in history: {e}", file=sys.stderr)
        return 1
    context = load_project_config(Path(args.config_dir)).context
    analyzer = ContextAnalyzer(context.analyzer_config(), context.estimator())
    analysis = analyzer.analyze(history, args.budget)

    print(
        json.dumps(
            {
                "messages": analysis.message_count,
                "total_cost": analysis.total_cost,
                "utilization_percent": analysis.utilization_percent,
                "needs_compaction": analysis.needs_compaction,
                "strategy": analysis.strategy.label,
            },
            indent=2,
        )
    )
    return 0


def cmd_init(args) -> int:
    target = Path(args.path).resolve()
    target.mkdir(parents=True, exist_ok=True)
    config_path = target / CONFIG_FILENAME
    if config_path.exists() and not args.force:
        print(f"[taskloop] {config_path} already exists (use --force to overwrite)")
        return 1
    config_path.write_text(TEMPLATE_CONFIG, encoding="utf-8")
    print(f"[taskloop] Initialized project at {target}")
    return 0


def cmd_chat(args) -> int:
    """Interactive session against the configured provider."""
    from .session import ConversationSession

    config = load_project_config(Path(args.config_dir))
    session = ConversationSession.from_config(config, provider_name=args.provider)
    max_turns = args.max_turns or config.session.max_turns
    print(f"[taskloop] Session {session.session_id} using {session.llm.config.model}. Ctrl+D to exit.")

    while True:
        try:
            user_input = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return 0
        if not user_input:
            continue
        try:
            result = asyncio.run(session.run(user_input, max_turns=max_turns))
        except RuntimeError as e:
            print(f"[taskloop] {e}", file=sys.stderr)
            continue
        print(f"assistant> {result.answer}")
        if result.compactions:
            print(f"[taskloop] history compacted {result.compactions} time(s)")


def main(argv=None) -> int:
    p = argparse.ArgumentParser(prog="taskloop", description="Streaming tool-call agent loop")
    p.add_argument("-v", "--verbose", action="store_true", help="Log compaction and dispatch details")
    p.add_argument(
        "--config-dir",
        default=".",
        help=f"Directory to start searching for {CONFIG_FILENAME} (default: .)",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("parse", help="Parse assistant output FILE ('-' for stdin) into blocks")
    sp.add_argument("file")
    sp.add_argument(
        "--chunk-size", type=int, default=0, help="Feed N characters at a time (default: whole)"
    )
    sp.set_defaults(func=cmd_parse)

    sa = sub.add_parser("analyze", help="Analyze a JSON message history against a budget")
    sa.add_argument("history")
    sa.add_argument("--budget", type=int, default=None, help="Token budget (default: config)")
    sa.set_defaults(func=cmd_analyze)

    si = sub.add_parser("init", help=f"Write a {CONFIG_FILENAME} template into PATH (default .)")
    si.add_argument("path", nargs="?", default=".")
    si.add_argument("--force", action="store_true")
    si.set_defaults(func=cmd_init)

    sc = sub.add_parser("chat", help="Chat with the configured model and tools")
    sc.add_argument("--provider", default=None, help="[llm.<name>] section or preset")
    sc.add_argument("--max-turns", type=int, default=None)
    sc.set_defaults(func=cmd_chat)

    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
