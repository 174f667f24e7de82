"""LLM Provider - Direct HTTP calls to OpenAI-compatible chat APIs.

Supports DeepSeek, OpenAI and local servers. Responses come back whole
(generate / chat) or as text fragments parsed from server-sent events
(generate_stream / chat_stream).
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional

import httpx
from opentelemetry import trace

from .config import LLMConfig
from .types import LLMResponse

if TYPE_CHECKING:
    from ..config import ProjectConfig

# Get tracer for LLM operation spans
tracer = trace.get_tracer(__name__)


class LLMProvider:
    """Client for one chat completions endpoint."""

    # Pre-configured popular providers
    DEEPSEEK = LLMConfig(
        base_url="https://api.deepseek.com/v1",
        model="deepseek-chat",
        api_key=os.getenv("DEEPSEEK_API_KEY"),
        temperature=0.7,
        max_tokens=4096,
        timeout_ms=30000,
        context_window=64000,
    )

    OPENAI = LLMConfig(
        base_url="https://api.openai.com/v1",
        model="gpt-4o-mini",
        api_key=os.getenv("OPENAI_API_KEY"),
        temperature=0.7,
        max_tokens=4096,
        timeout_ms=30000,
        context_window=128000,
    )

    LOCAL = LLMConfig(
        base_url="http://localhost:8000/v1",
        model="qwen2.5-0.5b-instruct",
        temperature=0.8,
        max_tokens=2048,
        timeout_ms=30000,
        context_window=32000,
    )

    def __init__(self, config: Optional[LLMConfig] = None, session_id: Optional[str] = None):
        """Initialize LLM provider.

        Args:
            config: LLM configuration (defaults to LOCAL)
            session_id: Conversation id recorded on spans
        """
        self.config = config or self.LOCAL
        self.session_id = session_id

    @classmethod
    def from_name(cls, provider_name: str, session_id: Optional[str] = None) -> LLMProvider:
        """Create provider from name.

        Args:
            provider_name: One of "deepseek", "openai", "local"
            session_id: Conversation id recorded on spans

        Returns:
            Configured LLMProvider instance
        """
        configs = {
            "deepseek": cls.DEEPSEEK,
            "openai": cls.OPENAI,
            "local": cls.LOCAL,
        }
        config = configs.get(provider_name.lower())
        if not config:
            raise ValueError(
                f"Unknown provider: {provider_name}. Choose from: {list(configs.keys())}"
            )
        return cls(config, session_id=session_id)

    @classmethod
    def from_config(
        cls,
        provider_name: str,
        project_config: ProjectConfig,
        session_id: Optional[str] = None,
    ) -> LLMProvider:
        """Create provider from a ``[llm.<provider_name>]`` section.

        Falls back to built-in presets if the section is missing.

        Example taskloop.toml:
            [llm.deepseek]
            api_key = "${DEEPSEEK_API_KEY}"
            api_base = "https://api.deepseek.com/v1"
            model = "deepseek-chat"
            max_tokens = 4096
            temperature = 0.7
            timeout_sec = 30
        """
        if provider_name in project_config.llm_providers:
            section = project_config.llm_providers[provider_name]
            logging.info("[taskloop.llm] Loaded provider '%s' from taskloop.toml", provider_name)
            return cls(LLMConfig.from_provider_config(section), session_id=session_id)

        logging.info(
            "[taskloop.llm] Provider '%s' not in taskloop.toml, using built-in preset",
            provider_name,
        )
        return cls.from_name(provider_name, session_id=session_id)

    # ------------------------------------------------------------------
    # Whole responses
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> str:
        """Generate text completion for a single prompt.

        Args:
            prompt: User prompt/input
            system: Optional system prompt
            temperature: Override default temperature
            max_tokens: Override default max tokens
            timeout_ms: Override default timeout

        Returns:
            Generated text

        Raises:
            RuntimeError: If LLM call fails
        """
        messages = self._prompt_messages(prompt, system)
        response = await self._complete(
            "llm.generate",
            messages,
            temperature,
            max_tokens,
            timeout_ms,
            {"llm.prompt.length": len(prompt), "llm.system.length": len(system) if system else 0},
        )
        return response.content

    async def chat(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> str:
        """Chat completion with message history.

        Args:
            messages: List of message dicts with "role" and "content" keys
            temperature: Override default temperature
            max_tokens: Override default max tokens
            timeout_ms: Override default timeout

        Returns:
            Assistant's response text

        Raises:
            RuntimeError: If LLM call fails
        """
        response = await self._complete(
            "llm.chat",
            messages,
            temperature,
            max_tokens,
            timeout_ms,
            {"llm.messages.count": len(messages)},
        )
        return response.content

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def generate_stream(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Stream a completion for a single prompt as text fragments.

        Raises:
            RuntimeError: If LLM call fails
        """
        messages = self._prompt_messages(prompt, system)
        async for fragment in self._stream(
            "llm.generate_stream",
            messages,
            temperature,
            max_tokens,
            timeout_ms,
            {"llm.prompt.length": len(prompt)},
        ):
            yield fragment

    async def chat_stream(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Stream a chat completion as text fragments.

        Raises:
            RuntimeError: If LLM call fails
        """
        async for fragment in self._stream(
            "llm.chat_stream",
            messages,
            temperature,
            max_tokens,
            timeout_ms,
            {"llm.messages.count": len(messages)},
        ):
            yield fragment

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _prompt_messages(prompt: str, system: Optional[str]) -> List[Dict[str, str]]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _request(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float],
        max_tokens: Optional[int],
        stream: bool = False,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature if temperature is not None else self.config.temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    def _span_attributes(self, payload: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
        attributes = {
            "llm.provider": self.config.base_url,
            "llm.model": self.config.model,
            "llm.temperature": payload["temperature"],
            "llm.max_tokens": payload["max_tokens"],
            "session.id": self.session_id or "unknown",
        }
        attributes.update(extra)
        return attributes

    async def _complete(
        self,
        span_name: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float],
        max_tokens: Optional[int],
        timeout_ms: Optional[int],
        attributes: Dict[str, Any],
    ) -> LLMResponse:
        payload = self._request(messages, temperature, max_tokens)
        timeout = (timeout_ms or self.config.timeout_ms) / 1000.0

        with tracer.start_as_current_span(
            span_name, attributes=self._span_attributes(payload, attributes)
        ) as span:
            try:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(
                        self.config.completions_url, json=payload, headers=self.config.headers()
                    )
                    response.raise_for_status()
                    result = response.json()

                llm_response = LLMResponse.from_completion(result)

                # Record success metrics
                span.set_attribute("llm.response.length", len(llm_response.content))
                span.set_attribute("llm.status", "success")
                if llm_response.usage:
                    span.set_attribute(
                        "llm.usage.prompt_tokens", llm_response.usage.get("prompt_tokens", 0)
                    )
                    span.set_attribute(
                        "llm.usage.completion_tokens",
                        llm_response.usage.get("completion_tokens", 0),
                    )
                span.set_status(trace.Status(trace.StatusCode.OK))

                return llm_response

            except httpx.HTTPStatusError as e:
                error_msg = f"LLM HTTP error {e.response.status_code}: {e.response.text}"
                span.set_attribute("llm.status", "error")
                span.set_status(trace.Status(trace.StatusCode.ERROR, error_msg))
                span.record_exception(e)
                raise RuntimeError(error_msg) from e
            except Exception as e:
                span.set_attribute("llm.status", "error")
                span.set_status(trace.Status(trace.StatusCode.ERROR, f"{span_name} failed: {e}"))
                span.record_exception(e)
                raise RuntimeError(f"{span_name} failed: {e}") from e

    async def _stream(
        self,
        span_name: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float],
        max_tokens: Optional[int],
        timeout_ms: Optional[int],
        attributes: Dict[str, Any],
    ) -> AsyncIterator[str]:
        payload = self._request(messages, temperature, max_tokens, stream=True)
        timeout = (timeout_ms or self.config.timeout_ms) / 1000.0

        with tracer.start_as_current_span(
            span_name, attributes=self._span_attributes(payload, attributes)
        ) as span:
            received = 0
            try:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    async with client.stream(
                        "POST",
                        self.config.completions_url,
                        json=payload,
                        headers=self.config.headers(),
                    ) as response:
                        response.raise_for_status()
                        async for line in response.aiter_lines():
                            fragment = parse_sse_line(line)
                            if fragment is _DONE:
                                break
                            if fragment:
                                received += len(fragment)
                                yield fragment

                span.set_attribute("llm.response.length", received)
                span.set_attribute("llm.status", "success")
                span.set_status(trace.Status(trace.StatusCode.OK))

            except httpx.HTTPStatusError as e:
                error_msg = f"LLM HTTP error {e.response.status_code}"
                span.set_attribute("llm.status", "error")
                span.set_status(trace.Status(trace.StatusCode.ERROR, error_msg))
                span.record_exception(e)
                raise RuntimeError(error_msg) from e
            except httpx.HTTPError as e:
                span.set_attribute("llm.status", "error")
                span.set_status(trace.Status(trace.StatusCode.ERROR, f"{span_name} failed: {e}"))
                span.record_exception(e)
                raise RuntimeError(f"{span_name} failed: {e}") from e


_DONE = object()


def parse_sse_line(line: str) -> Any:
    """Text fragment carried by one SSE line.

    Returns the fragment, ``None`` for lines without content (blank,
    comments, malformed JSON, empty deltas) or the end-of-stream sentinel
    for ``data: [DONE]``.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    if data == "[DONE]":
        return _DONE
    try:
        event = json.loads(data)
        return event["choices"][0]["delta"].get("content") or None
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        logging.debug("[taskloop.llm] Skipping malformed SSE line: %s", line[:80])
        return None


__all__ = ["LLMProvider", "LLMConfig", "parse_sse_line"]
