"""Summary: AI provider abstraction, implementations, and cancellation tokens.

Importance: Centralizes LLM access so chat and extraction share transport and cancel handling.
Alternatives: Call provider SDKs directly in each service.
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar

import httpx

from lifeos.config import AppConfig


T = TypeVar("T")


class AiProviderError(RuntimeError):
    """Summary: Raised when an AI provider request fails or returns an unusable payload."""


class TurnCancelled(Exception):
    """Summary: Raised when the user aborts an in-flight AI call.

    Importance: Keeps cancellation distinguishable from genuine failures.
    Alternatives: Return sentinel strings such as an empty response.
    """


class CancellationToken:
    """Summary: Cooperative cancellation signal for one turn.

    Importance: Threads a single abort signal through every suspending AI call.
    Alternatives: Cancel the outer asyncio task and rely on CancelledError.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def check(self) -> None:
        """Summary: Raise TurnCancelled if the token already tripped."""

        if self._event.is_set():
            raise TurnCancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Summary: Await an operation unless the token trips first.

        Importance: A cancelled call never yields a late result to the caller.
        Alternatives: Poll the token after the call completes.
        """

        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise TurnCancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if self._event.is_set():
            await asyncio.gather(task, return_exceptions=True)
            raise TurnCancelled()
        return task.result()


@dataclass(frozen=True)
class AiResult:
    """Summary: Captures AI output and metadata.

    Importance: Normalizes downstream handling of AI responses.
    Alternatives: Use dicts or provider response objects.
    """

    text: str
    latency_ms: int


class AiProvider(ABC):
    """Summary: Abstract interface for free-text and schema-guided generation.

    Importance: Allows switching between local and cloud LLMs without refactors.
    Alternatives: Use a single vendor SDK and accept lock-in risk.
    """

    name = "abstract"
    model = ""

    async def generate_text(
        self, prompt: str, purpose: str, cancel: CancellationToken | None = None
    ) -> AiResult:
        """Summary: Generate a plain-text response for a prompt.

        Importance: Powers the conversational reply and the chat digest.
        Alternatives: Return provider-specific response objects directly.
        """

        return await self._timed(self._generate_text(prompt, purpose), cancel)

    async def generate_json(
        self,
        prompt: str,
        schema: dict[str, Any],
        purpose: str,
        cancel: CancellationToken | None = None,
    ) -> AiResult:
        """Summary: Generate JSON constrained by a response schema.

        Importance: Schema-guided decoding keeps extraction output close to the taxonomy.
        Alternatives: Ask for JSON in the prompt and hope for the best.
        """

        return await self._timed(self._generate_json(prompt, schema, purpose), cancel)

    async def _timed(self, call: Awaitable[str], cancel: CancellationToken | None) -> AiResult:
        started = time.monotonic()
        text = await cancel.run(call) if cancel else await call
        return AiResult(text=text, latency_ms=int((time.monotonic() - started) * 1000))

    @abstractmethod
    async def _generate_text(self, prompt: str, purpose: str) -> str:
        """Summary: Provider-specific text generation."""

    @abstractmethod
    async def _generate_json(self, prompt: str, schema: dict[str, Any], purpose: str) -> str:
        """Summary: Provider-specific structured generation."""


class MockAiProvider(AiProvider):
    """Summary: Deterministic AI provider for local testing.

    Importance: Enables offline workflows and repeatable tests.
    Alternatives: Use a small local LLM for all development tasks.
    """

    name = "mock"
    model = "mock"

    def __init__(self, json_response: str = "[]", text_response: str | None = None) -> None:
        self.json_response = json_response
        self.text_response = text_response
        self.prompts: list[tuple[str, str]] = []

    async def _generate_text(self, prompt: str, purpose: str) -> str:
        self.prompts.append((purpose, prompt))
        if self.text_response is not None:
            return self.text_response
        return f"[mock:{purpose}] {prompt[-240:]}"

    async def _generate_json(self, prompt: str, schema: dict[str, Any], purpose: str) -> str:
        self.prompts.append((purpose, prompt))
        return self.json_response


class _HttpProvider(AiProvider):
    """Summary: Shared HTTP plumbing for JSON-over-HTTP providers."""

    def __init__(self, timeout: float) -> None:
        self._timeout = timeout

    async def _post(
        self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as exc:
            raise AiProviderError(f"{self.name} request failed: {exc}") from exc
        except ValueError as exc:
            raise AiProviderError(f"{self.name} returned invalid JSON: {exc}") from exc


class OllamaProvider(_HttpProvider):
    """Summary: AI provider that targets a local Ollama server.

    Importance: Supports privacy-sensitive workflows on local hardware.
    Alternatives: Use llama.cpp directly with a Python binding.
    """

    name = "ollama"

    def __init__(self, base_url: str, model: str, timeout: float = 60.0) -> None:
        super().__init__(timeout)
        self._base_url = base_url.rstrip("/")
        self.model = model

    async def _generate_text(self, prompt: str, purpose: str) -> str:
        raw = await self._post(
            f"{self._base_url}/api/generate",
            {"model": self.model, "prompt": prompt, "stream": False},
        )
        return raw.get("response", "")

    async def _generate_json(self, prompt: str, schema: dict[str, Any], purpose: str) -> str:
        raw = await self._post(
            f"{self._base_url}/api/generate",
            {"model": self.model, "prompt": prompt, "stream": False, "format": schema},
        )
        return raw.get("response", "")


class OpenAiProvider(_HttpProvider):
    """Summary: AI provider using OpenAI's chat completion API.

    Importance: Enables higher-quality replies and extraction when configured.
    Alternatives: Use other cloud providers or a local model.
    """

    name = "openai"

    def __init__(self, api_key: str, model: str, timeout: float = 60.0) -> None:
        super().__init__(timeout)
        self._api_key = api_key
        self.model = model

    async def _complete(self, prompt: str, purpose: str, extra: dict[str, Any]) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": f"You are LifeOS. Task: {purpose}."},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
            **extra,
        }
        raw = await self._post(
            "https://api.openai.com/v1/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        try:
            return raw["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise AiProviderError(f"openai returned an unexpected payload: {exc}") from exc

    async def _generate_text(self, prompt: str, purpose: str) -> str:
        return await self._complete(prompt, purpose, {})

    async def _generate_json(self, prompt: str, schema: dict[str, Any], purpose: str) -> str:
        # Structured outputs need an object at the top level.
        wrapper = {
            "type": "object",
            "properties": {"items": schema},
            "required": ["items"],
        }
        content = await self._complete(
            prompt,
            purpose,
            {
                "response_format": {
                    "type": "json_schema",
                    "json_schema": {"name": purpose, "schema": wrapper},
                }
            },
        )
        try:
            decoded = json.loads(content)
        except ValueError:
            return content
        if isinstance(decoded, dict) and "items" in decoded:
            return json.dumps(decoded["items"], ensure_ascii=False)
        return content


class GeminiProvider(_HttpProvider):
    """Summary: AI provider using the Gemini generateContent REST API.

    Importance: Supports native JSON-schema constrained responses.
    Alternatives: Use the google-genai SDK.
    """

    name = "gemini"

    def __init__(self, api_key: str, model: str, timeout: float = 60.0) -> None:
        super().__init__(timeout)
        self._api_key = api_key
        self.model = model

    async def _generate(self, prompt: str, generation_config: dict[str, Any] | None) -> str:
        payload: dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if generation_config:
            payload["generationConfig"] = generation_config
        raw = await self._post(
            f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent",
            payload,
            headers={"x-goog-api-key": self._api_key},
        )
        try:
            parts = raw["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AiProviderError(f"gemini returned an unexpected payload: {exc}") from exc
        return "".join(part.get("text", "") for part in parts)

    async def _generate_text(self, prompt: str, purpose: str) -> str:
        return await self._generate(prompt, None)

    async def _generate_json(self, prompt: str, schema: dict[str, Any], purpose: str) -> str:
        return await self._generate(
            prompt, {"responseMimeType": "application/json", "responseJsonSchema": schema}
        )


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Factory for selecting AI providers from configuration.

    Importance: Keeps provider selection logic centralized.
    Alternatives: Wire providers manually at the application entrypoint.
    """

    config: AppConfig

    def build(self) -> AiProvider:
        """Summary: Construct the configured AI provider.

        Importance: Ensures consistent provider selection across services.
        Alternatives: Use dependency injection frameworks.
        """

        timeout = self.config.ai_timeout_seconds
        if self.config.ai_provider == "ollama":
            return OllamaProvider(self.config.ollama_url, self.config.ollama_model, timeout)
        if self.config.ai_provider == "openai":
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for openai provider")
            return OpenAiProvider(self.config.openai_api_key, self.config.openai_model, timeout)
        if self.config.ai_provider == "gemini":
            if not self.config.gemini_api_key:
                raise ValueError("GEMINI_API_KEY is required for gemini provider")
            return GeminiProvider(self.config.gemini_api_key, self.config.gemini_model, timeout)
        return MockAiProvider()


def estimate_tokens(text: str) -> int:
    """Summary: Estimate tokens from text length.

    Importance: Provides a rough metric for AI usage auditing.
    Alternatives: Use provider token counters or tiktoken.
    """

    return max(1, len(text) // 4)
