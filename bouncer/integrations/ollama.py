"""Async client for the Ollama REST API with JSON-constrained output."""

import json
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class OllamaClient:
    """Async HTTP client for Ollama.

    Uses /api/chat with a JSON schema in the ``format`` parameter to
    constrain the reply. The reply is returned as decoded JSON; validating
    it is the caller's job.

    Usage::

        async with OllamaClient(base_url) as client:
            payload = await client.chat_json(
                model="gemma3",
                system="You are a mail classifier.",
                prompt="Classify this email: ...",
                schema={"type": "object", ...},
            )
    """

    def __init__(
        self,
        base_url: str,
        *,
        default_keep_alive: str = "5m",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_keep_alive = default_keep_alive
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
        )

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def chat_json(
        self,
        model: str,
        system: str,
        prompt: str,
        schema: dict[str, Any],
        *,
        temperature: float = 0.1,
        keep_alive: str | None = None,
    ) -> Any:
        """Send one chat turn and decode the JSON reply.

        Args:
            model: Ollama model name (e.g., "gemma3", "llama3.2").
            system: System prompt with the decision rubric.
            prompt: User prompt (the email to classify).
            schema: JSON schema sent as ``format`` to constrain the reply.
            temperature: Sampling temperature. Lower = more deterministic.
            keep_alive: How long to keep the model loaded after this request.

        Returns:
            The decoded JSON value of the assistant message.

        Raises:
            httpx.HTTPStatusError: On non-2xx response from Ollama.
            httpx.TransportError: On connection failures and timeouts.
            ValueError: If the reply is not JSON or lacks a text message.
        """
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "format": schema,
            "stream": False,
            "keep_alive": keep_alive or self._default_keep_alive,
            "options": {
                "temperature": temperature,
            },
        }

        response = await self._client.post("/api/chat", json=payload)
        response.raise_for_status()

        raw = response.json()
        if not isinstance(raw, dict):
            raise ValueError(f"expected a JSON object from /api/chat, got {type(raw).__name__}")
        message = raw.get("message")
        if not isinstance(message, dict):
            raise ValueError("Ollama reply has no message object")
        content = message.get("content")
        if not isinstance(content, str):
            raise ValueError("Ollama reply message has no text content")

        logger.debug(
            "Ollama %s: %d prompt tokens, %d eval tokens, %.1fs total",
            model,
            raw.get("prompt_eval_count", 0),
            raw.get("eval_count", 0),
            raw.get("total_duration", 0) / 1e9,
        )

        return json.loads(content)

    async def list_models(self) -> list[dict]:
        """List models available on the Ollama server."""
        response = await self._client.get("/api/tags")
        response.raise_for_status()
        return response.json().get("models", [])

    async def pick_instruct_model(self) -> str | None:
        """Auto-detect the best instruct/chat model available on the server."""
        models = await self.list_models()
        return pick_instruct_model(models)


def pick_instruct_model(models: list[dict]) -> str | None:
    """Select the best instruct/chat model from a list of Ollama models.

    Prefers models with 'instruct', 'chat', 'qwen', or 'gemma' in the name.
    Falls back to the first available model if none match.

    Args:
        models: List of model dicts from Ollama's /api/tags endpoint.

    Returns:
        Model name string, or None if the list is empty.
    """
    for m in models:
        name = m["name"].lower()
        if "instruct" in name or "chat" in name or "qwen" in name or "gemma" in name:
            return m["name"]
    return models[0]["name"] if models else None
