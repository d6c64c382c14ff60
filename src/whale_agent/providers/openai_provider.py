"""OpenAI chat-completions adapter (plain HTTP)."""

from __future__ import annotations

from typing import Optional

from ..errors import ProviderErrorKind
from .base import HTTPTextProvider, ModelParams


class OpenAIProvider(HTTPTextProvider):
    name = "openai"

    async def complete(self, prompt, params: ModelParams, timeout, *, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload = {
            "model": params.model,
            "messages": messages,
            "max_tokens": params.max_output_tokens,
            "temperature": params.temperature,
            "response_format": {"type": "json_object"},
        }
        body = await self.post_json(
            f"{self._base_url}/chat/completions",
            payload,
            params=params,
            timeout=timeout,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        try:
            text = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise self.error(ProviderErrorKind.SERVER_ERROR, "response has no choices", params) from exc
        return self.require_text(text, params)
