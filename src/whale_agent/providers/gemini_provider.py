"""Google Gemini ``generateContent`` adapter (plain HTTP)."""

from __future__ import annotations

from typing import Optional

from ..errors import ProviderErrorKind
from .base import HTTPTextProvider, ModelParams


class GeminiProvider(HTTPTextProvider):
    name = "gemini"

    async def complete(self, prompt, params: ModelParams, timeout, *, system: Optional[str] = None) -> str:
        payload: dict = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": params.temperature,
                "maxOutputTokens": params.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        body = await self.post_json(
            f"{self._base_url}/models/{params.model}:generateContent",
            payload,
            params=params,
            timeout=timeout,
            headers={"x-goog-api-key": self._api_key},
        )
        candidates = body.get("candidates") or []
        if not candidates:
            # Blocked prompts come back as 200 with promptFeedback and no candidates
            reason = (body.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise self.error(ProviderErrorKind.BAD_REQUEST, f"response blocked: {reason}", params)
        parts = ((candidates[0].get("content") or {}).get("parts")) or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        return self.require_text(text, params)
