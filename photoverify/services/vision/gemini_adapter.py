from __future__ import annotations

import base64
from typing import Any, Dict, List, Tuple

import httpx

from photoverify.errors import ProviderError
from photoverify.schemas.verification import ImageInput, PhotoVerificationConfig
from photoverify.services.vision.base import AnalysisOutcome, TokenUsage
from photoverify.services.vision.http_base import HttpVisionProvider, as_int
from photoverify.services.vision.parsing import parse_analysis
from photoverify.services.vision.prompts import SYSTEM_PROMPT, build_user_prompt


class GeminiVisionProvider(HttpVisionProvider):
    """
    Google Gemini generateContent.
    Gemini only takes inline image bytes, so URL images are fetched first.
    """

    name = "gemini"

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}

    async def _inline_image(self, image: ImageInput) -> Tuple[str, str]:
        if image.base64:
            return image.mime_type, image.base64
        try:
            resp = await self._client.get(image.url or "", timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"gemini could not fetch image: {exc.__class__.__name__}", provider=self.name
            ) from exc
        if resp.status_code >= 400:
            raise ProviderError(
                f"gemini could not fetch image: HTTP {resp.status_code}", provider=self.name
            )
        mime = (resp.headers.get("content-type") or "image/jpeg").split(";")[0].strip()
        return mime or "image/jpeg", base64.b64encode(resp.content).decode("ascii")

    async def build_payload(
        self, image: ImageInput, config: PhotoVerificationConfig
    ) -> Dict[str, Any]:
        mime, data = await self._inline_image(image)
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": build_user_prompt(config)},
                        {"inline_data": {"mime_type": mime, "data": data}},
                    ],
                }
            ],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
                "responseMimeType": "application/json",
            },
        }

    @staticmethod
    def _text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return ""
        parts: List[Any] = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict))

    async def analyze(
        self, image: ImageInput, config: PhotoVerificationConfig, model: str
    ) -> AnalysisOutcome:
        payload = await self.build_payload(image, config)
        data = await self._post_json(
            f"{self.base_url}/v1beta/models/{model}:generateContent",
            headers=self._headers(),
            payload=payload,
        )
        meta = data.get("usageMetadata") or {}
        usage = TokenUsage(
            input_tokens=as_int(meta.get("promptTokenCount")),
            output_tokens=as_int(meta.get("candidatesTokenCount")),
        )
        analysis = parse_analysis(self._text(data), provider=self.name, usage=usage)
        return AnalysisOutcome(analysis=analysis, usage=usage, provider=self.name, model=model)
