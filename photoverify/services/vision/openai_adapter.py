from __future__ import annotations

from typing import Any, Dict

from photoverify.schemas.verification import ImageInput, PhotoVerificationConfig
from photoverify.services.vision.base import AnalysisOutcome, TokenUsage
from photoverify.services.vision.http_base import HttpVisionProvider, as_int
from photoverify.services.vision.parsing import parse_analysis
from photoverify.services.vision.prompts import SYSTEM_PROMPT, build_user_prompt


class OpenAIVisionProvider(HttpVisionProvider):
    """OpenAI Chat Completions with an image content part."""

    name = "openai"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def image_part(image: ImageInput) -> Dict[str, Any]:
        url = image.url or f"data:{image.mime_type};base64,{image.base64}"
        return {"type": "image_url", "image_url": {"url": url, "detail": "high"}}

    def build_payload(
        self, image: ImageInput, config: PhotoVerificationConfig, model: str
    ) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_user_prompt(config)},
                        self.image_part(image),
                    ],
                },
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }

    async def analyze(
        self, image: ImageInput, config: PhotoVerificationConfig, model: str
    ) -> AnalysisOutcome:
        data = await self._post_json(
            f"{self.base_url}/v1/chat/completions",
            headers=self._headers(),
            payload=self.build_payload(image, config, model),
        )
        usage_raw = data.get("usage") or {}
        usage = TokenUsage(
            input_tokens=as_int(usage_raw.get("prompt_tokens")),
            output_tokens=as_int(usage_raw.get("completion_tokens")),
        )
        text = ""
        choices = data.get("choices") or []
        if choices and isinstance(choices[0], dict):
            text = (choices[0].get("message") or {}).get("content") or ""
        analysis = parse_analysis(text, provider=self.name, usage=usage)
        return AnalysisOutcome(analysis=analysis, usage=usage, provider=self.name, model=model)
