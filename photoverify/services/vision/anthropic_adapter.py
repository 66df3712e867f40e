from __future__ import annotations

from typing import Any, Dict

from photoverify.schemas.verification import ImageInput, PhotoVerificationConfig
from photoverify.services.vision.base import AnalysisOutcome, TokenUsage
from photoverify.services.vision.http_base import HttpVisionProvider, as_int
from photoverify.services.vision.parsing import parse_analysis
from photoverify.services.vision.prompts import SYSTEM_PROMPT, build_user_prompt

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicVisionProvider(HttpVisionProvider):
    """Anthropic Messages API; accepts URL and base64 image sources."""

    name = "anthropic"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    @staticmethod
    def image_block(image: ImageInput) -> Dict[str, Any]:
        if image.url:
            return {"type": "image", "source": {"type": "url", "url": image.url}}
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": image.mime_type, "data": image.base64},
        }

    def build_payload(
        self, image: ImageInput, config: PhotoVerificationConfig, model: str
    ) -> Dict[str, Any]:
        return {
            "model": model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": SYSTEM_PROMPT,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        self.image_block(image),
                        {"type": "text", "text": build_user_prompt(config)},
                    ],
                }
            ],
        }

    async def analyze(
        self, image: ImageInput, config: PhotoVerificationConfig, model: str
    ) -> AnalysisOutcome:
        data = await self._post_json(
            f"{self.base_url}/v1/messages",
            headers=self._headers(),
            payload=self.build_payload(image, config, model),
        )
        usage_raw = data.get("usage") or {}
        usage = TokenUsage(
            input_tokens=as_int(usage_raw.get("input_tokens")),
            output_tokens=as_int(usage_raw.get("output_tokens")),
        )
        text = "".join(
            str(block.get("text") or "")
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        )
        analysis = parse_analysis(text, provider=self.name, usage=usage)
        return AnalysisOutcome(analysis=analysis, usage=usage, provider=self.name, model=model)
