from __future__ import annotations

import base64
import json

import httpx
import pytest

from photoverify.config import Settings
from photoverify.errors import MalformedResponse, ProviderError, ProviderNotConfigured, ProviderRateLimited
from photoverify.schemas.verification import ImageInput, PhotoVerificationConfig
from photoverify.services.vision.registry import ProviderRegistry, build_provider

_REPLY = {
    "criteria_results": [
        {"criterion_id": "has_products", "passed": True, "value": True, "confidence": 0.92, "reasoning": "ok"}
    ],
    "overall_assessment": "stocked",
    "overall_confidence": 0.9,
}


def _config() -> PhotoVerificationConfig:
    return PhotoVerificationConfig(
        prompt_text="Is the shelf stocked?",
        criteria=[{"id": "has_products", "label": "Products", "kind": "boolean", "expectedValue": True}],
    )


def _settings(**overrides) -> Settings:
    values = {
        "OPENAI_API_KEY": "sk-test",
        "GEMINI_API_KEY": "g-test",
        "ANTHROPIC_API_KEY": "a-test",
        "_env_file": None,
    }
    values.update(overrides)
    return Settings(**values)


async def test_openai_request_shape_and_usage():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": json.dumps(_REPLY)}}],
                "usage": {"prompt_tokens": 812, "completion_tokens": 64},
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = build_provider("openai", _settings(), client)
        outcome = await provider.analyze(ImageInput(url="https://cdn.example/shelf.jpg"), _config(), "gpt-4o-mini")

    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    body = seen["body"]
    assert body["model"] == "gpt-4o-mini"
    assert body["max_tokens"] == 2000
    assert body["temperature"] == pytest.approx(0.1)
    assert body["response_format"] == {"type": "json_object"}
    image_part = body["messages"][1]["content"][1]
    assert image_part["image_url"]["url"] == "https://cdn.example/shelf.jpg"
    assert outcome.usage.input_tokens == 812
    assert outcome.usage.output_tokens == 64
    assert outcome.analysis.finding("has_products").confidence == pytest.approx(0.92)


async def test_openai_inline_image_becomes_data_url():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": json.dumps(_REPLY)}}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = build_provider("openai", _settings(), client)
        outcome = await provider.analyze(ImageInput(base64="QUJD"), _config(), "gpt-4o")

    url = captured["body"]["messages"][1]["content"][1]["image_url"]["url"]
    assert url == "data:image/jpeg;base64,QUJD"
    # no usage reported -> zeros
    assert outcome.usage.input_tokens == 0
    assert outcome.usage.output_tokens == 0


async def test_gemini_fetches_url_images_and_inlines_them():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.host == "cdn.example":
            return httpx.Response(200, content=b"PNGDATA", headers={"content-type": "image/png"})
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": "```json\n" + json.dumps(_REPLY) + "\n```"}]}}],
                "usageMetadata": {"promptTokenCount": 300, "candidatesTokenCount": 40},
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = build_provider("gemini", _settings(), client)
        outcome = await provider.analyze(
            ImageInput(url="https://cdn.example/shelf.png"), _config(), "gemini-2.0-flash"
        )

    assert len(calls) == 2
    api_call = calls[1]
    assert api_call.url.path == "/v1beta/models/gemini-2.0-flash:generateContent"
    assert api_call.headers["x-goog-api-key"] == "g-test"
    inline = json.loads(api_call.content)["contents"][0]["parts"][1]["inline_data"]
    assert inline["mime_type"] == "image/png"
    assert base64.b64decode(inline["data"]) == b"PNGDATA"
    assert outcome.usage.input_tokens == 300
    assert outcome.usage.output_tokens == 40


async def test_anthropic_url_source_and_usage():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "content": [{"type": "text", "text": json.dumps(_REPLY)}],
                "usage": {"input_tokens": 1500, "output_tokens": 90},
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = build_provider("anthropic", _settings(), client)
        outcome = await provider.analyze(
            ImageInput(url="https://cdn.example/a.jpg"), _config(), "claude-3-5-haiku-latest"
        )

    assert captured["headers"]["x-api-key"] == "a-test"
    assert captured["headers"]["anthropic-version"] == "2023-06-01"
    block = captured["body"]["messages"][0]["content"][0]
    assert block == {"type": "image", "source": {"type": "url", "url": "https://cdn.example/a.jpg"}}
    assert outcome.usage.input_tokens == 1500


async def test_server_error_becomes_provider_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={"error": "busy"}))
    async with httpx.AsyncClient(transport=transport) as client:
        provider = build_provider("openai", _settings(), client)
        with pytest.raises(ProviderError) as exc_info:
            await provider.analyze(ImageInput(base64="QUJD"), _config(), "gpt-4o-mini")
    assert "503" in exc_info.value.message
    assert not isinstance(exc_info.value, MalformedResponse)


async def test_429_becomes_provider_rate_limited():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(429, headers={"retry-after": "7"}, json={})
    )
    async with httpx.AsyncClient(transport=transport) as client:
        provider = build_provider("anthropic", _settings(), client)
        with pytest.raises(ProviderRateLimited) as exc_info:
            await provider.analyze(ImageInput(base64="QUJD"), _config(), "claude-3-5-haiku-latest")
    assert exc_info.value.retry_after_s == 7.0


async def test_transport_error_becomes_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = build_provider("openai", _settings(), client)
        with pytest.raises(ProviderError):
            await provider.analyze(ImageInput(base64="QUJD"), _config(), "gpt-4o-mini")


async def test_prose_reply_is_malformed_and_keeps_usage():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": "Looks great!"}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 3},
            },
        )
    )
    async with httpx.AsyncClient(transport=transport) as client:
        provider = build_provider("openai", _settings(), client)
        with pytest.raises(MalformedResponse) as exc_info:
            await provider.analyze(ImageInput(base64="QUJD"), _config(), "gpt-4o-mini")
    assert exc_info.value.input_tokens == 10
    assert exc_info.value.output_tokens == 3


async def test_registry_builds_each_provider_once_and_rejects_missing_keys():
    async with httpx.AsyncClient() as client:
        registry = ProviderRegistry(_settings(GEMINI_API_KEY=None), client)
        first = await registry.get("openai")
        second = await registry.get("openai")
        assert first is second
        with pytest.raises(ProviderNotConfigured):
            await registry.get("gemini")
        with pytest.raises(ProviderNotConfigured):
            await registry.get("nope")
        assert registry.configured() == ["anthropic", "openai"]
