# tests/conftest.py
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pytest
from starlette.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from photoverify.config import Settings  # noqa: E402
from photoverify.errors import ProviderError  # noqa: E402
from photoverify.main import create_app  # noqa: E402
from photoverify.schemas.verification import ImageInput, PhotoVerificationConfig  # noqa: E402
from photoverify.services.vision.base import (  # noqa: E402
    AnalysisOutcome,
    TokenUsage,
    VisionAnalysis,
)

Step = Union[Dict[str, Any], Exception]


class FakeVisionProvider:
    """Scripted provider: each call pops the next analysis dict or exception."""

    name = "openai"

    def __init__(self, script: List[Step], usage: Optional[TokenUsage] = None) -> None:
        self.script = list(script)
        self.usage = usage or TokenUsage(100, 50)
        self.calls: List[Dict[str, Any]] = []

    async def analyze(
        self, image: ImageInput, config: PhotoVerificationConfig, model: str
    ) -> AnalysisOutcome:
        self.calls.append({"image": image, "config": config, "model": model})
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        return AnalysisOutcome(
            analysis=VisionAnalysis.model_validate(step),
            usage=self.usage,
            provider=self.name,
            model=model,
        )


def analysis(*findings: Dict[str, Any], overall: float = 0.9) -> Dict[str, Any]:
    return {
        "criteria_results": list(findings),
        "overall_assessment": "ok",
        "overall_confidence": overall,
    }


@pytest.fixture()
def make_provider():
    return FakeVisionProvider


@pytest.fixture()
def make_analysis():
    return analysis


@pytest.fixture()
def provider_error():
    def _make(msg: str = "boom", input_tokens: int = 0, output_tokens: int = 0) -> ProviderError:
        return ProviderError(msg, provider="openai", input_tokens=input_tokens, output_tokens=output_tokens)

    return _make


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'photoverify.db'}",
        OPENAI_API_KEY="sk-test",
        RATE_LIMIT_BACKEND="memory",
        RETRY_BACKOFF_BASE_S=0.0,
        LOG_JSON=True,
        _env_file=None,
    )


@pytest.fixture()
def fake_provider(make_provider, make_analysis):
    return make_provider(
        [
            make_analysis(
                {
                    "criterion_id": "has_products",
                    "passed": True,
                    "value": True,
                    "confidence": 0.92,
                    "reasoning": "shelf is stocked",
                },
                overall=0.9,
            )
        ]
    )


@pytest.fixture()
def app(settings, fake_provider):
    return create_app(settings, providers={"openai": fake_provider})


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


def auth_headers(tenant_id: str, role: str = "admin", user_id: str = "u-1") -> Dict[str, str]:
    return {
        "X-Tenant-Id": tenant_id,
        "X-Tenant-Slug": "acme",
        "X-Role": role,
        "X-User-Id": user_id,
    }


@pytest.fixture()
def headers_for():
    return auth_headers


@pytest.fixture()
def tenant(client) -> Dict[str, Any]:
    """A tenant created through the admin API; its id scopes every other call."""
    resp = client.post(
        "/api/tenants",
        json={"name": "Acme Retail", "slug": "acme"},
        headers=auth_headers("bootstrap"),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Minimal asyncio support without requiring pytest-asyncio."""

    test_func = pyfuncitem.obj
    if asyncio.iscoroutinefunction(test_func):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            call_kwargs = {
                name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
            }
            loop.run_until_complete(test_func(**call_kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None
