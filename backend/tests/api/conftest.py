"""
测试配置与 fixtures（API 层）

- 每个用例按需要的配置装配独立的 FastAPI 应用
- 数据库与上游 X API 沿用根 conftest 中的 tmp_path SQLite 与 FakeXProvider
"""
from collections.abc import Callable
from typing import Any

import pytest
from fastapi import FastAPI

from main import create_app

GATE_ALLOWED_IP = "10.0.0.1"
GATE_DENIED_IP = "10.0.0.2"


@pytest.fixture
def make_app(make_settings, build_test_container) -> Callable[..., FastAPI]:
    def _make(**overrides: Any) -> FastAPI:
        settings = make_settings(**overrides)
        return create_app(settings, container=build_test_container(settings))

    return _make


@pytest.fixture
def app(make_app) -> FastAPI:
    return make_app()


@pytest.fixture
def gated_app(make_app) -> FastAPI:
    return make_app(
        ACCESS_GATE_ENABLED=True,
        ACCESS_GATE_IP_ALLOWLIST=[GATE_ALLOWED_IP],
        ACCESS_GATE_PASS_TOKEN_ENABLED=True,
        ACCESS_GATE_PASS_TOKENS=["abc123"],
    )
