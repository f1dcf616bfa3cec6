from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from vanity_core.app import create_app
from vanity_core.config import VanityConfig

HOST = "go.seankhliao.com"
SOURCE = "github.com/seankhliao"


@pytest.fixture
def config() -> VanityConfig:
    return VanityConfig(host=HOST, source=SOURCE)


@pytest.fixture
def client(config: VanityConfig) -> TestClient:
    return TestClient(create_app(config))
