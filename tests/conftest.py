import os

os.environ.setdefault("DATA_FILE", "")

import pytest
from fastapi.testclient import TestClient

import main
from domain import TokenEngine
from store import StateStore


@pytest.fixture
def engine() -> TokenEngine:
    return TokenEngine(StateStore())


@pytest.fixture
def client(monkeypatch, engine) -> TestClient:
    monkeypatch.setattr(main, "engine", engine)
    return TestClient(main.app)
