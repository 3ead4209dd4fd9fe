import json
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from flf_coach.core.prompts import FOOD_LOG_ONLY_INSTRUCTIONS
from flf_coach.db.models import Base
from flf_coach.db.session import SessionLocal, configure_database, create_tables
from flf_coach.services import app_state
from flf_coach.services.llm import LLMRequestError, LLMTimeoutError, get_llm_client

MEAL_BREAKDOWN_REPLY = (
    "Nice bowl! Here's a rough breakdown:\n\n"
    "**Kale (2 cups)**: 50-70 calories\n"
    "**Wild rice (1/2 cup)**: 100 calories\n\n"
    "I can't log this for you, but you can add it to your log."
)
FOLLOW_UP_BLOCK = (
    "[FOOD_LOG]\n"
    '{"items":[{"name":"Kale","calories":60,"protein":2,"quantity":"2 cups"},'
    '{"name":"Wild rice","calories":100,"protein":4,"quantity":"1/2 cup"}]}\n'
    "[/FOOD_LOG]"
)
BROKEN_BLOCK_REPLY = "**Kale (2 cups)**: 50-70 calories\n[FOOD_LOG]\n{not json}\n[/FOOD_LOG]"


class FakeScenario(str, Enum):
    OK_TEXT = "OK_TEXT"
    MEAL_BREAKDOWN = "MEAL_BREAKDOWN"
    MEAL_FOLLOW_UP_FAILS = "MEAL_FOLLOW_UP_FAILS"
    MEAL_FOLLOW_UP_GARBAGE = "MEAL_FOLLOW_UP_GARBAGE"
    BLOCK_INCLUDED = "BLOCK_INCLUDED"
    BROKEN_BLOCK = "BROKEN_BLOCK"
    TIMEOUT = "TIMEOUT"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    UNCONFIGURED = "UNCONFIGURED"


class FakeLLMClient:
    def __init__(self, scenario: FakeScenario) -> None:
        self.scenario = scenario
        self.calls: list[dict[str, Any]] = []

    def is_configured(self) -> bool:
        return self.scenario != FakeScenario.UNCONFIGURED

    def complete(self, messages: list[dict[str, Any]], *, max_tokens: int, timeout: float) -> str:
        self.calls.append({"messages": messages, "max_tokens": max_tokens, "timeout": timeout})
        is_follow_up = messages[0]["content"] == FOOD_LOG_ONLY_INSTRUCTIONS
        if self.scenario == FakeScenario.TIMEOUT:
            raise LLMTimeoutError(provider="fake", model="fake", message="simulated timeout")
        if self.scenario == FakeScenario.PROVIDER_ERROR:
            raise LLMRequestError(provider="fake", model="fake", status_code=429, message="Rate limit reached")
        if self.scenario == FakeScenario.OK_TEXT:
            return "You're doing great. Small steps add up."
        if self.scenario == FakeScenario.BLOCK_INCLUDED:
            return f"Here you go.\n\n{FOLLOW_UP_BLOCK}"
        if not is_follow_up:
            return BROKEN_BLOCK_REPLY if self.scenario == FakeScenario.BROKEN_BLOCK else MEAL_BREAKDOWN_REPLY
        if self.scenario == FakeScenario.MEAL_FOLLOW_UP_FAILS:
            raise LLMRequestError(provider="fake", model="fake", status_code=500, message="upstream failure")
        if self.scenario == FakeScenario.MEAL_FOLLOW_UP_GARBAGE:
            return "Sorry, I can't do that."
        return FOLLOW_UP_BLOCK


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "flf_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from flf_coach.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(app_state, "DEFAULT_BACKEND_URL", "")
    monkeypatch.setattr(app_state, "DEFAULT_OPENAI_API_KEY", "")
    monkeypatch.setattr(app_state, "DEFAULT_CHATBOT_CONTEXT", "")
    db = SessionLocal()
    for table in reversed(Base.metadata.sorted_tables):
        db.execute(table.delete())
    db.commit()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_llm_factory() -> Callable[[FakeScenario], FakeLLMClient]:
    def _factory(scenario: FakeScenario) -> FakeLLMClient:
        return FakeLLMClient(scenario=scenario)

    return _factory


@pytest.fixture
def override_llm(app, fake_llm_factory):
    def _override(scenario: FakeScenario) -> FakeLLMClient:
        fake = fake_llm_factory(scenario)
        app.dependency_overrides[get_llm_client] = lambda: fake
        return fake

    return _override


@pytest.fixture
def mock_transport():
    """httpx.MockTransport that records requests and answers with a handler's response."""

    def _build(handler: Callable[[httpx.Request], httpx.Response]):
        seen: list[httpx.Request] = []

        def _handle(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        transport = httpx.MockTransport(_handle)
        transport.requests = seen
        return transport

    return _build


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content.decode("utf-8"))
