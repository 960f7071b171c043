"""
Shared fixtures for the Transition-of-Care test suite.

Persistence runs against a throwaway SQLite file per test; the Gemini
collaborators are replaced by MagicMock clients whose
``aio.models.generate_content`` is an AsyncMock, so tests run fast and offline.
"""

import json
import random
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from transitcare.db.session import make_sessionmaker
from transitcare.engine.composer import GenerativeComposer
from transitcare.engine.escalations import EscalationTaskManager
from transitcare.engine.evaluator import RuleEvaluator
from transitcare.engine.extractors import KeywordSignalExtractor
from transitcare.engine.protocols import ProtocolStoreAccessor
from transitcare.engine.recorder import InteractionRecorder
from transitcare.engine.signals import SignalRecord
from transitcare.engine.tools import ToolDispatcher
from transitcare.engine.turn import TurnHandler


# ─── Fake collaborators ───


def llm_response(text=None, function_calls=None, payload=None):
    """Shape of a google-genai response as read by the engine."""
    if payload is not None:
        text = json.dumps(payload)
    return SimpleNamespace(text=text, function_calls=function_calls)


def function_call(name, **args):
    return SimpleNamespace(name=name, args=args)


def make_llm_client(*responses, side_effect=None):
    """MagicMock Gemini client returning ``responses`` in order (last one repeats)."""
    client = MagicMock()
    if side_effect is not None:
        client.aio.models.generate_content = AsyncMock(side_effect=side_effect)
    elif len(responses) == 1:
        client.aio.models.generate_content = AsyncMock(return_value=responses[0])
    else:
        client.aio.models.generate_content = AsyncMock(side_effect=list(responses))
    return client


class FakeClock:
    def __init__(self, start=None):
        self.current = start or datetime(2026, 3, 1, 9, 0, 0)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


def make_signal(text="", **fields) -> SignalRecord:
    fields.setdefault("confidence", 0.95)
    return SignalRecord(raw_text=text, **fields)


# ─── Fixtures ───


@pytest.fixture
def session_factory(tmp_path):
    return make_sessionmaker(f"sqlite:///{tmp_path / 'transitcare-test.db'}")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def escalations(session_factory, clock):
    return EscalationTaskManager(session_factory, clock=clock)


@pytest.fixture
def recorder(session_factory):
    return InteractionRecorder(session_factory)


@pytest.fixture
def protocols(session_factory):
    return ProtocolStoreAccessor(session_factory)


@pytest.fixture
def composer_client():
    return make_llm_client(llm_response(text="Thanks for checking in. How is your breathing today?"))


@pytest.fixture
def turn_handler(protocols, recorder, escalations, composer_client):
    return TurnHandler(
        protocols=protocols,
        extractor=KeywordSignalExtractor(random.Random(7)),
        evaluator=RuleEvaluator(),
        composer=GenerativeComposer(composer_client, model_name="test-model", timeout=2.0),
        dispatcher=ToolDispatcher(escalations),
        recorder=recorder,
    )


@pytest.fixture
def test_client(monkeypatch, turn_handler, escalations):
    """FastAPI TestClient wired to the per-test database and fake collaborators."""
    from fastapi.testclient import TestClient

    from transitcare import dependencies
    from transitcare.app import app

    monkeypatch.setattr(dependencies, "_turn_handler", turn_handler)
    monkeypatch.setattr(dependencies, "_escalation_manager", escalations)
    with TestClient(app) as client:
        yield client
