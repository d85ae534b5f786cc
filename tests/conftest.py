"""
Shared fixtures: scripted LLM collaborator, in-memory calendar provider and
fresh stores for every test.
"""

import asyncio
import copy
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from voicecal.agent.conflict_manager import ConflictEngine
from voicecal.agent.orchestrator import DialogueCoordinator
from voicecal.agent.schemas import IntentResult
from voicecal.agent.state import ConversationStore
from voicecal.agent.task_cache import TaskReconciliationCache
from voicecal.agent.time_block_planner import FreeSlotFinder
from voicecal.app import create_app
from voicecal.routes import (get_coordinator, get_local_calendar,
                             get_slot_finder, get_task_cache)
from voicecal.state import LocalCalendarProvider


class ScriptedIntentAgent:
    """Returns queued intent results in order; exceptions in the queue are raised."""

    def __init__(self, results=None, summary_text="Summary."):
        self.results: List[Any] = list(results or [])
        self.summary_text = summary_text
        self.calls: List[Any] = []
        self.summary_calls: List[Any] = []

    def queue(self, *results):
        self.results.extend(results)

    async def parse_intent(self, transcript, context):
        self.calls.append((transcript, context))
        item = self.results.pop(0) if self.results else {"intent": "needs_clarification"}
        if isinstance(item, Exception):
            raise item
        if isinstance(item, dict):
            return IntentResult.model_validate(item)
        return item

    async def summarize_conversation(self, messages, existing_summary=None):
        self.summary_calls.append((list(messages), existing_summary))
        return self.summary_text


class SlowIntentAgent(ScriptedIntentAgent):

    async def parse_intent(self, transcript, context):
        await asyncio.sleep(1)
        return await super().parse_intent(transcript, context)


class FakeProvider:
    """Calendar collaborator returning canned raw events."""

    def __init__(self, events=None, fail_create=False, fail_fetch=False):
        self.events: List[Dict[str, Any]] = list(events or [])
        self.created: List[Dict[str, Any]] = []
        self.fail_create = fail_create
        self.fail_fetch = fail_fetch
        self.fetch_windows = []

    async def fetch_events(self, start, end):
        self.fetch_windows.append((start, end))
        if self.fail_fetch:
            raise RuntimeError("calendar unavailable")
        return copy.deepcopy(self.events)

    async def create_event(self, event):
        if self.fail_create:
            raise RuntimeError("insert failed")
        created = dict(event, id=f"evt-{len(self.created) + 1}")
        self.created.append(created)
        return created

    async def delete_event(self, event_id):
        return True


@pytest.fixture
def intent_agent():
    return ScriptedIntentAgent()


@pytest.fixture
def store():
    return ConversationStore()


@pytest.fixture
def engine():
    return ConflictEngine()


@pytest.fixture
def coordinator(store, intent_agent, engine):
    return DialogueCoordinator(store, intent_agent, engine, timeout_seconds=5)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def task_cache():
    return TaskReconciliationCache()


@pytest.fixture
def local_calendar():
    return LocalCalendarProvider()


@pytest.fixture
def client(coordinator, task_cache, local_calendar):
    app = create_app()
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_task_cache] = lambda: task_cache
    app.dependency_overrides[get_local_calendar] = lambda: local_calendar
    app.dependency_overrides[get_slot_finder] = lambda: FreeSlotFinder()
    with TestClient(app) as test_client:
        yield test_client
