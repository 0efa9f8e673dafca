"""Shared fixtures: a scripted model provider and an app wired to fresh services."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from mediai_chat.api.app import app
from mediai_chat.api.dependencies import get_analysis_engine, get_repository, get_request_queue
from mediai_chat.api.rate_limiter import RateLimiter
from mediai_chat.api.request_queue import RequestQueue
from mediai_chat.repositories.memory import InMemoryRepository
from mediai_chat.services.analysis import SymptomAnalysisEngine
from mediai_chat.services.providers import ChatTurn, SymptomAnalysisProvider

HEADACHE_ANALYSIS: Dict[str, Any] = {
    "urgency": "moderate",
    "conditions": [
        {
            "name": "Sinusitis",
            "likelihood": "High",
            "explanation": "Pain worse when bending over suggests sinus pressure.",
        },
        {"name": "Tension headache", "likelihood": "Moderate"},
    ],
    "suggestions": [
        {"text": "Stay hydrated and rest", "isWarning": False},
        {
            "text": "Seek urgent care if you develop a stiff neck or high fever",
            "isWarning": True,
            "reasoning": "These can indicate a more serious infection.",
        },
    ],
    "message": "Your symptoms are most consistent with sinus congestion.",
    "followUpQuestion": "Do you have a fever or nasal congestion?",
}


class ScriptedProvider(SymptomAnalysisProvider):
    """Returns queued responses in order; the last one repeats.

    A queued exception is raised instead of returned.
    """

    name = "scripted"

    def __init__(self, *responses: Any, delay: float = 0.0) -> None:
        self.responses: List[Any] = list(responses) or [json.dumps(HEADACHE_ANALYSIS)]
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def complete(
        self, system_prompt: str, turns: List[ChatTurn], temperature: float
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "turns": [dict(t) for t in turns],
                "temperature": temperature,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        return response


class RecordingEngine(SymptomAnalysisEngine):
    """Engine that remembers the arguments of every analyze() call."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.calls: List[Dict[str, Any]] = []

    async def analyze(
        self,
        symptom_text: str,
        history: Sequence[ChatTurn],
        profile_context: Optional[str] = None,
    ):
        self.calls.append(
            {
                "symptom_text": symptom_text,
                "history": [dict(t) for t in history],
                "profile_context": profile_context,
            }
        )
        return await super().analyze(symptom_text, history, profile_context)


@pytest.fixture
def headache_analysis() -> Dict[str, Any]:
    return json.loads(json.dumps(HEADACHE_ANALYSIS))


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def engine(provider: ScriptedProvider) -> RecordingEngine:
    return RecordingEngine(provider, temperature=0.2, timeout=5.0)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def request_queue() -> RequestQueue:
    return RequestQueue(max_concurrent=10, queue_timeout=5.0)


@pytest_asyncio.fixture
async def client(repository, engine, request_queue):
    """HTTP client against the app with fresh services injected."""
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_analysis_engine] = lambda: engine
    app.dependency_overrides[get_request_queue] = lambda: request_queue
    app.state.rate_limiter = RateLimiter(rate_limit=1000, time_window=60)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client
    app.dependency_overrides.clear()


async def register(
    client: AsyncClient, email: str = "alice@example.com", password: str = "correct-horse"
) -> Dict[str, Any]:
    response = await client.post(
        "/api/register",
        json={
            "email": email,
            "password": password,
            "firstName": "Alice",
            "lastName": "Doe",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest_asyncio.fixture
async def user(client) -> Dict[str, Any]:
    """A registered user; the client carries their session cookie."""
    return await register(client)
