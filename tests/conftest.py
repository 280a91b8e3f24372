import json
from typing import Optional

import pytest

import salien_bot


class FakeResponse:
    def __init__(self, payload=None, text: Optional[str] = None, status: int = 200):
        self.status = status
        self._text  = text if text is not None else json.dumps(payload)

    async def json(self, content_type=None):
        stripped = self._text.strip()
        if not stripped:
            return None
        return json.loads(stripped)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Replays queued outcomes; an Exception instance is raised, anything else is served."""

    def __init__(self, outcomes: list):
        self.outcomes = list(outcomes)
        self.calls: list = []
        self.closed = False

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "headers": headers})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, FakeResponse):
            return outcome
        return FakeResponse(outcome)

    async def close(self):
        self.closed = True


@pytest.fixture
def make_client():
    def _make(outcomes: list, token: str = "tok", **kwargs) -> salien_bot.SalienClient:
        session = FakeSession(outcomes)
        kwargs.setdefault("retry_delay", 0)
        return salien_bot.SalienClient(session, token, base="https://api.example.com", **kwargs)

    return _make
