"""Shared fixtures: scripted completion fakes and an API client."""

import pytest
from fastapi.testclient import TestClient

import llm_client
from llm_client import CompletionResult, StreamFragment
from otp import otp_store


class ScriptedCompletion:
    """Stands in for llm_client.complete, replaying canned replies in order."""

    def __init__(self, replies):
        self.replies = [
            r if isinstance(r, CompletionResult) else CompletionResult(text=r[0], finish_reason=r[1])
            for r in replies
        ]
        self.calls = []

    async def __call__(self, turns, max_tokens, temperature=0.7, model=None):
        self.calls.append({
            "turns": list(turns),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "model": model,
        })
        if len(self.calls) > len(self.replies):
            raise AssertionError("completion called more often than scripted")
        return self.replies[len(self.calls) - 1]

    @property
    def call_count(self) -> int:
        return len(self.calls)


class ScriptedStream:
    """Stands in for llm_client.stream; each chunk is (fragments, finish_reason)."""

    def __init__(self, chunks):
        self.chunks = chunks
        self.calls = []

    async def __call__(self, turns, max_tokens, temperature=0.5, model=None):
        self.calls.append(list(turns))
        fragments, finish_reason = self.chunks[len(self.calls) - 1]
        for text in fragments:
            yield StreamFragment(text=text)
        yield StreamFragment(finish_reason=finish_reason)


@pytest.fixture()
def script_completion(monkeypatch):
    """Patch llm_client.complete with scripted replies; returns the fake."""

    def _install(*replies):
        fake = ScriptedCompletion(replies)
        monkeypatch.setattr(llm_client, "complete", fake)
        return fake

    return _install


@pytest.fixture()
def script_stream(monkeypatch):
    def _install(*chunks):
        fake = ScriptedStream(chunks)
        monkeypatch.setattr(llm_client, "stream", fake)
        return fake

    return _install


@pytest.fixture()
def client():
    from main import app

    return TestClient(app)


@pytest.fixture(autouse=True)
def _clear_otp_store():
    otp_store._entries.clear()
    yield
    otp_store._entries.clear()
