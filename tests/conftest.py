"""Shared fixtures: an in-process provider and item builders."""

from datetime import datetime

import pytest

from history_insights.analysis.schemas import CHUNK_SCHEMA
from history_insights.exceptions import ProviderUnavailableError
from history_insights.history.models import HistoryItem
from history_insights.llm.base import (
    BaseProvider,
    ProviderCapabilities,
    ProviderStatus,
    ProviderType,
)
from history_insights.memory.storage import InMemoryStorage
from history_insights.memory.store import ProfileMemoryStore


class FakeProvider(BaseProvider):
    """Answers from canned replies, keyed by the kind of prompt.

    A reply may be a string, an exception to raise, a callable taking the
    prompt text, or a list of any of those consumed one per call.
    ``None`` behaves like an unreachable backend.
    """

    provider_type = ProviderType.OLLAMA
    display_name = "Fake"

    def __init__(self, chunking=None, analysis=None, merge=None, capabilities=None):
        super().__init__()
        self.replies = {"chunking": chunking, "analysis": analysis, "merge": merge}
        self.capabilities = capabilities or ProviderCapabilities(8192, 6000, False)
        self.calls = []
        self.system_prompts = []

    async def initialize(self, system_prompt=None):
        self.system_prompt = system_prompt
        self.system_prompts.append(system_prompt)

    async def prompt(self, text, response_schema=None, cancel_token=None):
        if response_schema == CHUNK_SCHEMA:
            kind = "chunking"
        elif text.startswith("Merge the new"):
            kind = "merge"
        else:
            kind = "analysis"
        self.calls.append((kind, text))

        reply = self.replies[kind]
        if isinstance(reply, list):
            reply = reply.pop(0) if reply else None
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(text)
        if reply is None:
            raise ProviderUnavailableError("Fake provider has no answer")
        return reply

    async def get_status(self):
        return ProviderStatus.AVAILABLE

    def get_capabilities(self):
        return self.capabilities

    def count(self, kind):
        return sum(1 for k, _ in self.calls if k == kind)


def ms(*args):
    """Local wall-clock time as epoch milliseconds."""
    return datetime(*args).timestamp() * 1000


def item(n, when, url=None, title=None):
    return HistoryItem(
        id=str(n),
        url=url or f"https://example.com/page/{n}",
        title=title or f"Page {n}",
        last_visit_time=when,
        visit_count=1,
    )


@pytest.fixture
def memory_store():
    return ProfileMemoryStore(InMemoryStorage())
