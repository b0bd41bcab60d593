"""Shared test fixtures for the SARA query service."""

import os
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

# Settings are built at import time and need a connection string
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")

# Ensure sara-service/ is on the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "sara-service"))

from agents.collection_resolver import CollectionResolver  # noqa: E402
from agents.pipeline_agent import PipelineAgent  # noqa: E402

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeLLM:
    """Chat model fake exposing ``invoke(messages)``.

    Replies are consumed in order; the last one repeats. Every call's
    messages are recorded for assertions.
    """

    def __init__(self, *replies: Any, error: Optional[Exception] = None) -> None:
        self.replies = list(replies) or [""]
        self.error = error
        self.calls: List[List[Any]] = []

    def invoke(self, messages: List[Any]) -> Any:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return SimpleNamespace(content=reply)

    @property
    def last_prompt(self) -> str:
        return self.calls[-1][-1].content


class FakeCollection:
    """Records ``aggregate`` calls and returns canned documents."""

    def __init__(self, documents: Optional[List[Dict[str, Any]]] = None,
                 error: Optional[Exception] = None) -> None:
        self.documents = documents or []
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def aggregate(self, pipeline: List[Dict[str, Any]], **kwargs: Any):
        self.calls.append({"pipeline": pipeline, "kwargs": kwargs})
        if self.error is not None:
            raise self.error
        return iter(self.documents)


class FakeDatabase:
    """Subscriptable stand-in for a pymongo ``Database``."""

    def __init__(self, collections: Optional[Dict[str, FakeCollection]] = None, name: str = "sara_test") -> None:
        self.collections = collections or {}
        self.name = name

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def resolver() -> CollectionResolver:
    return CollectionResolver(
        [("constituents", ["constituent", "donor"]), ("addresses", ["address"])],
        "gifts",
    )


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def make_agent(fake_db, resolver):
    """Build a PipelineAgent over the fake database with an optional LLM."""

    def _make(llm: Any = None, db: Optional[FakeDatabase] = None) -> PipelineAgent:
        return PipelineAgent(
            db if db is not None else fake_db,
            llm=llm,
            llm_metadata={"provider": "fake", "model": "fake-model"},
            resolver=resolver,
            schema_text="Collection: gifts\n- giftAmount (string)",
        )

    return _make


@pytest.fixture
def staff_rows() -> List[Dict[str, Any]]:
    return [
        {"Name": "Ana", "Department": "Sales", "Years_of_Experience": 1, "Satisfaction_Score": 2},
        {"Name": "Ben", "Department": "Sales", "Years_of_Experience": 2, "Satisfaction_Score": 4},
        {"Name": "Cy", "Department": "Support", "Years_of_Experience": 3, "Satisfaction_Score": 6},
    ]
