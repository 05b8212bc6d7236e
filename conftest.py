import json

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from app.deps import get_jobs, get_model, get_store
from app.main import app
from app.repos.record_store import InMemoryRecordStore
from app.repos.redis_jobs import InMemoryJobRepo
from app.schemas.records import ColumnInfo, Record, TableInfo
from app.services.llm import ModelClient

AUTH = {"X-User-Id": "user_1", "X-Organization-Id": "org_1"}
OTHER_AUTH = {"X-User-Id": "user_2", "X-Organization-Id": "org_1"}


class FakeLLM:
    """
    Stands in for the bound chat model.

    Replies are consumed in order; the last one repeats. A reply may be a
    dict (sent as JSON), a raw string, an exception to raise, or a callable
    taking the prompt messages and returning any of those.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def invoke(self, messages):
        self.calls.append(messages)
        if not self.replies:
            raise AssertionError("FakeLLM has no reply configured")

        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if callable(reply):
            reply = reply(messages)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return AIMessage(content=reply)

    def prompt(self, call: int = -1) -> str:
        """Text of the user message of one recorded call."""
        return self.calls[call][-1].content


def field_reply(**values):
    return {"fields": {
        name: {"value": value, "confidence": 0.9, "source_url": None}
        for name, value in values.items()
    }}


@pytest.fixture
def columns():
    return [
        ColumnInfo(name="name", label="Name"),
        ColumnInfo(name="email", label="Email"),
        ColumnInfo(name="company", label="Company"),
        ColumnInfo(name="industry", label="Industry"),
    ]


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def model(llm):
    return ModelClient(llm=llm)


@pytest.fixture
def jobs():
    return InMemoryJobRepo()


@pytest.fixture
def store(columns):
    store = InMemoryRecordStore()
    store.add_table(TableInfo(id="tbl_1", organizationId="org_1", name="Leads", columns=columns))
    store.add_table(TableInfo(id="tbl_other", organizationId="org_2", name="Theirs", columns=columns))
    return store


@pytest.fixture
def seeded_records(store):
    """Ten records of tbl_1 with a name and nothing else."""
    records = [
        Record(id=f"rec_{i}", tableId="tbl_1", organizationId="org_1", name=f"Company {i}")
        for i in range(1, 11)
    ]
    store.insert_records([r.model_dump() for r in records])
    return records


@pytest.fixture
def client(jobs, store, model):
    app.dependency_overrides[get_jobs] = lambda: jobs
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_model] = lambda: model
    yield TestClient(app)
    app.dependency_overrides.clear()
