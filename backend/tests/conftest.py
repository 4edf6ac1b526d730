"""Shared fixtures: in-memory Local Store and a scripted remote authority."""
from datetime import datetime, timedelta
from typing import Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fieldsync.models import Base, PropertyCollection
from fieldsync.services.local_store import LocalStore
from fieldsync.services.mutations import UpdateCollection, queue_item_for
from fieldsync.services.remote_client import Accepted, RemoteSession

BASE_TIME = datetime(2026, 3, 2, 8, 0, 0)


class FakeRemote:
    """Stands in for RemoteAuthorityClient. Outcomes are scripted per reference id."""

    def __init__(self):
        self.calls: List = []
        self.tokens: List = []
        self.script: Dict[str, list] = {}
        self.user = {"id": "agent-1", "email": "agent@prefeitura.example", "role": "field_agent"}
        self.session_error = None
        self.validate_calls = 0
        self.login_error = None
        self.missions: List[dict] = []
        self.forms: List[dict] = []
        self.reference_error = None

    async def apply_mutation(self, mutation, token=None):
        self.calls.append(mutation)
        self.tokens.append(token)
        outcomes = self.script.get(mutation.reference_id)
        outcome = outcomes.pop(0) if outcomes else Accepted()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def validate_session(self, token):
        self.validate_calls += 1
        if self.session_error is not None:
            raise self.session_error
        return dict(self.user)

    async def authenticate(self, username, password):
        if self.login_error is not None:
            raise self.login_error
        return RemoteSession(user=dict(self.user), token=f"token-{username}")

    async def fetch_missions(self, token):
        if self.reference_error is not None:
            raise self.reference_error
        return [dict(row) for row in self.missions]

    async def fetch_forms(self, token):
        if self.reference_error is not None:
            raise self.reference_error
        return [dict(row) for row in self.forms]

    async def ping(self):
        return True

    def called_ids(self):
        return [m.reference_id for m in self.calls]


@pytest.fixture()
def engine():
    test_engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture()
def store(engine):
    return LocalStore(engine)


@pytest.fixture()
def remote():
    return FakeRemote()


def add_collection(store, collection_id, version=1, form_responses=None, minutes=0):
    """Store a collection and queue an update for it, created ``minutes`` after BASE_TIME."""
    store.put(
        PropertyCollection(
            id=collection_id,
            form_responses=form_responses or {"area_m2": 120},
            latitude=-23.55,
            longitude=-46.63,
            version=version,
            sync_status="pending",
        )
    )
    mutation = UpdateCollection(
        reference_id=collection_id,
        version=version,
        changes={"form_responses": dict(form_responses or {"area_m2": 120})},
    )
    return store.enqueue(queue_item_for(mutation, created_at=BASE_TIME + timedelta(minutes=minutes)))
