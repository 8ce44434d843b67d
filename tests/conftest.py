from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from marketplace.core.chat_responder import RuleBasedResponder
from marketplace.core.verification import RuleBasedVerifier
from marketplace.errors import ExternalServiceError
from marketplace.main import create_app
from marketplace.schemas import Product
from marketplace.session_store import SessionStore
from marketplace.storage import MemoryStore

VALID_DESCRIPTION = "An image classification model trained on retail shelf photos."


class StubLLMClient:
    """Stands in for LLMClient: returns a canned completion or raises."""

    def __init__(self, reply: str = "", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls = []

    def complete(self, messages, temperature=0.7, max_tokens=800):
        self.calls.append(messages)
        if self.error:
            raise self.error
        return self.reply


def make_product(**overrides) -> Product:
    fields = {
        "id": 1,
        "name": "Shelf Vision",
        "description": VALID_DESCRIPTION,
        "price": 250,
        "category": "computer-vision",
        "tags": ["vision", "retail"],
        "sellerId": 1,
        "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return Product(**fields)


@pytest.fixture
def store():
    return MemoryStore(seed_news=False)


@pytest.fixture
def app(store):
    return create_app(
        store=store,
        sessions=SessionStore(),
        verifier=RuleBasedVerifier(),
        responder=RuleBasedResponder(),
        auto_verify=False,
    )


@pytest.fixture
def make_client(app):
    """Each client keeps its own session cookie, i.e. acts as its own user."""
    def _make():
        return TestClient(app)
    return _make


@pytest.fixture
def register(make_client):
    """Register a user and return (client logged in as them, user json)."""
    def _register(username: str):
        client = make_client()
        response = client.post("/api/register", json={
            "username": username,
            "password": "s3cret-pass",
            "email": f"{username}@aimarket.io",
        })
        assert response.status_code == 201, response.text
        return client, response.json()
    return _register


@pytest.fixture
def llm_unavailable():
    return StubLLMClient(error=ExternalServiceError("Language model service timed out"))


@pytest.fixture
def admin(register, store):
    client, user = register("admin")
    store.update_user(user["id"], {"role": "admin"})
    return client, user
