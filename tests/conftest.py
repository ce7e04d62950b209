"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any app import so the
module-level engine and settings pick them up.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_requinte.db")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ["WHATSAPP_CONNECT_ON_STARTUP"] = "false"

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from requinte_bot.config import get_settings
get_settings.cache_clear()

from fastapi.testclient import TestClient

from requinte_bot import models  # noqa: F401  registers the messages table
from requinte_bot.errors import TransportError
from requinte_bot.main import app, get_whatsapp
from requinte_bot.storage import Base, SessionLocal, engine


class FakeWhatsApp:
    """Records outbound messages instead of calling the transport."""

    def __init__(self, fail_on_call: int = None):
        self.sent = []
        self.fail_on_call = fail_on_call
        self.connection_state = None
        self.pairing_codes = []

    async def send_text(self, jid: str, text: str) -> dict:
        if self.fail_on_call is not None and len(self.sent) + 1 == self.fail_on_call:
            raise TransportError("send failed")
        self.sent.append((jid, text))
        return {"key": {"remoteJid": jid}}

    def texts(self):
        return [text for _, text in self.sent]

    def handle_connection_update(self, state, status_reason=None):
        self.connection_state = state

    def show_pairing_code(self, code, pairing_code=None, out=None):
        self.pairing_codes.append(code)


@pytest.fixture
def tables():
    """Fresh schema for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(tables):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def whatsapp():
    return FakeWhatsApp()


@pytest.fixture
def client(tables, whatsapp):
    """Test client with the WhatsApp session replaced by a recording fake."""
    app.dependency_overrides[get_whatsapp] = lambda: whatsapp
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def upsert_event(jid: str, text: str = None, from_me: bool = False, **message) -> dict:
    """Evolution API messages.upsert payload with a single text message."""
    content = dict(message)
    if text is not None:
        content["conversation"] = text
    return {
        "event": "messages.upsert",
        "instance": "requinte",
        "data": {
            "key": {"remoteJid": jid, "fromMe": from_me, "id": "ABCDEF"},
            "pushName": "Cliente",
            "message": content,
        },
    }
