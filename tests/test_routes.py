"""
Tests for the HTTP endpoints.

Tests cover:
- GET / contact counter page
- GET /relatorio latest answers per contact
- POST /webhook/whatsapp end to end
- X-Webhook-Secret check when WEBHOOK_SECRET is set
- Health and metrics endpoints
"""

import pytest
from conftest import upsert_event
from fastapi.testclient import TestClient

from requinte_bot import main
from requinte_bot.conversation import MessageRecord
from requinte_bot.storage import Base, SessionLocal, engine, record_message

ANA = "5511911111111@s.whatsapp.net"
BRUNO = "5521922222222@s.whatsapp.net"


def seed(*records):
    with SessionLocal() as db:
        for record in records:
            record_message(db, record)


def send(client, jid, text):
    response = client.post("/webhook/whatsapp", json=upsert_event(jid, text))
    assert response.status_code == 200
    return response


class TestIndex:
    """Test the status page."""

    def test_empty_store(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert response.text == "🤖 Bot WhatsApp ativo<br>Clientes atendidos: 0"

    def test_counts_distinct_contacts(self, client):
        seed(
            MessageRecord(ANA, "oi", 1),
            MessageRecord(ANA, "1", 2, tipo="1"),
            MessageRecord(BRUNO, "oi", 1),
        )

        response = client.get("/")

        assert response.text.endswith("Clientes atendidos: 2")

    def test_response_includes_request_id_header(self, client):
        response = client.get("/")

        assert "x-request-id" in response.headers


class TestRelatorio:
    """Test the report endpoint."""

    def test_empty_store(self, client):
        response = client.get("/relatorio")

        assert response.status_code == 200
        assert response.json() == []

    def test_latest_answers_per_contact(self, client):
        seed(
            MessageRecord(ANA, "oi", 1),
            MessageRecord(ANA, "2", 2, tipo="2"),
            MessageRecord(ANA, "1", 3, tipo="2", peso="1"),
            MessageRecord(ANA, "batel", 4, tipo="2", peso="1", local="batel"),
            MessageRecord(BRUNO, "oi", 1),
            MessageRecord(BRUNO, "1", 2, tipo="1"),
        )

        response = client.get("/relatorio")

        assert response.json() == [
            {"_id": ANA, "tipo": "2", "peso": "1", "local": "batel"},
            {"_id": BRUNO, "tipo": "1", "peso": None, "local": None},
        ]


class TestWhatsAppWebhook:
    """Test transport events posted to the webhook."""

    def test_event_is_acknowledged(self, client):
        response = send(client, ANA, "oi")

        assert response.json() == {"status": "ok"}

    def test_conversation_through_webhook(self, client, whatsapp):
        for text in ("Oi", "1", "2", "Centro, Curitiba"):
            send(client, ANA, text)

        assert whatsapp.texts()[-1].endswith("- Localização: centro, curitiba")
        assert client.get("/relatorio").json() == [
            {"_id": ANA, "tipo": "1", "peso": "2", "local": "centro, curitiba"}
        ]
        assert client.get("/").text.endswith("Clientes atendidos: 1")

    def test_send_failure_still_acknowledged(self, client, whatsapp):
        whatsapp.fail_on_call = 1

        response = send(client, ANA, "oi")

        assert response.json() == {"status": "ok"}
        assert client.get("/relatorio").json() == []

    def test_connection_event(self, client, whatsapp):
        response = client.post(
            "/webhook/whatsapp",
            json={"event": "connection.update", "instance": "requinte", "data": {"state": "open"}},
        )

        assert response.status_code == 200
        assert whatsapp.connection_state == "open"

    def test_missing_event_name_is_rejected(self, client):
        response = client.post("/webhook/whatsapp", json={"data": {}})

        assert response.status_code == 422

    def test_invalid_json_is_rejected(self, client):
        response = client.post(
            "/webhook/whatsapp",
            content="not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 422


class TestWebhookSecret:
    """Test the shared-secret check on the webhook."""

    @pytest.fixture
    def secret(self, monkeypatch):
        monkeypatch.setattr(main.settings, "WEBHOOK_SECRET", "s3cret")
        return "s3cret"

    def test_missing_header_is_rejected(self, client, whatsapp, secret):
        response = client.post("/webhook/whatsapp", json=upsert_event(ANA, "oi"))

        assert response.status_code == 401
        assert response.json() == {"detail": "invalid webhook secret"}
        assert whatsapp.sent == []
        assert client.get("/").text.endswith("Clientes atendidos: 0")

    def test_wrong_secret_is_rejected(self, client, whatsapp, secret):
        response = client.post(
            "/webhook/whatsapp",
            json=upsert_event(ANA, "oi"),
            headers={"X-Webhook-Secret": "wrong"},
        )

        assert response.status_code == 401
        assert whatsapp.sent == []
        assert client.get("/relatorio").json() == []

    def test_matching_secret_is_accepted(self, client, whatsapp, secret):
        response = client.post(
            "/webhook/whatsapp",
            json=upsert_event(ANA, "oi"),
            headers={"X-Webhook-Secret": secret},
        )

        assert response.status_code == 200
        assert len(whatsapp.sent) == 3
        assert client.get("/").text.endswith("Clientes atendidos: 1")

    def test_no_secret_configured_accepts_any_caller(self, client, whatsapp, monkeypatch):
        monkeypatch.setattr(main.settings, "WEBHOOK_SECRET", "")

        send(client, ANA, "oi")

        assert len(whatsapp.sent) == 3

    def test_rejections_are_counted(self, client, secret):
        client.post("/webhook/whatsapp", json=upsert_event(ANA, "oi"))

        assert 'inbound_messages_total{result="invalid_secret"}' in client.get("/metrics").text

    def test_rejection_is_in_request_log(self, client, secret, caplog):
        client.post("/webhook/whatsapp", json=upsert_event(ANA, "oi"))

        lines = [r for r in caplog.records if r.name == "requinte_bot.requests"]
        assert len(lines) == 1
        assert lines[0].status == 401
        assert lines[0].result == "invalid_secret"
        assert lines[0].event == "messages.upsert"
        assert not hasattr(lines[0], "contact")


class TestHealth:
    """Test probes and metrics."""

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_schema(self, client):
        Base.metadata.drop_all(bind=engine)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_metrics(self, client):
        send(client, ANA, "oi")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "inbound_messages_total" in response.text
        assert "conversation_turns_total" in response.text
        assert "http_requests_total" in response.text


class TestLifespan:
    """Test startup and shutdown of the WhatsApp session."""

    def test_session_is_owned_by_app_state(self, tables):
        with TestClient(main.app):
            assert isinstance(main.app.state.whatsapp, main.WhatsAppSession)

    def test_failed_startup_task_is_logged_on_shutdown(self, tables, monkeypatch, caplog):
        async def failing_start(self):
            raise RuntimeError("pairing crashed")

        monkeypatch.setattr(main.settings, "WHATSAPP_CONNECT_ON_STARTUP", True)
        monkeypatch.setattr(main.WhatsAppSession, "start", failing_start)

        with TestClient(main.app) as client:
            assert client.get("/health/live").status_code == 200

        assert "WhatsApp startup task failed" in caplog.text
        assert "pairing crashed" in caplog.text
