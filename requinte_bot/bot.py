"""
Inbound transport event handling.

Runs one conversation turn per messages.upsert event: replies are sent in
order and only then is the new record stored. Transport and storage errors
end the turn; they are logged here and never retried.
"""

import logging
from typing import Callable

from pydantic import ValidationError
from sqlalchemy.orm import Session

from requinte_bot.conversation import Turn, next_turn
from requinte_bot.errors import BotError
from requinte_bot.metrics import record_inbound_outcome, record_turn
from requinte_bot.schemas import ConnectionUpdate, WebhookEvent
from requinte_bot.storage import SessionLocal, find_latest, record_message
from requinte_bot.whatsapp import WhatsAppSession

logger = logging.getLogger(__name__)


async def process_message(whatsapp: WhatsAppSession, db: Session, contact: str, raw_text: str) -> Turn:
    """
    Run one turn for a contact.

    Raises:
        TransportError: a reply could not be sent (nothing is stored)
        StorageError: the latest record could not be loaded or the new
            record could not be stored
    """
    last_record = find_latest(db, contact)
    turn = next_turn(contact, raw_text, last_record)

    for text in turn.messages:
        await whatsapp.send_text(contact, text)

    if turn.record is not None:
        record_message(db, turn.record)

    record_turn(turn.record.step if turn.record is not None else None)
    return turn


async def handle_upsert(
    whatsapp: WhatsAppSession,
    event: WebhookEvent,
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    """Handle a messages.upsert batch. Only its first message is processed."""
    message, dropped = event.upsert_batch()
    if dropped:
        logger.debug(f"Dropping {dropped} additional message(s) from upsert batch")

    if message is None or message.message is None:
        record_inbound_outcome("ignored")
        return

    if message.key.from_me:
        logger.debug("Ignoring message sent by this session")
        record_inbound_outcome("ignored")
        return

    raw_text = message.text
    if raw_text is None:
        logger.debug(f"Ignoring non-text message from {message.key.remote_jid}")
        record_inbound_outcome("ignored")
        return

    contact = message.key.remote_jid
    logger.info(f"📩 Mensagem recebida de {contact}: {raw_text.strip().lower()!r}")

    db = session_factory()
    try:
        await process_message(whatsapp, db, contact, raw_text)
        record_inbound_outcome("processed")
    except BotError as e:
        logger.exception(f"Failed to handle message from {contact}: {e}")
        record_inbound_outcome("error")
    finally:
        db.close()


async def handle_event(
    whatsapp: WhatsAppSession,
    event: WebhookEvent,
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    """Dispatch a transport event by name; unknown events are ignored."""
    name = event.event_name
    data = event.data if isinstance(event.data, dict) else {}

    if name == "messages.upsert":
        await handle_upsert(whatsapp, event, session_factory)

    elif name == "connection.update":
        try:
            update = ConnectionUpdate.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed connection.update: {e.errors()}")
            return
        whatsapp.handle_connection_update(update.state, update.status_reason)

    elif name == "qrcode.updated":
        qr = data.get("qrcode") or {}
        if isinstance(qr, dict) and qr.get("code"):
            whatsapp.show_pairing_code(qr["code"], qr.get("pairingCode"))

    else:
        logger.debug(f"Ignoring transport event {event.event}")
