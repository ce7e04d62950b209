"""
Intake questionnaire state machine.

The contact's step lives in the newest stored record. Each turn looks at
that record and the inbound text and decides what to say and what (if
anything) to store next. Nothing here talks to WhatsApp or the database.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional


class Step(IntEnum):
    """Conversation progress as stored in the step column."""
    START = 0
    AWAITING_TYPE = 1
    AWAITING_WEIGHT = 2
    AWAITING_LOCATION = 3
    DONE = 4

    @classmethod
    def from_record(cls, record) -> "Step":
        step = getattr(record, "step", None) if record is not None else None
        if not step:
            return cls.START
        if step >= cls.DONE:
            return cls.DONE
        return cls(step)


# =============================================================================
# Outbound texts
# =============================================================================

RESTARTED = "🔄 Atendimento reiniciado!"
WELCOME = (
    "Colchões Requinte, o sono perfeito 🌙\n"
    "Seja bem-vindo, todos nossos produtos estão em promoção!"
)
TYPE_MENU = "Qual sua preferência de Colchão?\n1 - Molas\n2 - Espumas"
INVALID_TYPE = "Por favor, digite 1 ou 2 para escolher o tipo de colchão."
WEIGHT_MENU = (
    "Qual peso do usuário?\n"
    "1 - Até 70 kg\n"
    "2 - De 70 kg a 90 kg\n"
    "3 - Acima de 90 kg"
)
INVALID_WEIGHT = "Por favor, digite 1, 2 ou 3 para informar o peso."
LOCATION_PROMPT = "Qual seu bairro e sua cidade?"
RESTART_HINT = "🤖 Digite 'Oi' ou 'Menu' para reiniciar o atendimento."
CONFIRMATION = (
    "✅ Obrigado! Recebemos seus dados:\n"
    "- Tipo de colchão: {tipo}\n"
    "- Peso: {peso}\n"
    "- Localização: {local}"
)

RECOMMENDATIONS = {
    "1": "Indicados para até 70 kg",
    "2": "Indicados para 70-90 kg",
    "3": "Acima de 90 kg indicado Ajax 90 ou qualquer linha de molas da promoção",
}

RESET_COMMANDS = frozenset({"oi", "menu"})
TYPE_OPTIONS = frozenset({"1", "2"})


@dataclass(frozen=True)
class MessageRecord:
    """A record to append for the contact after the turn's messages are sent."""
    from_jid: str
    text: str
    step: int
    tipo: Optional[str] = None
    peso: Optional[str] = None
    local: Optional[str] = None


@dataclass(frozen=True)
class Turn:
    """Result of one conversation turn."""
    messages: list[str] = field(default_factory=list)
    record: Optional[MessageRecord] = None


def normalize(raw_text: Optional[str]) -> str:
    return (raw_text or "").strip().lower()


def next_turn(contact_id: str, raw_text: Optional[str], last_record=None) -> Turn:
    """
    Compute the replies and the record to store for one inbound text.

    Args:
        contact_id: remote JID of the contact
        raw_text: inbound text as received
        last_record: the contact's newest stored record (None for new contacts)

    Returns:
        Turn with the ordered outbound messages and the record to append,
        or record=None when the step must not advance.
    """
    text = normalize(raw_text)

    if text in RESET_COMMANDS:
        return Turn(
            messages=[RESTARTED, WELCOME, TYPE_MENU],
            record=MessageRecord(contact_id, text, Step.AWAITING_TYPE),
        )

    step = Step.from_record(last_record)

    if step == Step.START:
        return Turn(
            messages=[WELCOME, TYPE_MENU],
            record=MessageRecord(contact_id, text, Step.AWAITING_TYPE),
        )

    if step == Step.AWAITING_TYPE:
        if text not in TYPE_OPTIONS:
            return Turn(messages=[INVALID_TYPE])
        return Turn(
            messages=[WEIGHT_MENU],
            record=MessageRecord(contact_id, text, Step.AWAITING_WEIGHT, tipo=text),
        )

    if step == Step.AWAITING_WEIGHT:
        if text not in RECOMMENDATIONS:
            return Turn(messages=[INVALID_WEIGHT])
        return Turn(
            messages=[RECOMMENDATIONS[text], LOCATION_PROMPT],
            record=MessageRecord(
                contact_id, text, Step.AWAITING_LOCATION,
                tipo=last_record.tipo, peso=text,
            ),
        )

    if step == Step.AWAITING_LOCATION:
        confirmation = CONFIRMATION.format(
            tipo=last_record.tipo, peso=last_record.peso, local=text
        )
        return Turn(
            messages=[confirmation],
            record=MessageRecord(
                contact_id, text, Step.DONE,
                tipo=last_record.tipo, peso=last_record.peso, local=text,
            ),
        )

    return Turn(messages=[RESTART_HINT])
