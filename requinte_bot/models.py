"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, Integer, String, Text, func

from requinte_bot.storage import Base


class Message(Base):
    """
    One processed inbound message and the conversation step it produced.

    Table: messages
    Rows are append-only; the newest row per contact (timestamp, then id)
    holds the contact's current step.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # 'from' is a reserved word in Python; the column is still named "from"
    from_jid = Column("from", String, nullable=False, index=True)
    text = Column(Text, nullable=True)
    step = Column(Integer, nullable=False)
    tipo = Column(String, nullable=True)
    peso = Column(String, nullable=True)
    local = Column(Text, nullable=True)
    # Assigned by the database at insert; SQLite's CURRENT_TIMESTAMP has
    # one-second resolution, so id orders records within the same second
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    def __repr__(self) -> str:
        return f"<Message id={self.id} from={self.from_jid} step={self.step}>"
