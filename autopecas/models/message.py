import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from autopecas.core.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), index=True, nullable=False)

    sender_id = Column(String, nullable=True)  # vazio para cliente, id do usuário ou "bot"
    sender_type = Column(String, nullable=False)  # customer / bot / seller
    content = Column(Text, nullable=False)
    message_type = Column(String, nullable=False, default="text")  # text / product / image

    # cards de produto, anexos etc.
    message_metadata = Column("metadata", JSONB().with_variant(sa.JSON(), "sqlite"), nullable=True)

    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
