from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from autopecas.core.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True)

    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(20), index=True, nullable=True)
    customer_avatar = Column(String, nullable=True)

    status = Column(String, nullable=False, default="active")  # active / waiting / resolved / closed

    # sem vendedor atribuído a conversa é atendida pelo bot
    assigned_user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    last_message_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    messages = relationship("Message", back_populates="conversation", order_by="Message.id")
    assigned_user = relationship("User")
