from sqlalchemy import Column, DateTime, Integer, String, Text, func

from autopecas.core.database import Base


class AIMessageLog(Base):
    __tablename__ = "ai_message_logs"

    id = Column(Integer, primary_key=True)
    conversation_id = Column(Integer, index=True, nullable=True)
    operation = Column(String, nullable=False)  # generate_response / analyze_intent / recommend_products
    provider = Column(String, nullable=False)
    prompt = Column(Text, nullable=True)
    raw_response = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
