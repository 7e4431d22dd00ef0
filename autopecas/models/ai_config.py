from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text, func

from autopecas.core.database import Base


class AIConfig(Base):
    __tablename__ = "ai_configs"

    id = Column(Integer, primary_key=True)
    provider = Column(String, nullable=False, default="mock")  # openai / mock
    enabled = Column(Boolean, nullable=False, default=False)
    api_key = Column(String, nullable=True)
    model = Column(String, nullable=True, default="gpt-4o")
    max_tokens = Column(Integer, nullable=True, default=500)
    temperature = Column(Float, nullable=True, default=0.7)
    system_prompt = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
