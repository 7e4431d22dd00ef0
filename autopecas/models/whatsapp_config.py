import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from autopecas.core.database import Base

_JSON = JSONB().with_variant(sa.JSON(), "sqlite")


class WhatsAppConfig(Base):
    __tablename__ = "whatsapp_config"

    id = Column(Integer, primary_key=True)
    api_key = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    welcome_message = Column(Text, nullable=True)
    away_message = Column(Text, nullable=True)
    working_hours_json = Column(_JSON, nullable=False, default=dict)  # {"start": "08:00", "end": "18:00", "days": ["mon", ...]}
    is_active = Column(Boolean, nullable=False, default=True)
    bot_json = Column(_JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
