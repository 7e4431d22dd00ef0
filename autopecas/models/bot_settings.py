import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from autopecas.core.database import Base

_JSON = JSONB().with_variant(sa.JSON(), "sqlite")


class BotSettings(Base):
    __tablename__ = "bot_settings"

    id = Column(Integer, primary_key=True)
    welcome_message = Column(Text, nullable=False, default="")
    payment_methods_json = Column(_JSON, nullable=False, default=list)
    business_hours_json = Column(_JSON, nullable=False, default=dict)  # {"monday": {"open": "08:00", "close": "18:00"}}
    company_info_json = Column(_JSON, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
