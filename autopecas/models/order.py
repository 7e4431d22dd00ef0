import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from autopecas.core.database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)

    conversation_id = Column(Integer, ForeignKey("conversations.id"), index=True, nullable=True)
    seller_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=True)

    # Identificação do cliente
    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(20), nullable=True)
    delivery_address = Column(Text, nullable=True)

    # cópia desnormalizada: [{product_id, name, quantity, price}]
    items_json = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False, default=list)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)

    payment_method = Column(String(30), nullable=True)
    payment_status = Column(String, nullable=False, default="pending")  # pending / paid / failed
    status = Column(String, nullable=False, default="pending")  # pending / confirmed / finalized / delivered / cancelled
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
