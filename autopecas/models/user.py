import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB

from autopecas.core.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String(30), nullable=True)
    profile_image_url = Column(String, nullable=True)

    role = Column(String, nullable=False, default="vendedor")  # dev | administrador | gerente | vendedor
    permissions_json = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False, default=dict)
    password_hash = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    # convite (pendente -> ativo)
    invite_token = Column(String, unique=True, index=True, nullable=True)
    invite_expires_at = Column(DateTime(timezone=True), nullable=True)
    invite_pending = Column(Boolean, nullable=False, default=False)

    # perfil da empresa exibido no painel
    company_name = Column(String, nullable=True)
    company_address = Column(String, nullable=True)
    company_description = Column(String, nullable=True)
    system_name = Column(String, nullable=True, default="Sistema de Vendas WhatsApp - Autopeças Brasil")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()
