from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0002_whatsapp_config"
down_revision = "0001_autopecas_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    json_type = sa.JSON() if bind.dialect.name == "sqlite" else postgresql.JSONB(astext_type=sa.Text())
    op.create_table(
        "whatsapp_config",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("api_key", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("welcome_message", sa.Text(), nullable=True),
        sa.Column("away_message", sa.Text(), nullable=True),
        sa.Column("working_hours_json", json_type, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("bot_json", json_type, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_table("whatsapp_config")
