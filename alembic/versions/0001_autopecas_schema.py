from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect
from sqlalchemy.dialects import postgresql


revision = "0001_autopecas_schema"
down_revision = None
branch_labels = None
depends_on = None


def _json_type(bind):
    if bind.dialect.name == "sqlite":
        return sa.JSON()
    return postgresql.JSONB(astext_type=sa.Text())


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    json_type = _json_type(bind)
    tables = set(inspect(bind).get_table_names())

    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("first_name", sa.String(), nullable=True),
            sa.Column("last_name", sa.String(), nullable=True),
            sa.Column("phone", sa.String(length=30), nullable=True),
            sa.Column("profile_image_url", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=False, server_default="vendedor"),
            sa.Column("permissions_json", json_type, nullable=False),
            sa.Column("password_hash", sa.String(), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("invite_token", sa.String(), nullable=True),
            sa.Column("invite_expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("invite_pending", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("company_name", sa.String(), nullable=True),
            sa.Column("company_address", sa.String(), nullable=True),
            sa.Column("company_description", sa.String(), nullable=True),
            sa.Column("system_name", sa.String(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_users_id", "users", ["id"], unique=False)
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        op.create_index("ix_users_invite_token", "users", ["invite_token"], unique=True)

    if "products" not in tables:
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=100), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("brand", sa.String(length=100), nullable=True),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("supplier", sa.String(length=100), nullable=True),
            sa.Column("vehicle_model", sa.String(length=100), nullable=True),
            sa.Column("vehicle_year", sa.String(length=20), nullable=True),
            sa.Column("price", sa.Numeric(10, 2), nullable=False),
            sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )
        op.create_index("ix_products_code", "products", ["code"], unique=True)
        op.create_index("ix_products_category", "products", ["category"], unique=False)

    if "conversations" not in tables:
        op.create_table(
            "conversations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("customer_name", sa.String(length=255), nullable=False),
            sa.Column("customer_phone", sa.String(length=20), nullable=True),
            sa.Column("customer_avatar", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="active"),
            sa.Column("assigned_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("last_message_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            *_timestamps(),
        )
        op.create_index("ix_conversations_customer_phone", "conversations", ["customer_phone"], unique=False)
        op.create_index("ix_conversations_assigned_user_id", "conversations", ["assigned_user_id"], unique=False)
        op.create_index("ix_conversations_last_message_at", "conversations", ["last_message_at"], unique=False)

    if "messages" not in tables:
        op.create_table(
            "messages",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=False),
            sa.Column("sender_id", sa.String(), nullable=True),
            sa.Column("sender_type", sa.String(), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("message_type", sa.String(), nullable=False, server_default="text"),
            sa.Column("metadata", json_type, nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"], unique=False)
        op.create_index("ix_messages_conversation_created", "messages", ["conversation_id", "created_at"], unique=False)

    if "orders" not in tables:
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=True),
            sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("customer_name", sa.String(length=255), nullable=False),
            sa.Column("customer_phone", sa.String(length=20), nullable=True),
            sa.Column("delivery_address", sa.Text(), nullable=True),
            sa.Column("items_json", json_type, nullable=False),
            sa.Column("total_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("payment_method", sa.String(length=30), nullable=True),
            sa.Column("payment_status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("notes", sa.Text(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_orders_conversation_id", "orders", ["conversation_id"], unique=False)
        op.create_index("ix_orders_seller_id", "orders", ["seller_id"], unique=False)

    if "bot_settings" not in tables:
        op.create_table(
            "bot_settings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("welcome_message", sa.Text(), nullable=False, server_default=""),
            sa.Column("payment_methods_json", json_type, nullable=False),
            sa.Column("business_hours_json", json_type, nullable=False),
            sa.Column("company_info_json", json_type, nullable=False),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )

    if "ai_configs" not in tables:
        op.create_table(
            "ai_configs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(), nullable=False, server_default="mock"),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("api_key", sa.String(), nullable=True),
            sa.Column("model", sa.String(), nullable=True),
            sa.Column("max_tokens", sa.Integer(), nullable=True),
            sa.Column("temperature", sa.Float(), nullable=True),
            sa.Column("system_prompt", sa.Text(), nullable=True),
            *_timestamps(),
        )

    if "ai_message_logs" not in tables:
        op.create_table(
            "ai_message_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("conversation_id", sa.Integer(), nullable=True),
            sa.Column("operation", sa.String(), nullable=False),
            sa.Column("provider", sa.String(), nullable=False),
            sa.Column("prompt", sa.Text(), nullable=True),
            sa.Column("raw_response", sa.Text(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_ai_message_logs_conversation_id", "ai_message_logs", ["conversation_id"], unique=False)

    if "audit_log" not in tables:
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("entity_type", sa.String(), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("meta_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_audit_log_id", "audit_log", ["id"], unique=False)
        op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"], unique=False)

    if "login_attempts" not in tables:
        op.create_table(
            "login_attempts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("first_failed_at", sa.DateTime(), nullable=True),
            sa.Column("last_failed_at", sa.DateTime(), nullable=True),
            sa.Column("locked_until", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_login_attempts_id", "login_attempts", ["id"], unique=False)
        op.create_index("ix_login_attempts_email", "login_attempts", ["email"], unique=True)


def downgrade() -> None:
    for table in (
        "login_attempts",
        "audit_log",
        "ai_message_logs",
        "ai_configs",
        "bot_settings",
        "orders",
        "messages",
        "conversations",
        "products",
        "users",
    ):
        op.drop_table(table)
