from __future__ import annotations

from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from autopecas.models.bot_settings import BotSettings
from autopecas.services.intent_router import DEFAULT_WELCOME_MESSAGE

PAYMENT_METHOD_OPTIONS = (
    "PIX",
    "Cartão de Crédito",
    "Cartão de Débito",
    "Dinheiro",
    "Transferência",
    "Boleto",
)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_BUSINESS_HOURS = {
    "monday": {"open": "08:00", "close": "18:00"},
    "tuesday": {"open": "08:00", "close": "18:00"},
    "wednesday": {"open": "08:00", "close": "18:00"},
    "thursday": {"open": "08:00", "close": "18:00"},
    "friday": {"open": "08:00", "close": "18:00"},
    "saturday": {"open": "08:00", "close": "16:00"},
    "sunday": {"open": "closed", "close": "closed"},
}

DEFAULT_COMPANY_INFO = {"name": "AutoPeças Brasil", "address": "", "phone": "", "email": ""}


def get_bot_settings(db: Session) -> Optional[BotSettings]:
    return db.query(BotSettings).order_by(BotSettings.id.asc()).first()


def get_or_create_bot_settings(db: Session) -> BotSettings:
    settings = get_bot_settings(db)
    if settings is None:
        settings = BotSettings(
            welcome_message=DEFAULT_WELCOME_MESSAGE,
            payment_methods_json=list(PAYMENT_METHOD_OPTIONS[:4]),
            business_hours_json={day: dict(hours) for day, hours in DEFAULT_BUSINESS_HOURS.items()},
            company_info_json=dict(DEFAULT_COMPANY_INFO),
            active=True,
        )
        db.add(settings)
        db.commit()
        db.refresh(settings)
    return settings


def serialize_bot_settings(settings: BotSettings) -> dict[str, Any]:
    return {
        "id": settings.id,
        "welcomeMessage": settings.welcome_message,
        "paymentMethods": list(settings.payment_methods_json or []),
        "businessHours": dict(settings.business_hours_json or {}),
        "companyInfo": dict(settings.company_info_json or {}),
        "isActive": bool(settings.active),
    }


def router_settings(settings: Optional[BotSettings]) -> dict[str, Any]:
    """Snapshot imutável passado ao roteador de intenções."""
    if settings is None:
        return {
            "welcome_message": DEFAULT_WELCOME_MESSAGE,
            "payment_methods": list(PAYMENT_METHOD_OPTIONS[:4]),
            "business_hours": dict(DEFAULT_BUSINESS_HOURS),
        }
    return {
        "welcome_message": settings.welcome_message or DEFAULT_WELCOME_MESSAGE,
        "payment_methods": list(settings.payment_methods_json or []),
        "business_hours": dict(settings.business_hours_json or {}),
    }


def _clean_business_hours(value: Mapping[str, Any]) -> dict[str, dict[str, str]]:
    hours: dict[str, dict[str, str]] = {}
    for day in WEEKDAYS:
        entry = value.get(day)
        if entry is None:
            continue
        if isinstance(entry, str):
            entry = {"open": entry, "close": entry}
        if not isinstance(entry, Mapping):
            raise ValueError("Horário inválido")
        hours[day] = {"open": str(entry.get("open") or "closed"), "close": str(entry.get("close") or "closed")}
    return hours


def update_bot_settings(db: Session, settings: BotSettings, data: Mapping[str, Any]) -> BotSettings:
    if data.get("welcome_message") is not None:
        settings.welcome_message = str(data["welcome_message"])
    if data.get("payment_methods") is not None:
        settings.payment_methods_json = [str(item).strip() for item in data["payment_methods"] if str(item).strip()]
    if data.get("business_hours") is not None:
        settings.business_hours_json = _clean_business_hours(data["business_hours"])
    if data.get("company_info") is not None:
        settings.company_info_json = {**(settings.company_info_json or {}), **dict(data["company_info"])}
    if data.get("active") is not None:
        settings.active = bool(data["active"])
    db.add(settings)
    return settings
