from __future__ import annotations

import re
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from autopecas.ai.service import mask_api_key
from autopecas.models.whatsapp_config import WhatsAppConfig

WORKING_DAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_TEXT_FIELDS = ("phone_number", "company_name", "welcome_message", "away_message")


def get_whatsapp_config(db: Session) -> Optional[WhatsAppConfig]:
    return db.query(WhatsAppConfig).order_by(WhatsAppConfig.id.asc()).first()


def serialize_whatsapp_config(config: Optional[WhatsAppConfig]) -> dict[str, Any]:
    if config is None:
        return {}
    return {
        "id": config.id,
        "apiKey": mask_api_key(config.api_key),
        "hasApiKey": bool(config.api_key),
        "phoneNumber": config.phone_number,
        "companyName": config.company_name,
        "welcomeMessage": config.welcome_message,
        "awayMessage": config.away_message,
        "workingHours": dict(config.working_hours_json or {}),
        "isActive": bool(config.is_active),
        "bot": dict(config.bot_json or {}),
    }


def _clean_working_hours(value: Mapping[str, Any]) -> dict[str, Any]:
    hours: dict[str, Any] = {}
    for key in ("start", "end"):
        text = str(value.get(key) or "").strip()
        if not text:
            continue
        if not _TIME_PATTERN.match(text):
            raise ValueError("Horário inválido, use HH:MM")
        hours[key] = text
    if "start" in hours and "end" in hours and hours["start"] >= hours["end"]:
        raise ValueError("Horário de início deve ser antes do fim")

    days = value.get("days")
    if days is not None:
        cleaned = [str(day).strip().lower()[:3] for day in days if str(day).strip()]
        if any(day not in WORKING_DAYS for day in cleaned):
            raise ValueError("Dia da semana inválido")
        hours["days"] = [day for day in WORKING_DAYS if day in cleaned]
    return hours


def update_whatsapp_config(db: Session, data: Mapping[str, Any]) -> WhatsAppConfig:
    """Cria a configuração no primeiro save; a sessão não é commitada aqui."""
    config = get_whatsapp_config(db)
    if config is None:
        config = WhatsAppConfig(working_hours_json={}, bot_json={}, is_active=True)
        db.add(config)

    if "api_key" in data:
        # chave vazia remove a chave salva
        config.api_key = (data["api_key"] or "").strip() or None
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(config, field, (data[field] or "").strip() or None)
    if data.get("working_hours") is not None:
        config.working_hours_json = _clean_working_hours(data["working_hours"])
    if data.get("is_active") is not None:
        config.is_active = bool(data["is_active"])
    if data.get("bot") is not None:
        config.bot_json = dict(data["bot"])
    return config


def connection_check(config: Optional[WhatsAppConfig]) -> dict[str, Any]:
    # só valida o que está salvo; não há chamada à API do WhatsApp
    if config is None or not config.api_key or not config.phone_number:
        return {"success": False, "message": "Configure a chave da API e o número antes de testar"}
    if not config.is_active:
        return {"success": False, "message": "Integração WhatsApp desativada"}
    return {"success": True, "message": "Teste de conexão bem-sucedido"}
