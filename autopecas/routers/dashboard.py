from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.deps import require_role
from autopecas.models.user import User
from autopecas.services.dashboard import dashboard_stats

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
def get_stats(
    _user: User = Depends(require_role(["dev", "administrador", "gerente"])),
    db: Session = Depends(get_db),
):
    return dashboard_stats(db)
