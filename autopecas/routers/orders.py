from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.deps import get_current_user
from autopecas.models.user import User
from autopecas.services.audit import log_action
from autopecas.services.orders import (
    create_order,
    finalize_order,
    get_order,
    list_orders,
    serialize_order,
    update_order_status,
)

router = APIRouter(prefix="/api/orders", tags=["orders"])
logger = logging.getLogger(__name__)


class OrderCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_name: str = Field(..., min_length=1, alias="customerName")
    customer_phone: Optional[str] = Field(None, alias="customerPhone")
    conversation_id: Optional[int] = Field(None, alias="conversationId")
    delivery_address: Optional[str] = Field(None, alias="deliveryAddress")
    items: List[Dict[str, Any]] = Field(..., min_length=1)
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    payment_status: Optional[str] = Field(None, alias="paymentStatus")
    status: str = "confirmed"
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)


def _get_order_or_404(db: Session, order_id: int):
    order = get_order(db, order_id)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pedido não encontrado")
    return order


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", what)
        raise HTTPException(status_code=500, detail="Erro ao salvar pedido") from exc


@router.get("")
def get_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    return [serialize_order(o) for o in list_orders(db, status=status_filter)]


@router.post("", status_code=status.HTTP_201_CREATED)
def post_order(
    payload: OrderCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        order = create_order(
            db,
            seller_id=user.id,
            customer_name=payload.customer_name,
            items=payload.items,
            conversation_id=payload.conversation_id,
            customer_phone=payload.customer_phone,
            delivery_address=payload.delivery_address,
            payment_method=payload.payment_method,
            payment_status=payload.payment_status,
            status=payload.status,
            notes=payload.notes,
        )
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_action(
        db,
        user_id=user.id,
        action="create_order",
        entity_type="order",
        entity_id=order.id,
        meta={"total": str(order.total_amount)},
    )
    _commit(db, "create order")
    db.refresh(order)
    return serialize_order(order)


def _change_status(db: Session, user: User, order_id: int, new_status: str) -> Dict[str, Any]:
    order = _get_order_or_404(db, order_id)
    previous = order.status
    try:
        if new_status == "finalized":
            finalize_order(db, order)
        else:
            update_order_status(db, order, new_status)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_action(
        db,
        user_id=user.id,
        action="order_status",
        entity_type="order",
        entity_id=order.id,
        meta={"from": previous, "to": new_status},
    )
    _commit(db, "update order status")
    db.refresh(order)
    return serialize_order(order)


@router.patch("/{order_id}/finalize")
def patch_finalize(
    order_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _change_status(db, user, order_id, "finalized")


@router.patch("/{order_id}/status")
def patch_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _change_status(db, user, order_id, payload.status.strip().lower())
