from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.deps import require_permission
from autopecas.models.user import User
from autopecas.services.audit import log_action
from autopecas.services.product_import import import_workbook
from autopecas.services.products import (
    create_product,
    get_product,
    list_products,
    serialize_product,
    soft_delete_product,
    update_product,
)

router = APIRouter(prefix="/api/products", tags=["products"])
logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
EXCEL_EXTENSIONS = (".xlsx", ".xls")


class ProductBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    supplier: Optional[str] = None
    vehicle_model: Optional[str] = Field(None, alias="vehicleModel")
    vehicle_year: Optional[str] = Field(None, alias="vehicleYear")


class ProductCreate(ProductBase):
    name: str = Field(..., min_length=1)
    price: Union[Decimal, str]
    stock: int = Field(0, ge=0)


class ProductUpdate(ProductBase):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[Union[Decimal, str]] = None
    stock: Optional[int] = Field(None, ge=0)
    active: Optional[bool] = Field(None, alias="isActive")


def _get_product_or_404(db: Session, product_id: int):
    product = get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Produto não encontrado")
    return product


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", what)
        raise HTTPException(status_code=500, detail="Erro ao salvar produto") from exc


@router.get("")
def get_products(
    search: Optional[str] = Query(None),
    include_inactive: bool = Query(False, alias="includeInactive"),
    _user: User = Depends(require_permission("viewStock")),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    return [serialize_product(p) for p in list_products(db, search=search, include_inactive=include_inactive)]


@router.post("", status_code=status.HTTP_201_CREATED)
def post_product(
    payload: ProductCreate,
    user: User = Depends(require_permission("editProducts")),
    db: Session = Depends(get_db),
):
    try:
        product = create_product(db, payload.model_dump())
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_action(db, user_id=user.id, action="create_product", entity_type="product", entity_id=product.id)
    _commit(db, "create product")
    db.refresh(product)
    return serialize_product(product)


@router.patch("/{product_id}")
def patch_product(
    product_id: int,
    payload: ProductUpdate,
    user: User = Depends(require_permission("editProducts")),
    db: Session = Depends(get_db),
):
    product = _get_product_or_404(db, product_id)
    try:
        update_product(db, product, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_action(db, user_id=user.id, action="update_product", entity_type="product", entity_id=product.id)
    _commit(db, "update product")
    db.refresh(product)
    return serialize_product(product)


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    user: User = Depends(require_permission("editProducts")),
    db: Session = Depends(get_db),
):
    product = _get_product_or_404(db, product_id)
    soft_delete_product(db, product)
    log_action(db, user_id=user.id, action="delete_product", entity_type="product", entity_id=product.id)
    _commit(db, "delete product")
    return {"ok": True}


@router.post("/upload")
async def upload_products(
    file: UploadFile = File(...),
    remove_duplicates: bool = Form(False, alias="removeDuplicates"),
    user: User = Depends(require_permission("editProducts")),
    db: Session = Depends(get_db),
):
    filename = (file.filename or "").lower()
    if not filename.endswith(EXCEL_EXTENSIONS):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Envie um arquivo Excel (.xlsx)")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Arquivo vazio")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Arquivo muito grande")

    try:
        summary = import_workbook(db, content, remove_duplicates=remove_duplicates)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_action(
        db,
        user_id=user.id,
        action="import_products",
        entity_type="product",
        meta={"filename": file.filename, **summary.to_dict()},
    )
    _commit(db, "import products")
    logger.info("Product import done imported=%s updated=%s", summary.imported, summary.updated)
    return summary.to_dict()
