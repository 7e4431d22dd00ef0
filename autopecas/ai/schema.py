from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

IntentName = Literal[
    "greeting",
    "product_search",
    "price_inquiry",
    "order",
    "complaint",
    "general_info",
    "transfer_request",
]
INTENT_NAMES = (
    "greeting",
    "product_search",
    "price_inquiry",
    "order",
    "complaint",
    "general_info",
    "transfer_request",
)


class ExtractedInfo(BaseModel):
    # LLM costuma mandar o ano como número
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    product_name: Optional[str] = Field(None, alias="productName")
    vehicle_brand: Optional[str] = Field(None, alias="vehicleBrand")
    vehicle_model: Optional[str] = Field(None, alias="vehicleModel")
    vehicle_year: Optional[str] = Field(None, alias="vehicleYear")


class IntentAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intent: IntentName
    confidence: float = Field(..., ge=0.0, le=1.0)
    extracted_info: ExtractedInfo = Field(default_factory=ExtractedInfo, alias="extractedInfo")


class VehicleInfo(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    brand: str = ""
    model: str = ""
    year: str = ""


class HistoryEntry(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_name: Optional[str] = Field(None, alias="customerName")
    history: List[HistoryEntry] = Field(default_factory=list, alias="conversationHistory")
    current_products: List[dict[str, Any]] = Field(default_factory=list, alias="currentProducts")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    reason: str


LLMResult = Union[Ok[T], Err]
