"""Pydantic schemas for receipt intake."""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class RawExtraction(BaseModel):
    """Fields read off a receipt image by the OCR backend."""
    order_number: str = Field(..., min_length=1, description="Order number printed on the receipt")
    order_total: Decimal = Field(..., ge=0, description="Order total in dollars")
    order_date: str = Field(..., min_length=1, description="Order date as printed")


class ReceiptScanResponse(BaseModel):
    """Outcome of a successful scan."""
    success: bool = True
    order_number: str
    order_total: float
    order_date: str = Field(..., description="Normalized MM/DD date")
    points_awarded: int = Field(..., ge=0)
    new_points_balance: int
    new_lifetime_points: int


class ReceiptCheckResponse(BaseModel):
    """Whether a receipt key has already been used."""
    receipt_key: str
    order_number: str
    order_date: str
    already_used: bool
