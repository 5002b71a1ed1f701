"""
Receipt API endpoints.
Scan a receipt photo for points, or check whether a receipt was already used.
"""

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from rewards_ledger.api.deps import get_intake_guard
from rewards_ledger.core.database import get_db
from rewards_ledger.schemas.receipt import ReceiptCheckResponse, ReceiptScanResponse
from rewards_ledger.services.receipt_intake import ReceiptIntakeGuard

router = APIRouter(prefix="/receipts", tags=["Receipts"])


@router.post("/scan", response_model=ReceiptScanResponse)
async def scan_receipt(
    user_id: str = Form(...),
    image: UploadFile = File(...),
    db: Session = Depends(get_db),
    guard: ReceiptIntakeGuard = Depends(get_intake_guard),
):
    """
    Extract the receipt, reject it if already used, otherwise credit
    floor(total x 5) points to the user.
    """
    content = await image.read()
    return await guard.scan_receipt(
        db,
        user_id,
        content,
        filename=image.filename or "receipt.jpg",
        content_type=image.content_type or "image/jpeg",
    )


@router.get("/check", response_model=ReceiptCheckResponse)
async def check_receipt(
    order_number: str = Query(..., min_length=1),
    order_date: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    guard: ReceiptIntakeGuard = Depends(get_intake_guard),
):
    return await guard.check_receipt(db, order_number, order_date)
