"""Transactions API: list, edit category, internal-movement detection and reset."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from ..auth import require_api_key
from ..database import get_db, get_sync_db
from ..errors import TransientAIError, StructuralResponseError
from ..schemas import (
    InternalMovementRequest,
    InternalMovementResponse,
    ResetResponse,
    TransactionResponse,
    TransactionUpdate,
)
from ..services.internal_movements import detect_and_flag_internal_movements, reset_internal_movements
from ..transaction_store import list_transactions, update_transaction

router = APIRouter(prefix="/api/transactions", tags=["transactions"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=List[TransactionResponse])
async def get_transactions(
    start: Optional[str] = Query(None, description="ISO datetime, inclusive"),
    end: Optional[str] = Query(None, description="ISO datetime, inclusive"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    tracked_only: bool = False,
    db: AsyncSession = Depends(get_db),
):
    rows = await list_transactions(db, start=start, end=end, limit=limit, only_tracked=tracked_only)
    return [TransactionResponse.model_validate(r) for r in rows]


@router.patch("/{transaction_id}", response_model=TransactionResponse)
async def patch_transaction(transaction_id: str, body: TransactionUpdate, db: AsyncSession = Depends(get_db)):
    tx = await update_transaction(
        db,
        transaction_id,
        category=body.category,
        subcategory=body.subcategory,
        confirmed=body.confirmed,
    )
    if not tx:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return TransactionResponse.model_validate(tx)


@router.post("/internal-movements/detect", response_model=InternalMovementResponse)
def detect_internal_movements(body: Optional[InternalMovementRequest] = None, db: Session = Depends(get_sync_db)):
    """Run pairing over unchecked trackable transactions (optionally one date)."""
    try:
        result = detect_and_flag_internal_movements(db, target_date=body.target_date if body else None)
    except (TransientAIError, StructuralResponseError) as e:
        raise HTTPException(status_code=502, detail=f"Internal-movement detection failed: {e}")
    return InternalMovementResponse(**result)


@router.post("/internal-movements/reset", response_model=ResetResponse)
def reset_movements(body: Optional[InternalMovementRequest] = None, db: Session = Depends(get_sync_db)):
    return ResetResponse(reset=reset_internal_movements(db, target_date=body.target_date if body else None))
