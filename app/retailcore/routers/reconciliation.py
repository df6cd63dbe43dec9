from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from app.retailcore.core.deps import get_orchestrator
from app.retailcore.db.models import ReconciliationItem
from app.retailcore.db.session import get_db
from app.retailcore.schemas.reconciliation import (
    ReconciliationItemResponse,
    ReconciliationListResponse,
    ReconciliationResolveRequest,
    SweepResponse,
)
from app.retailcore.services.reconciliation import ReconciliationService

router = APIRouter()


def _item_response(item: ReconciliationItem) -> ReconciliationItemResponse:
    return ReconciliationItemResponse(
        id=str(item.id),
        external_reference=item.external_reference,
        reason=item.reason,
        status=item.status,
        amount=item.amount,
        settleable_key=item.settleable_key,
        receipt_number=item.receipt_number,
        detail=item.detail,
        resolution=item.resolution,
        resolution_note=item.resolution_note,
        created_at=item.created_at,
        resolved_at=item.resolved_at,
    )


@router.get("/reconciliation", response_model=ReconciliationListResponse)
def list_items(status: str | None = None, db=Depends(get_db)):
    rows = ReconciliationService(db).list_items(status=status)
    return ReconciliationListResponse(rows=[_item_response(item) for item in rows])


@router.post("/reconciliation/sweep", response_model=SweepResponse)
async def sweep(orchestrator=Depends(get_orchestrator)):
    report = await orchestrator.sweep()
    return SweepResponse(**report.as_dict())


@router.post("/reconciliation/{item_id}/resolve", response_model=ReconciliationItemResponse)
def resolve_item(item_id: UUID, payload: ReconciliationResolveRequest, db=Depends(get_db)):
    item = ReconciliationService(db).resolve(item_id, resolution=payload.resolution, note=payload.note)
    return _item_response(item)
