"""
Manual work orders: submit, claim, complete, cancel and bulk transitions.
"""
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
from sqlalchemy.orm import Session

from orderdesk.api.deps import get_current_actor, get_notifier, get_session_factory, get_storage
from orderdesk.db.session import get_db
from orderdesk.schemas.bulk import BulkResult
from orderdesk.schemas.work_orders import (
    BulkTransitionRequest,
    CancelWorkOrderRequest,
    CompleteWorkOrderRequest,
    SubmitWorkOrderRequest,
    SubmitWorkOrderResponse,
    WorkOrderOut,
)
from orderdesk.services.bulk import SessionFactory
from orderdesk.services.notifications.service import NotificationSink
from orderdesk.services.work_orders.service import WorkOrderQueue
from orderdesk.storage.base import Storage

router = APIRouter(prefix="/work-orders", tags=["work-orders"])


def get_queue(
    db: Session = Depends(get_db),
    storage: Storage = Depends(get_storage),
    notifier: NotificationSink = Depends(get_notifier),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> WorkOrderQueue:
    return WorkOrderQueue(db, storage=storage, notifier=notifier, session_factory=session_factory)


@router.post("", response_model=SubmitWorkOrderResponse, status_code=201)
def submit_work_order(
    payload: SubmitWorkOrderRequest,
    queue: WorkOrderQueue = Depends(get_queue),
    actor_id: str = Depends(get_current_actor),
):
    orders = queue.submit(payload.team_id, actor_id, payload.items, payload.attributes)
    unit_price = orders[0].price
    return SubmitWorkOrderResponse(
        order_ids=[o.id for o in orders],
        unit_price=unit_price,
        total_price=unit_price * len(orders),
    )


@router.get("", response_model=list[WorkOrderOut])
def list_work_orders(
    queue: WorkOrderQueue = Depends(get_queue),
    actor_id: str = Depends(get_current_actor),
    team_id: str | None = None,
    status: str | None = None,
    assignee_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return queue.list_orders(team_id=team_id, status=status, assignee_id=assignee_id, limit=limit, offset=offset)


@router.post("/bulk", response_model=BulkResult)
def bulk_transition(
    payload: BulkTransitionRequest,
    queue: WorkOrderQueue = Depends(get_queue),
    actor_id: str = Depends(get_current_actor),
):
    return queue.bulk_transition(
        payload.order_ids,
        payload.op,
        actor_id=actor_id,
        reason=payload.reason,
        artifact_refs=payload.artifact_refs,
    )


@router.get("/{order_id}", response_model=WorkOrderOut)
def get_work_order(order_id: str, queue: WorkOrderQueue = Depends(get_queue), actor_id: str = Depends(get_current_actor)):
    return queue.get(order_id)


@router.post("/{order_id}/claim", response_model=WorkOrderOut)
def claim_work_order(order_id: str, queue: WorkOrderQueue = Depends(get_queue), actor_id: str = Depends(get_current_actor)):
    return queue.claim(order_id, actor_id)


@router.post("/{order_id}/artifact", status_code=201)
async def upload_artifact(
    order_id: str,
    file: UploadFile = File(...),
    queue: WorkOrderQueue = Depends(get_queue),
    storage: Storage = Depends(get_storage),
    actor_id: str = Depends(get_current_actor),
) -> dict:
    """Store the site archive; pass the returned ref to /complete."""
    queue.get(order_id)
    content = await file.read()
    key = storage.put(f"work_orders/{order_id}/{uuid4().hex}.zip", content)
    return {"artifact_ref": key, "size": len(content)}


@router.get("/{order_id}/artifact")
def download_artifact(order_id: str, queue: WorkOrderQueue = Depends(get_queue), actor_id: str = Depends(get_current_actor)):
    content = queue.download_artifact(order_id)
    return Response(
        content=content,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{order_id}.zip"'},
    )


@router.post("/{order_id}/complete", response_model=WorkOrderOut)
def complete_work_order(
    order_id: str,
    payload: CompleteWorkOrderRequest,
    queue: WorkOrderQueue = Depends(get_queue),
    actor_id: str = Depends(get_current_actor),
):
    return queue.complete(order_id, payload.artifact_ref, payload.final_price, payload.note, actor_id=actor_id)


@router.post("/{order_id}/cancel", response_model=WorkOrderOut)
def cancel_work_order(
    order_id: str,
    payload: CancelWorkOrderRequest,
    queue: WorkOrderQueue = Depends(get_queue),
    actor_id: str = Depends(get_current_actor),
):
    return queue.cancel(order_id, payload.reason)
