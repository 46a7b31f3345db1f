from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session
from typing import Optional
from app.infrastructure.db import get_db
from app.application.service import OrderService, serialize_order
from app.application.failed_orders import FailedOrderReport, serialize_failed_order
from app.application.schemas import FailedOrderCreate, FailedOrderUpdate, OrderCreate, OrderUpdate
from app.auth_local import CurrentUser
from app.context import CheckoutContext
from app.domain.status import FailedOrderStatus
from .deps import get_context, get_current_user, require_admin

router = APIRouter(prefix="/orders", tags=["orders"])

@router.post("/create", status_code=201)
async def create_order(
    payload: OrderCreate,
    user: CurrentUser = Depends(get_current_user),
    ctx: CheckoutContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    """Create an order; every amount is recomputed server-side."""
    order = await OrderService(db, ctx.pricing_pipeline(db)).create(
        payload, user.id, email=user.email, display_name=user.name
    )
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "message": "Order created successfully",
        "total": float(order.total),
    }

@router.get("/my-orders")
def my_orders(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return [serialize_order(o) for o in OrderService(db).list_for_customer(user.id, user.email)]

@router.get("/best-sellers")
def best_sellers(db: Session = Depends(get_db)):
    """Public: product ids ranked by recent sales."""
    return {"productIds": OrderService(db).best_sellers()}

@router.post("/failed", status_code=201)
def record_failed_order(
    payload: FailedOrderCreate,
    response: Response,
    user: CurrentUser = Depends(get_current_user),
    ctx: CheckoutContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    """Store a paid order that could not be created, for manual follow-up."""
    report = FailedOrderReport.parse(
        payload.transaction_id, payload.order_data, payload.error, payload.error_details
    )
    record, created = ctx.failed_order_recorder(db).record(
        report, user.id, user_email=user.email, user_name=user.name
    )
    if not created:
        response.status_code = 200
    return {
        "id": record.id,
        "message": "Failed order recorded" if created else "Failed order updated",
        "transactionId": record.transaction_id,
    }

@router.get("/failed")
def list_failed_orders(
    status: Optional[FailedOrderStatus] = None,
    _: CurrentUser = Depends(require_admin),
    ctx: CheckoutContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    records = ctx.failed_order_recorder(db).list(status.value if status else None)
    return [serialize_failed_order(r) for r in records]

@router.patch("/failed/{failed_order_id}")
def update_failed_order(
    failed_order_id: int,
    payload: FailedOrderUpdate,
    _: CurrentUser = Depends(require_admin),
    ctx: CheckoutContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    record = ctx.failed_order_recorder(db).update(
        failed_order_id,
        status=payload.status.value if payload.status else None,
        comment=payload.comment,
    )
    return serialize_failed_order(record)

@router.get("")
def list_orders(_: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    """Active (non-archived) orders, newest first."""
    return [serialize_order(o) for o in OrderService(db).list_active()]

@router.get("/archived")
def list_archived_orders(_: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return [serialize_order(o) for o in OrderService(db).list_archived()]

@router.patch("/{order_id}")
def update_order(
    order_id: int,
    payload: OrderUpdate,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return serialize_order(OrderService(db).update(order_id, payload))

@router.post("/{order_id}/archive")
def archive_order(order_id: int, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    order = OrderService(db).archive(order_id, admin.id)
    return {"message": "Order archived", "order": serialize_order(order)}
