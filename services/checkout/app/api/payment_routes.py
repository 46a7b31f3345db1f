from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.infrastructure.db import get_db
from app.application.payment_service import PaymentService
from app.application.schemas import CalculateTotalRequest, CalculateTotalResponse, PaymentProcessRequest, PaymentResult
from app.auth_local import CurrentUser
from app.context import CheckoutContext
from .deps import get_context, get_current_user

router = APIRouter(prefix="/payment", tags=["payment"])

def _payments(ctx: CheckoutContext, db: Session) -> PaymentService:
    return PaymentService(ctx.pricing_pipeline(db), ctx.settings.CURRENCY, ctx.settings.PRICE_TOLERANCE)

@router.post("/calculate-total", response_model=CalculateTotalResponse, response_model_by_alias=True)
async def calculate_total(
    payload: CalculateTotalRequest,
    user: CurrentUser = Depends(get_current_user),
    ctx: CheckoutContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    """Authoritative checkout summary; the same pricing that order creation uses."""
    quote = await _payments(ctx, db).calculate_total(payload, user.id)
    return quote.as_dict()

@router.post("/process", response_model=PaymentResult, response_model_by_alias=True)
async def process_payment(
    payload: PaymentProcessRequest,
    user: CurrentUser = Depends(get_current_user),
    ctx: CheckoutContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    return await _payments(ctx, db).process(payload, user.id)
