"""Records payments that succeeded while the order itself failed to persist.

Records are keyed by the gateway transaction id. A retry from the same user
updates the record; the same id from another user is a conflict that gets
flagged for security review.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.errors import Conflict, InvalidFailedOrder, NotFound, RateLimited
from app.domain.models import FailedOrder
from app.domain.money import as_number, round2
from app.domain.status import FAILED_ORDER_TRANSITIONS, FailedOrderStatus, check_transition
from shared.core import get_logger

logger = get_logger(__name__)

TRANSACTION_ID_MIN_LENGTH = 3
TRANSACTION_ID_MAX_LENGTH = 100


def utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class FailedOrderReport:
    transaction_id: str
    order_data: Dict[str, Any]
    amount: Decimal
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None

    @classmethod
    def parse(cls, transaction_id: Any, order_data: Any, error: Any = None,
              error_details: Any = None) -> "FailedOrderReport":
        if not isinstance(transaction_id, str) or not transaction_id.strip():
            raise InvalidFailedOrder("Transaction ID is required")
        transaction_id = transaction_id.strip()
        if not (TRANSACTION_ID_MIN_LENGTH <= len(transaction_id) <= TRANSACTION_ID_MAX_LENGTH):
            raise InvalidFailedOrder(
                f"Transaction ID must be between {TRANSACTION_ID_MIN_LENGTH} "
                f"and {TRANSACTION_ID_MAX_LENGTH} characters"
            )
        if not isinstance(order_data, dict):
            raise InvalidFailedOrder("Order data is required")
        items = order_data.get("items")
        if not isinstance(items, list) or not items:
            raise InvalidFailedOrder("Order data must contain at least one item")
        total = as_number(order_data.get("total"))
        if total is None or not math.isfinite(total) or total <= 0:
            raise InvalidFailedOrder("Order data must contain a positive total")
        return cls(
            transaction_id=transaction_id,
            order_data=order_data,
            amount=round2(total),
            error=str(error)[:2000] if error is not None else None,
            error_details=error_details if isinstance(error_details, dict) else None,
        )


class FailOpenRateLimit:
    """Per-user sliding window limit on failed-order reports.

    When the count query itself fails the report is let through.
    """

    def __init__(self, limit: int = 5, window_seconds: int = 300):
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)

    def enforce(self, count_since: Callable[[datetime], int], user_id: str, now: datetime) -> bool:
        """Return True when the count was checked, False when the check failed open."""
        try:
            count = count_since(now - self.window)
        except SQLAlchemyError as e:
            logger.warning(
                f"Failed-order rate limit check failed, allowing the record: {e}",
                extra={'extra_fields': {'event': 'rate_limit_fail_open', 'user_id': user_id}}
            )
            return False
        if count >= self.limit:
            raise RateLimited(
                f"More than {self.limit} failed order reports in "
                f"{int(self.window.total_seconds() // 60)} minutes. Please contact support."
            )
        return True


class FailedOrderRecorder:
    def __init__(self, db: Session, rate_limit: Optional[FailOpenRateLimit] = None,
                 clock: Callable[[], datetime] = utcnow_naive):
        self.db = db
        self.rate_limit = rate_limit or FailOpenRateLimit()
        self.clock = clock

    def _find(self, transaction_id: str) -> Optional[FailedOrder]:
        return self.db.execute(
            select(FailedOrder).where(FailedOrder.transaction_id == transaction_id)
        ).scalar_one_or_none()

    def _count_since(self, user_id: str, since: datetime) -> int:
        try:
            return self.db.execute(
                select(func.count()).select_from(FailedOrder).where(
                    FailedOrder.user_id == user_id,
                    FailedOrder.created_at >= since,
                )
            ).scalar_one()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def record(self, report: FailedOrderReport, user_id: str,
               user_email: Optional[str] = None, user_name: Optional[str] = None) -> Tuple[FailedOrder, bool]:
        """Store the report. Returns the record and whether it was newly created."""
        existing = self._find(report.transaction_id)
        if existing is not None:
            return self._update_existing(existing, report, user_id), False

        now = self.clock()
        self.rate_limit.enforce(lambda since: self._count_since(user_id, since), user_id, now)

        record = FailedOrder(
            transaction_id=report.transaction_id,
            user_id=user_id,
            user_email=user_email,
            user_name=user_name,
            amount=report.amount,
            order_data=report.order_data,
            error=report.error,
            error_details=report.error_details,
            comment="",
            status=FailedOrderStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost an insert race on the unique transaction id
            self.db.rollback()
            existing = self._find(report.transaction_id)
            if existing is None:
                raise
            return self._update_existing(existing, report, user_id), False
        self.db.refresh(record)

        logger.error(
            f"Failed order recorded for transaction {report.transaction_id}",
            extra={'extra_fields': {
                'event': 'failed_order_recorded',
                'failed_order_id': record.id,
                'user_id': user_id,
                'amount': float(report.amount),
                'error': report.error,
            }}
        )
        return record, True

    def _update_existing(self, existing: FailedOrder, report: FailedOrderReport, user_id: str) -> FailedOrder:
        if existing.user_id != user_id:
            existing.flagged_for_review = True
            self.db.commit()
            logger.error(
                f"SECURITY: transaction {report.transaction_id} reported by a different user",
                extra={'extra_fields': {
                    'event': 'failed_order_conflict',
                    'failed_order_id': existing.id,
                    'owner_user_id': existing.user_id,
                    'reporting_user_id': user_id,
                }}
            )
            raise Conflict("This transaction ID is already recorded for another account")

        existing.order_data = report.order_data
        existing.amount = report.amount
        existing.error = report.error
        existing.error_details = report.error_details
        existing.updated_at = self.clock()
        self.db.commit()
        self.db.refresh(existing)
        logger.info(
            f"Failed order {existing.id} updated by retry",
            extra={'extra_fields': {'event': 'failed_order_updated', 'failed_order_id': existing.id}}
        )
        return existing

    def list(self, status: Optional[str] = None) -> List[FailedOrder]:
        query = select(FailedOrder).order_by(FailedOrder.created_at.desc(), FailedOrder.id.desc())
        if status:
            query = query.where(FailedOrder.status == status)
        return list(self.db.execute(query).scalars())

    def update(self, failed_order_id: int, status: Optional[str] = None,
               comment: Optional[str] = None) -> FailedOrder:
        record = self.db.get(FailedOrder, failed_order_id)
        if record is None:
            raise NotFound("Failed order not found")
        if status is not None:
            check_transition(FAILED_ORDER_TRANSITIONS, record.status, status)
            record.status = status
        if comment is not None:
            record.comment = comment
        record.updated_at = self.clock()
        self.db.commit()
        self.db.refresh(record)
        return record


def serialize_failed_order(record: FailedOrder) -> Dict[str, Any]:
    return {
        "id": record.id,
        "transactionId": record.transaction_id,
        "userId": record.user_id,
        "userEmail": record.user_email,
        "userName": record.user_name,
        "amount": float(record.amount) if record.amount is not None else None,
        "orderData": record.order_data,
        "error": record.error,
        "errorDetails": record.error_details,
        "comment": record.comment,
        "status": record.status,
        "flaggedForReview": record.flagged_for_review,
        "createdAt": record.created_at.isoformat() + "Z" if record.created_at else None,
        "updatedAt": record.updated_at.isoformat() + "Z" if record.updated_at else None,
    }
