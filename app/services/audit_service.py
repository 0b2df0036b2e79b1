from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.enums import EventStage
from app.models.order_event import OrderEvent

logger = logging.getLogger(__name__)


class AuditService:
    """
    Appends to an order's event log (the `errors` trail exposed by the API).

    The caller owns the transaction: rows are added to the session and flushed,
    and land together with the state change they describe.
    """
    def write(
        self,
        db: Session,
        *,
        order_id: str,
        stage: EventStage,
        message: str,
        stack: Optional[str] = None,
        request_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> OrderEvent:
        row = OrderEvent(
            order_id=order_id,
            stage=EventStage(stage).value,
            message=message,
            stack=stack,
            request_id=request_id,
            ip_address=ip_address,
            details_json=details or {},
        )
        db.add(row)
        db.flush()
        logger.info(
            "order event",
            extra={"order_id": order_id, "stage": row.stage, "event_message": message},
        )
        return row
