from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from backend.app.db.models.core_types import AlertStatus


class RequisitionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    yarn_id: int
    yarn_name: str
    min_qty: Decimal
    available_qty: Decimal
    blocked_qty: Decimal
    alert_status: AlertStatus | None = None
    po_sent: bool
    created_at: datetime
    updated_at: datetime
