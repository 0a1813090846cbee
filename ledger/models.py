from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PRIZE = "prize"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionRecord(BaseModel):
    id: UUID
    user_id: str
    amount_cents: int = Field(..., ge=0, description="Amount in the currency's minor unit")
    type: TransactionType
    status: TransactionStatus
    payment_intent_id: Optional[str] = None
    currency: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WebhookAck(BaseModel):
    received: bool = True


class MergeRequest(BaseModel):
    # Any JSON value; non-objects are rejected by merge() as InvalidDocument
    current: Optional[Any] = None
    new: Optional[Any] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "current": {"method": "card", "attempts": 1},
            "new": "{\"attempts\": 2, \"failure_reason\": \"card_declined\"}"
        }
    })


class DetailsPatchRequest(BaseModel):
    patch: Optional[Any] = None


class WithdrawalRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0, description="Amount in the currency's minor unit")
    details: Optional[dict[str, Any]] = None


class SettleWithdrawalRequest(BaseModel):
    succeeded: bool
    failure_reason: Optional[str] = None
