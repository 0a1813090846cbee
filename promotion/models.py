from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AccountType(str, Enum):
    STANDARD = "standard"
    INFLUENCER = "influencer"
    DEMO_INFLUENCER = "demo_influencer"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class ReferralRecord(BaseModel):
    referrer_id: str
    referee_id: str
    status: ReferralStatus = ReferralStatus.PENDING
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Profile(BaseModel):
    id: str
    account_type: AccountType = AccountType.STANDARD
    email: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PromotionResult(BaseModel):
    user_id: str
    became_influencer: bool
    referral_count: int
    account_type: Optional[AccountType] = None
    notified: bool = False


class PromotionCheckRequest(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1)

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {"userId": "8f14e45f-ceea-467a-9e57-36b9d2a1f0c1"}
    })


class PromotionCheckResponse(BaseModel):
    success: bool = True
    became_influencer: bool = Field(..., alias="becameInfluencer")

    model_config = ConfigDict(populate_by_name=True)
