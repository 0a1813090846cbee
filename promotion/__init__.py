"""
Influencer promotion

This package provides:
- Completed-referral counting and referral completion
- A declarative eligibility rule for the promotion fast path
- The promotion engine around the atomic check-and-promote procedure
- Fire-and-forget notifiers for the congratulations message

Only the models are exported here; import the engine, counter and notifiers
from their modules.
"""

from .models import (
    AccountType,
    ReferralStatus,
    ReferralRecord,
    Profile,
    PromotionResult,
)

__all__ = [
    "AccountType",
    "ReferralStatus",
    "ReferralRecord",
    "Profile",
    "PromotionResult",
]
