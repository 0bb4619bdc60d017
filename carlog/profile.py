"""Profile class holding a user's billing state."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Profile:
    """Per-user account data kept alongside the maintenance records."""

    id: str
    email: Optional[str] = None
    subscription_status: str = "free"  # free, pro or cancelled
    stripe_customer_id: Optional[str] = None

    @property
    def is_pro(self) -> bool:
        return self.subscription_status == "pro"
