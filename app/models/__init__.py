from .account import Account, ROLE_USER, ROLE_DEALER, ROLE_ADMIN
from .payment import PaymentRecord
from .listing import Listing, BoostHistoryEntry
from .webhook_event import ProcessedWebhookEvent
from .plan import PlanDefinition

__all__ = [
    "Account",
    "PaymentRecord",
    "Listing",
    "BoostHistoryEntry",
    "ProcessedWebhookEvent",
    "PlanDefinition",
    "ROLE_USER",
    "ROLE_DEALER",
    "ROLE_ADMIN",
]
