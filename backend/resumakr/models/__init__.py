"""SQLAlchemy models for Resumakr.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from resumakr.models.ai_credit_usage import AICreditUsage
from resumakr.models.payment import Payment
from resumakr.models.resume_creation import ResumeCreation
from resumakr.models.subscription_event import SubscriptionEvent
from resumakr.models.user import User

__all__ = [
    "AICreditUsage",
    "Payment",
    "ResumeCreation",
    "SubscriptionEvent",
    "User",
]
