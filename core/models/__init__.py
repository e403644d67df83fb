from .base import Base
from .daily_usage import DailyUsage
from .subscription import Subscription
from .payment_history import PaymentHistory

__all__ = ["Base", "DailyUsage", "Subscription", "PaymentHistory"]
