from .base import Base, Column, String, DateTime, Index

SUBSCRIPTION_STATUS_ACTIVE = "active"
SUBSCRIPTION_STATUS_EXPIRED = "expired"
SUBSCRIPTION_STATUS_CANCELLED = "cancelled"


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("idx_subscriptions_user_status", "user_id", "status"),
    )

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), index=True, nullable=False)
    tier = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=SUBSCRIPTION_STATUS_ACTIVE)
    started_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=True)  # freemium 为空
    razorpay_payment_id = Column(String(64), unique=True, nullable=True)  # 全局唯一，防重放
    razorpay_subscription_id = Column(String(64), nullable=True)  # 对应的 provider order id
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
