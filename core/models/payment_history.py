from .base import Base, Column, String, Integer, DateTime, Index

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_SUCCESS = "success"
PAYMENT_STATUS_FAILED = "failed"


class PaymentHistory(Base):
    __tablename__ = "payment_history"
    __table_args__ = (
        Index("idx_payment_history_order_user", "razorpay_order_id", "user_id"),
    )

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), index=True, nullable=False)
    amount = Column(Integer, nullable=False)  # 最小货币单位（paise）
    currency = Column(String(8), nullable=False, default="INR")
    tier = Column(String(20), nullable=False)
    duration_months = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=PAYMENT_STATUS_PENDING)
    payment_method = Column(String(32), nullable=True)
    razorpay_order_id = Column(String(64), unique=True, nullable=False)
    razorpay_payment_id = Column(String(64), nullable=True)
    razorpay_signature = Column(String(128), nullable=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
