from .base import Base, Column, String, Integer, Date, DateTime, UniqueConstraint


class DailyUsage(Base):
    __tablename__ = "daily_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "usage_date", name="uq_daily_usage_user_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), index=True, nullable=False)
    usage_date = Column(Date, index=True, nullable=False)
    # 只允许 core.quota_store 通过原子 UPDATE 修改
    generation_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
