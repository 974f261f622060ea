import enum
from datetime import UTC, datetime, timedelta

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vacancy_notifier.config import DEFAULT_POLL_INTERVAL_MINUTES, MIN_POLL_INTERVAL_MINUTES
from vacancy_notifier.database import Base


class FilterType(str, enum.Enum):
    TEXT = "text"
    AREA = "area"
    SALARY = "salary"
    EXPERIENCE = "experience"
    SCHEDULE = "schedule"
    PUBLISHED_WITHIN = "published_within"


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on round-trip; treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Subscriber(Base):
    __tablename__ = "subscribers"

    # Telegram chat id doubles as the primary key
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    poll_interval_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_POLL_INTERVAL_MINUTES
    )
    last_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    filters: Mapped[list["SubscriberFilter"]] = relationship(
        back_populates="subscriber", cascade="all, delete-orphan"
    )

    @property
    def effective_interval(self) -> timedelta:
        return timedelta(minutes=max(self.poll_interval_minutes, MIN_POLL_INTERVAL_MINUTES))

    def is_eligible(self, now: datetime) -> bool:
        if not self.enabled:
            return False
        if self.last_checked_at is None:
            return True
        return now - as_utc(self.last_checked_at) >= self.effective_interval


class SubscriberFilter(Base):
    __tablename__ = "subscriber_filters"
    __table_args__ = (
        UniqueConstraint("subscriber_id", "filter_type", name="uq_filter_subscriber_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscriber_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("subscribers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filter_type: Mapped[str] = mapped_column(String(32), nullable=False)
    filter_value: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    subscriber: Mapped["Subscriber"] = relationship(back_populates="filters")
