import random
from datetime import date, datetime, timezone

from sqlalchemy import String, Integer, Float, Boolean, Date, DateTime, ForeignKey, event, select
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.config import settings
from app.db.session import Base

BOOKING_STATUSES = ("pending", "confirmed", "cancelled", "completed")
TERMINAL_STATUSES = ("cancelled", "completed")
# Allowed target statuses per current status. Re-setting the current status is a no-op.
STATUS_TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("completed", "cancelled"),
    "cancelled": (),
    "completed": (),
}

TRIP_TYPES = ("oneWay", "roundTrip")
CARD_RAILS = ("card", "debitCard")

REF_DRAW_ATTEMPTS = 10


def can_transition(current: str, target: str) -> bool:
    if target not in BOOKING_STATUSES:
        return False
    if current == target:
        return True
    return target in STATUS_TRANSITIONS.get(current, ())


def make_reference_number(on: date | None = None, prefix: str | None = None) -> str:
    """HALA-YYYYMMDD-NNNN, NNNN a random 4-digit number."""
    on = on or datetime.now(timezone.utc).date()
    prefix = prefix or settings.BOOKING_REF_PREFIX
    return f"{prefix}-{on.strftime('%Y%m%d')}-{random.randint(1000, 9999)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    reference_number: Mapped[str] = mapped_column(String(40), unique=True, index=True)

    # Passenger
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(320), index=True)
    phone: Mapped[str] = mapped_column(String(40))
    nationality: Mapped[str] = mapped_column(String(80))
    passport_number: Mapped[str] = mapped_column(String(80))

    # Flight
    flight_number: Mapped[str] = mapped_column(String(30))
    airline: Mapped[str] = mapped_column(String(100))
    trip_type: Mapped[str] = mapped_column(String(12))  # oneWay, roundTrip
    departure_date: Mapped[date] = mapped_column(Date)
    departure_time: Mapped[str] = mapped_column(String(10))
    return_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    return_time: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Payment; raw card number and CVV are never stored
    payment_method: Mapped[str] = mapped_column(String(20), default="card")  # card, debitCard
    card_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    card_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    save_payment_info: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_method_token: Mapped[str | None] = mapped_column(String(120), nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    card_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    balance_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_payment_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_verification_code: Mapped[str] = mapped_column(String(6), index=True)

    total_price: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, confirmed, cancelled, completed

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    services: Mapped[list["BookingServiceLine"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingServiceLine.position",
    )


class BookingServiceLine(Base):
    __tablename__ = "booking_services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    service_id: Mapped[str] = mapped_column(String(60))  # meet_greet, lounges, vip, transfer, baggage, chauffeur
    name: Mapped[str] = mapped_column(String(120))
    unit_price: Mapped[float] = mapped_column(Float)
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    booking: Mapped[Booking] = relationship(back_populates="services")

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


@event.listens_for(Booking, "before_insert")
def _assign_reference_number(mapper, connection, target: Booking) -> None:
    # Assigned once, only when absent; the unique index on reference_number is the final arbiter
    if target.reference_number:
        return
    created = target.created_at or _utcnow()
    target.created_at = created
    for _ in range(REF_DRAW_ATTEMPTS):
        ref = make_reference_number(created.date())
        taken = connection.execute(
            select(Booking.id).where(Booking.reference_number == ref)
        ).first()
        if not taken:
            target.reference_number = ref
            return
    raise ValueError("could not allocate booking reference")
