from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.booking import Booking

logger = logging.getLogger(__name__)

INSERT_ATTEMPTS = 5


class BookingRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def insert(self, booking: Booking) -> Booking:
        """Persist a new booking; a reference collision at the unique index re-draws the reference."""
        preset_ref = booking.reference_number
        for attempt in range(1, INSERT_ATTEMPTS + 1):
            self.db.add(booking)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                if preset_ref or not self._reference_collision(booking.reference_number):
                    raise
                logger.warning("Reference %s collided on insert (attempt %d)", booking.reference_number, attempt)
                booking.reference_number = None
                continue
            self.db.refresh(booking)
            return booking
        raise ValueError("could not allocate booking reference")

    def _reference_collision(self, ref: Optional[str]) -> bool:
        return bool(ref) and self.find_by_reference(ref) is not None

    def find_by_id(self, booking_id: str) -> Optional[Booking]:
        return self.db.get(Booking, booking_id)

    def find_by_reference(self, reference_number: str) -> Optional[Booking]:
        return self.db.execute(
            select(Booking).where(Booking.reference_number == reference_number)
        ).scalar_one_or_none()

    def find_by_verification_code(self, code: str) -> Optional[Booking]:
        return self.db.execute(
            select(Booking).where(Booking.payment_verification_code == code).limit(1)
        ).scalar_one_or_none()

    def find_all(self) -> List[Booking]:
        return list(self.db.execute(
            select(Booking).order_by(Booking.created_at.desc())
        ).scalars())

    def update(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.commit()
        self.db.refresh(booking)
        return booking

    def delete(self, booking: Booking) -> None:
        self.db.delete(booking)
        self.db.commit()
