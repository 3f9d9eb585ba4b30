"""Booking workflow: card pre-authorization, persistence, verification and capture.

A submission runs a strict chain (validate -> tokenize -> authorize ->
confirm -> cancel -> persist). Any failure before the write leaves no
booking behind; the pre-authorization is always voided, so no funds move
until ``verify_payment`` charges the stored payment method.
"""
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from typing import List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.booking import (
    Booking,
    BookingServiceLine,
    BOOKING_STATUSES,
    CARD_RAILS,
    TERMINAL_STATUSES,
    can_transition,
)
from app.schemas.booking import BookingCreate, SelectedServiceIn, booking_rule_errors
from app.services.audit_service import log_audit
from app.services.email_service import send_verification_email
from app.services.stripe_gateway import CARD_DECLINED, PaymentError, StripeGateway
from app.storage.booking_repository import BookingRepository

logger = logging.getLogger(__name__)

CODE_DRAW_ATTEMPTS = 10
EXPIRY_RE = re.compile(r"^\s*(\d{1,2})\s*/\s*(\d{2}|\d{4})\s*$")
# PaymentIntent status after a successful manual-capture confirmation
AUTHORIZED = "requires_capture"
SUCCEEDED = "succeeded"


class BookingError(Exception):
    error_type = "service"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BookingValidationError(BookingError):
    error_type = "validation"

    def __init__(self, errors: List[str]):
        super().__init__("Validation error")
        self.errors = list(errors)


class BookingNotFound(BookingError):
    error_type = "not_found"

    def __init__(self, message: str = "Booking not found"):
        super().__init__(message)


class InvalidVerificationCode(BookingError):
    error_type = "invalid_code"

    def __init__(self, message: str = "Invalid verification code"):
        super().__init__(message)


class InvalidBookingState(BookingError):
    error_type = "state"


class PaymentFailed(BookingError):
    error_type = "payment"


class BookingPersistenceError(BookingError):
    pass


@dataclass
class CardDetails:
    number: str
    exp_month: int
    exp_year: int
    cvc: str


def parse_card(req: BookingCreate) -> CardDetails:
    if not (req.cardNumber and req.cardExpiry and req.cardCVV):
        raise BookingValidationError(["Card details are required for card payment"])

    errors = []
    number = re.sub(r"[\s-]+", "", req.cardNumber)
    if not number.isdigit() or not 12 <= len(number) <= 19:
        errors.append("Card number must be 12 to 19 digits")

    exp_month = exp_year = 0
    m = EXPIRY_RE.match(req.cardExpiry)
    if m:
        exp_month = int(m.group(1))
        exp_year = int(m.group(2))
        if exp_year < 100:
            exp_year += 2000
    if not m or not 1 <= exp_month <= 12:
        errors.append("Card expiry date must be in MM/YY format")

    cvc = req.cardCVV.strip()
    if not cvc.isdigit() or len(cvc) not in (3, 4):
        errors.append("Card CVV must be 3 or 4 digits")

    if errors:
        raise BookingValidationError(errors)
    return CardDetails(number=number, exp_month=exp_month, exp_year=exp_year, cvc=cvc)


def new_verification_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _service_lines(services: List[SelectedServiceIn]) -> List[BookingServiceLine]:
    return [
        BookingServiceLine(position=i, service_id=s.id, name=s.name, unit_price=s.price, quantity=s.quantity)
        for i, s in enumerate(services)
    ]


class BookingService:
    def __init__(self, db: Session, gateway: StripeGateway, currency: str | None = None):
        self.db = db
        self.gateway = gateway
        self.repo = BookingRepository(db)
        self.currency = (currency or settings.PAYMENT_CURRENCY).lower()

    # -- submission -------------------------------------------------------

    def submit_booking(self, req: BookingCreate) -> Tuple[Booking, str]:
        """Validate, pre-authorize the card and persist a pending booking.

        Returns the booking and its verification code.
        """
        errors = booking_rule_errors(req)
        if errors:
            raise BookingValidationError(errors)
        card = parse_card(req) if req.paymentMethod in CARD_RAILS else None

        booking = Booking(
            id=str(uuid.uuid4()),
            status="pending",
            payment_method=req.paymentMethod,
            card_name=req.cardName,
            card_last4=card.number[-4:] if card else None,
            save_payment_info=req.savePaymentInfo,
            card_verified=False,
            balance_verified=False,
            is_payment_verified=False,
        )
        self._apply_details(booking, req)

        if card:
            self._validate_card(booking, card, req.email)

        try:
            code = self._unused_verification_code()
            booking.payment_verification_code = code
            self.repo.insert(booking)
        except (SQLAlchemyError, ValueError) as e:
            self.db.rollback()
            # card was validated but never charged
            logger.error("Failed to persist booking for %s after card validation: %s", req.email, e)
            raise BookingPersistenceError("Failed to create booking") from e

        logger.info("Booking %s created (card verified: %s)", booking.reference_number, booking.card_verified)
        log_audit(self.db, actor="public", action="booking_created", entity_id=booking.reference_number, details={
            "paymentMethod": booking.payment_method,
            "totalPrice": booking.total_price,
            "paymentIntentId": booking.payment_intent_id,
        })
        send_verification_email(self.db, booking, code)
        return booking, code

    def _validate_card(self, booking: Booking, card: CardDetails, email: str) -> None:
        """Authorize the full amount without capturing it, then void the authorization."""
        metadata = {"customer_email": email, "purpose": "card_check"}
        token = self.gateway.tokenize_card(
            number=card.number, exp_month=card.exp_month, exp_year=card.exp_year, cvc=card.cvc,
        )
        auth = self.gateway.authorize(
            token=token,
            amount=booking.total_price,
            currency=self.currency,
            confirm=False,
            capture_method="manual",
            description=f"Card check for {email}",
            metadata=metadata,
        )
        try:
            confirmed = self.gateway.confirm_authorization(auth.id)
        finally:
            # the hold is released even when confirmation fails
            self.gateway.cancel_authorization(auth.id)
        if confirmed.status != AUTHORIZED:
            raise PaymentError(CARD_DECLINED, f"Card could not be verified (status: {confirmed.status})")

        booking.payment_method_token = token
        booking.payment_intent_id = auth.id
        booking.card_verified = True
        booking.balance_verified = True

    def _unused_verification_code(self) -> str:
        for _ in range(CODE_DRAW_ATTEMPTS):
            code = new_verification_code()
            if self.repo.find_by_verification_code(code) is None:
                return code
        raise ValueError("could not allocate verification code")

    def _apply_details(self, booking: Booking, req: BookingCreate) -> None:
        booking.first_name = req.firstName
        booking.last_name = req.lastName
        booking.email = req.email
        booking.phone = req.phone
        booking.nationality = req.nationality
        booking.passport_number = req.passportNumber
        booking.flight_number = req.flightNumber
        booking.airline = req.airline
        booking.trip_type = req.tripType
        booking.departure_date = req.departureDate
        booking.departure_time = req.departureTime
        booking.return_date = req.returnDate
        booking.return_time = req.returnTime
        booking.total_price = req.totalPrice
        booking.services = _service_lines(req.selectedServices)

    # -- verification -----------------------------------------------------

    def verify_payment(self, reference_number: str, code: str) -> Booking:
        booking = self.repo.find_by_reference(reference_number)
        if not booking:
            raise BookingNotFound()

        if booking.payment_verification_code != code:
            log_audit(self.db, actor="public", action="verification_failed", entity_id=booking.reference_number)
            raise InvalidVerificationCode()

        if booking.is_payment_verified:
            logger.info("Booking %s already verified; not charging again", booking.reference_number)
            return booking
        if booking.status in TERMINAL_STATUSES:
            raise InvalidBookingState(f"Booking is {booking.status}")

        charge_id = None
        if booking.payment_method in CARD_RAILS and booking.payment_method_token:
            charge_id = self._charge(booking)
            booking.payment_intent_id = charge_id

        booking.is_payment_verified = True
        booking.status = "confirmed"
        try:
            self.repo.update(booking)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Booking %s charged (%s) but could not be marked verified: %s",
                         reference_number, charge_id, e)
            raise BookingPersistenceError("Failed to verify payment") from e

        log_audit(self.db, actor="public", action="payment_verified", entity_id=booking.reference_number,
                  details={"paymentIntentId": charge_id})
        return booking

    def _charge(self, booking: Booking) -> str:
        try:
            charge = self.gateway.capture(
                token=booking.payment_method_token,
                amount=booking.total_price,
                currency=self.currency,
                description=f"Payment for booking {booking.reference_number}",
                metadata={"booking_reference": booking.reference_number, "customer_email": booking.email},
            )
        except PaymentError as e:
            log_audit(self.db, actor="stripe", action="payment_failed", entity_id=booking.reference_number,
                      details={"kind": e.kind, "code": e.code, "message": e.message})
            raise
        if charge.status != SUCCEEDED:
            log_audit(self.db, actor="stripe", action="payment_failed", entity_id=booking.reference_number,
                      details={"paymentIntentId": charge.id, "status": charge.status})
            raise PaymentFailed(f"Payment failed with status: {charge.status}")
        return charge.id

    # -- administration ---------------------------------------------------

    def list_bookings(self) -> List[Booking]:
        return self.repo.find_all()

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repo.find_by_id(booking_id)
        if not booking:
            raise BookingNotFound()
        return booking

    def get_booking_by_reference(self, reference_number: str) -> Booking:
        booking = self.repo.find_by_reference(reference_number)
        if not booking:
            raise BookingNotFound()
        return booking

    def update_booking(self, booking_id: str, req: BookingCreate) -> Booking:
        """Full re-validated update of passenger, flight and service details.

        Reference number, verification code, status and gateway artifacts are
        never touched; re-pricing a paid booking is refused.
        """
        errors = booking_rule_errors(req)
        if errors:
            raise BookingValidationError(errors)
        booking = self.get_booking(booking_id)

        if booking.is_payment_verified and abs(booking.total_price - req.totalPrice) > 0.005:
            raise InvalidBookingState("Cannot change the total of a paid booking")

        self._apply_details(booking, req)
        booking.save_payment_info = req.savePaymentInfo
        if req.cardName:
            booking.card_name = req.cardName
        self.repo.update(booking)
        log_audit(self.db, actor="admin", action="booking_updated", entity_id=booking.reference_number,
                  details={"totalPrice": booking.total_price})
        return booking

    def delete_booking(self, booking_id: str) -> None:
        booking = self.get_booking(booking_id)
        ref = booking.reference_number
        self.repo.delete(booking)
        log_audit(self.db, actor="admin", action="booking_deleted", entity_id=ref)

    def set_status(self, booking_id: str, status: str) -> Booking:
        if status not in BOOKING_STATUSES:
            raise BookingValidationError(["Invalid status value"])
        booking = self.get_booking(booking_id)
        if booking.status == status:
            return booking
        if not can_transition(booking.status, status):
            raise InvalidBookingState(f"Cannot change status from {booking.status} to {status}")

        previous = booking.status
        booking.status = status
        self.repo.update(booking)
        log_audit(self.db, actor="admin", action="booking_status_changed", entity_id=booking.reference_number,
                  details={"from": previous, "to": status})
        return booking
