from fastapi import APIRouter, Depends

from app.api.deps import get_booking_service
from app.api.errors import http_error
from app.core.config import settings
from app.schemas.booking import (
    BookingCreate,
    BookingCreated,
    BookingCreatedData,
    BookingEnvelope,
    BookingList,
    BookingOut,
    MessageOut,
    PaymentVerified,
    StatusUpdate,
    VerifiedData,
    VerifyPaymentRequest,
    to_booking_out,
)
from app.services.booking_service import BookingError, BookingService
from app.services.stripe_gateway import PaymentError

router = APIRouter(tags=["bookings"])


def _out(b) -> BookingOut:
    return to_booking_out(b, currency=settings.PAYMENT_CURRENCY)


@router.post("/bookings", response_model=BookingCreated, status_code=201)
def create_booking(body: BookingCreate, svc: BookingService = Depends(get_booking_service)):
    try:
        booking, code = svc.submit_booking(body)
    except (BookingError, PaymentError) as e:
        raise http_error(e)
    return BookingCreated(data=BookingCreatedData(
        booking=_out(booking),
        referenceNumber=booking.reference_number,
        verificationCode=code if settings.EXPOSE_VERIFICATION_CODE else None,
        cardVerified=bool(booking.card_verified),
        balanceVerified=bool(booking.balance_verified),
    ))


@router.get("/bookings", response_model=BookingList)
def list_bookings(svc: BookingService = Depends(get_booking_service)):
    items = [_out(b) for b in svc.list_bookings()]
    return BookingList(count=len(items), data=items)


@router.post("/bookings/verify-payment", response_model=PaymentVerified)
def verify_payment(body: VerifyPaymentRequest, svc: BookingService = Depends(get_booking_service)):
    try:
        booking = svc.verify_payment(body.referenceNumber, body.verificationCode)
    except (BookingError, PaymentError) as e:
        raise http_error(e, charge=True)
    return PaymentVerified(data=VerifiedData(booking=_out(booking)))


@router.get("/bookings/reference/{reference_number}", response_model=BookingEnvelope)
def get_booking_by_reference(reference_number: str, svc: BookingService = Depends(get_booking_service)):
    try:
        return BookingEnvelope(data=_out(svc.get_booking_by_reference(reference_number)))
    except BookingError as e:
        raise http_error(e)


@router.get("/bookings/{booking_id}", response_model=BookingEnvelope)
def get_booking(booking_id: str, svc: BookingService = Depends(get_booking_service)):
    try:
        return BookingEnvelope(data=_out(svc.get_booking(booking_id)))
    except BookingError as e:
        raise http_error(e)


@router.put("/bookings/{booking_id}", response_model=BookingEnvelope)
def update_booking(booking_id: str, body: BookingCreate, svc: BookingService = Depends(get_booking_service)):
    try:
        booking = svc.update_booking(booking_id, body)
    except BookingError as e:
        raise http_error(e)
    return BookingEnvelope(message="Booking updated successfully", data=_out(booking))


@router.patch("/bookings/{booking_id}/status", response_model=BookingEnvelope)
def update_booking_status(booking_id: str, body: StatusUpdate, svc: BookingService = Depends(get_booking_service)):
    try:
        booking = svc.set_status(booking_id, body.status)
    except BookingError as e:
        raise http_error(e)
    return BookingEnvelope(message=f"Booking status updated to {booking.status}", data=_out(booking))


@router.delete("/bookings/{booking_id}", response_model=MessageOut)
def delete_booking(booking_id: str, svc: BookingService = Depends(get_booking_service)):
    try:
        svc.delete_booking(booking_id)
    except BookingError as e:
        raise http_error(e)
    return MessageOut(message="Booking deleted successfully")
