from fastapi import Depends, Request
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.services.booking_service import BookingService
from app.services.stripe_gateway import StripeGateway


def get_gateway(request: Request) -> StripeGateway:
    # Built once at startup (see app.main lifespan)
    return request.app.state.gateway


def get_booking_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
) -> BookingService:
    return BookingService(db, gateway)
