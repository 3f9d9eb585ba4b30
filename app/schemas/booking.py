from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

PRICE_TOLERANCE = 0.005

# Human labels used in validation messages (keys are request field names)
FIELD_LABELS = {
    "firstName": "First name",
    "lastName": "Last name",
    "email": "Email",
    "phone": "Phone number",
    "nationality": "Nationality",
    "passportNumber": "Passport number",
    "flightNumber": "Flight number",
    "airline": "Airline",
    "tripType": "Trip type",
    "departureDate": "Departure date",
    "departureTime": "Departure time",
    "returnDate": "Return date",
    "returnTime": "Return time",
    "selectedServices": "Selected services",
    "paymentMethod": "Payment method",
    "cardNumber": "Card number",
    "cardName": "Name on card",
    "cardExpiry": "Card expiry date",
    "cardCVV": "Card CVV",
    "savePaymentInfo": "Save payment info",
    "totalPrice": "Total price",
    "referenceNumber": "Reference number",
    "verificationCode": "Verification code",
    "status": "Status",
    "id": "id",
    "name": "name",
    "price": "price",
    "quantity": "quantity",
}

CHOICE_MESSAGES = {
    "tripType": "Trip type must be either oneWay or roundTrip",
    "paymentMethod": "Payment method must be either card or debitCard",
}

_REQUIRED_TEXT = (
    "firstName", "lastName", "phone", "nationality", "passportNumber",
    "flightNumber", "airline", "departureTime",
)


class SelectedServiceIn(BaseModel):
    id: str = Field(min_length=1, max_length=60)
    name: str = Field(min_length=1, max_length=120)
    price: float = Field(ge=0, allow_inf_nan=False)
    quantity: int = Field(default=1, ge=1)


# max_length values follow the column sizes in app.models.booking
class BookingCreate(BaseModel):
    # Passenger
    firstName: str = Field(max_length=100)
    lastName: str = Field(max_length=100)
    email: EmailStr
    phone: str = Field(max_length=40)
    nationality: str = Field(max_length=80)
    passportNumber: str = Field(max_length=80)

    # Flight
    flightNumber: str = Field(max_length=30)
    airline: str = Field(max_length=100)
    tripType: Literal["oneWay", "roundTrip"]
    departureDate: date
    departureTime: str = Field(max_length=10)
    returnDate: Optional[date] = None
    returnTime: Optional[str] = Field(default=None, max_length=10)

    selectedServices: List[SelectedServiceIn] = Field(min_length=1)

    # Payment; card fields are never persisted beyond name and last 4 digits
    paymentMethod: Literal["card", "debitCard"] = "card"
    cardNumber: Optional[str] = Field(default=None, max_length=40)
    cardName: Optional[str] = Field(default=None, max_length=120)
    cardExpiry: Optional[str] = Field(default=None, max_length=10)
    cardCVV: Optional[str] = Field(default=None, max_length=4)
    savePaymentInfo: bool = False

    totalPrice: float = Field(allow_inf_nan=False)

    @field_validator(*_REQUIRED_TEXT, mode="before")
    @classmethod
    def _not_blank(cls, v, info):
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError(f"{FIELD_LABELS[info.field_name]} is required")
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("Email is required")
        return v.strip() if isinstance(v, str) else v

    @field_validator("returnDate", "returnTime", "cardNumber", "cardName", "cardExpiry", "cardCVV", mode="before")
    @classmethod
    def _blank_as_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def services_total(self) -> float:
        return round(sum(s.price * s.quantity for s in self.selectedServices), 2)


def _parse_hhmm(value: Optional[str]):
    try:
        return datetime.strptime((value or "").strip(), "%H:%M").time()
    except ValueError:
        return None


def booking_rule_errors(body: BookingCreate) -> List[str]:
    """Cross-field rules that a single field cannot express. Empty list = valid."""
    errors: List[str] = []

    if body.tripType == "roundTrip":
        if body.returnDate is None:
            errors.append("Return date is required for round trip")
        if not (body.returnTime or "").strip():
            errors.append("Return time is required for round trip")
        if body.returnDate is not None:
            if body.returnDate < body.departureDate:
                errors.append("Return date cannot be earlier than departure date")
            elif body.returnDate == body.departureDate:
                dep_t, ret_t = _parse_hhmm(body.departureTime), _parse_hhmm(body.returnTime)
                if dep_t and ret_t and ret_t < dep_t:
                    errors.append("Return time cannot be earlier than departure time")

    if body.paymentMethod == "debitCard":
        for field in ("cardNumber", "cardName", "cardExpiry", "cardCVV"):
            if not getattr(body, field):
                errors.append(f"{FIELD_LABELS[field]} is required")

    if body.totalPrice < 0:
        errors.append("Total price must be a non-negative number")
    elif abs(body.totalPrice - body.services_total()) > PRICE_TOLERANCE:
        errors.append(
            f"Total price {body.totalPrice:.2f} does not match selected services ({body.services_total():.2f})"
        )
    return errors


class StatusUpdate(BaseModel):
    status: str


class VerifyPaymentRequest(BaseModel):
    referenceNumber: str
    verificationCode: str


class SelectedServiceOut(BaseModel):
    id: str
    name: str
    price: float
    quantity: int


class BookingOut(BaseModel):
    id: str
    referenceNumber: str
    status: str

    firstName: str
    lastName: str
    email: str
    phone: str
    nationality: str
    passportNumber: str

    flightNumber: str
    airline: str
    tripType: str
    departureDate: date
    departureTime: str
    returnDate: Optional[date] = None
    returnTime: Optional[str] = None

    selectedServices: List[SelectedServiceOut]

    paymentMethod: str
    cardName: Optional[str] = None
    cardLast4: Optional[str] = None
    savePaymentInfo: bool = False
    paymentIntentId: Optional[str] = None
    cardVerified: bool = False
    balanceVerified: bool = False
    isPaymentVerified: bool = False

    totalPrice: float
    currency: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# Response envelopes: {"success", "message", "data"} as read by the booking form client

class BookingCreatedData(BaseModel):
    booking: BookingOut
    referenceNumber: str
    verificationCode: Optional[str] = None
    cardVerified: bool
    balanceVerified: bool


class BookingCreated(BaseModel):
    success: bool = True
    message: str = "Booking created successfully"
    data: BookingCreatedData


class BookingEnvelope(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: BookingOut


class BookingList(BaseModel):
    success: bool = True
    count: int
    data: List[BookingOut]


class VerifiedData(BaseModel):
    booking: BookingOut


class PaymentVerified(BaseModel):
    success: bool = True
    message: str = "Payment verified successfully"
    data: VerifiedData


class MessageOut(BaseModel):
    success: bool = True
    message: str


def to_booking_out(b, currency: str = "usd") -> BookingOut:
    return BookingOut(
        id=b.id,
        referenceNumber=b.reference_number,
        status=b.status,
        firstName=b.first_name,
        lastName=b.last_name,
        email=b.email,
        phone=b.phone,
        nationality=b.nationality,
        passportNumber=b.passport_number,
        flightNumber=b.flight_number,
        airline=b.airline,
        tripType=b.trip_type,
        departureDate=b.departure_date,
        departureTime=b.departure_time,
        returnDate=b.return_date,
        returnTime=b.return_time,
        selectedServices=[
            SelectedServiceOut(id=s.service_id, name=s.name, price=s.unit_price, quantity=s.quantity)
            for s in b.services
        ],
        paymentMethod=b.payment_method,
        cardName=b.card_name,
        cardLast4=b.card_last4,
        savePaymentInfo=bool(b.save_payment_info),
        paymentIntentId=b.payment_intent_id,
        cardVerified=bool(b.card_verified),
        balanceVerified=bool(b.balance_verified),
        isPaymentVerified=bool(b.is_payment_verified),
        totalPrice=b.total_price,
        currency=currency.upper(),
        createdAt=b.created_at,
        updatedAt=b.updated_at,
    )
