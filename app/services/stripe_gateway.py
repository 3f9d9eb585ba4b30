import logging
from dataclasses import dataclass

import stripe

logger = logging.getLogger(__name__)

CARD_DECLINED = "card_declined"
INVALID_REQUEST = "invalid_request"
PROCESSING_ERROR = "processing_error"


@dataclass
class StripeConfig:
    secret_key: str
    currency: str = "usd"


@dataclass
class Authorization:
    id: str
    status: str  # requires_confirmation, requires_capture, succeeded, canceled, ...


class GatewayConfigError(RuntimeError):
    """Gateway credentials are missing. Raised at startup, never per request."""


class PaymentError(RuntimeError):
    def __init__(self, kind: str, message: str, code: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def _translate(err: stripe.StripeError) -> PaymentError:
    message = getattr(err, "user_message", None) or str(err) or "Payment processing failed"
    code = getattr(err, "code", None)
    if isinstance(err, stripe.CardError):
        return PaymentError(CARD_DECLINED, message, code)
    if isinstance(err, stripe.InvalidRequestError):
        return PaymentError(INVALID_REQUEST, message, code)
    return PaymentError(PROCESSING_ERROR, message, code)


def _authorization(intent) -> Authorization:
    return Authorization(id=str(intent.id), status=str(intent.status))


class StripeGateway:
    """Card payments through Stripe PaymentMethods / PaymentIntents.

    The secret key is passed on every call instead of being set on the
    ``stripe`` module, so one process can hold several gateways.
    """

    def __init__(self, cfg: StripeConfig):
        if not (cfg.secret_key or "").strip():
            raise GatewayConfigError("Stripe API key is missing (set STRIPE_SECRET_KEY)")
        self.cfg = cfg
        self._key = cfg.secret_key.strip()

    def _call(self, op: str, fn, *args, **kwargs):
        try:
            return fn(*args, api_key=self._key, **kwargs)
        except stripe.StripeError as e:
            err = _translate(e)
            logger.warning("Stripe %s failed (%s/%s): %s", op, err.kind, err.code, err.message)
            raise err from e

    def tokenize_card(self, *, number: str, exp_month: int, exp_year: int, cvc: str) -> str:
        pm = self._call(
            "tokenize",
            stripe.PaymentMethod.create,
            type="card",
            card={"number": number, "exp_month": exp_month, "exp_year": exp_year, "cvc": cvc},
        )
        return str(pm.id)

    def authorize(
        self,
        *,
        token: str,
        amount: float,
        currency: str | None = None,
        confirm: bool = False,
        capture_method: str = "manual",
        description: str = "",
        metadata: dict | None = None,
    ) -> Authorization:
        params = {
            "amount": to_minor_units(amount),
            "currency": (currency or self.cfg.currency).lower(),
            "payment_method": token,
            "payment_method_types": ["card"],
            "confirm": bool(confirm),
            "capture_method": capture_method,
        }
        if description:
            params["description"] = description
        if metadata:
            params["metadata"] = metadata
        return _authorization(self._call("authorize", stripe.PaymentIntent.create, **params))

    def confirm_authorization(self, authorization_id: str) -> Authorization:
        return _authorization(self._call("confirm", stripe.PaymentIntent.confirm, authorization_id))

    def cancel_authorization(self, authorization_id: str) -> None:
        self._call("cancel", stripe.PaymentIntent.cancel, authorization_id)

    def capture(
        self,
        *,
        token: str,
        amount: float,
        currency: str | None = None,
        description: str = "",
        metadata: dict | None = None,
    ) -> Authorization:
        """Charge now: create, confirm and capture in one call."""
        return self.authorize(
            token=token,
            amount=amount,
            currency=currency,
            confirm=True,
            capture_method="automatic",
            description=description,
            metadata=metadata,
        )


def build_gateway(settings) -> StripeGateway:
    return StripeGateway(StripeConfig(
        secret_key=settings.STRIPE_SECRET_KEY,
        currency=settings.PAYMENT_CURRENCY,
    ))
