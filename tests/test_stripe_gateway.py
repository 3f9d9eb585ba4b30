from types import SimpleNamespace

import pytest
import stripe

from app.services.stripe_gateway import (
    CARD_DECLINED,
    INVALID_REQUEST,
    PROCESSING_ERROR,
    GatewayConfigError,
    PaymentError,
    StripeConfig,
    StripeGateway,
    build_gateway,
    to_minor_units,
)


@pytest.fixture
def gw():
    return StripeGateway(StripeConfig(secret_key="sk_test_abc"))


def _recorder(result):
    calls = []

    def fn(*args, **kwargs):
        calls.append((args, kwargs))
        return result
    return fn, calls


def test_missing_key_is_a_config_error():
    with pytest.raises(GatewayConfigError):
        StripeGateway(StripeConfig(secret_key=""))
    with pytest.raises(GatewayConfigError):
        build_gateway(SimpleNamespace(STRIPE_SECRET_KEY="  ", PAYMENT_CURRENCY="usd"))


def test_config_error_is_not_a_payment_error():
    assert not issubclass(GatewayConfigError, PaymentError)


def test_minor_units():
    assert to_minor_units(50) == 5000
    assert to_minor_units(19.99) == 1999
    assert to_minor_units(0.1 + 0.2) == 30


def test_tokenize_card(gw, monkeypatch):
    fn, calls = _recorder(SimpleNamespace(id="pm_1"))
    monkeypatch.setattr(stripe.PaymentMethod, "create", fn)

    token = gw.tokenize_card(number="4242424242424242", exp_month=12, exp_year=2026, cvc="123")

    assert token == "pm_1"
    _, kwargs = calls[0]
    assert kwargs["api_key"] == "sk_test_abc"
    assert kwargs["type"] == "card"
    assert kwargs["card"] == {"number": "4242424242424242", "exp_month": 12, "exp_year": 2026, "cvc": "123"}


def test_authorize_is_manual_capture_in_minor_units(gw, monkeypatch):
    fn, calls = _recorder(SimpleNamespace(id="pi_1", status="requires_confirmation"))
    monkeypatch.setattr(stripe.PaymentIntent, "create", fn)

    auth = gw.authorize(token="pm_1", amount=50.5, metadata={"customer_email": "a@b.co"})

    assert (auth.id, auth.status) == ("pi_1", "requires_confirmation")
    _, kwargs = calls[0]
    assert kwargs["amount"] == 5050
    assert kwargs["currency"] == "usd"
    assert kwargs["payment_method"] == "pm_1"
    assert kwargs["confirm"] is False
    assert kwargs["capture_method"] == "manual"
    assert kwargs["metadata"] == {"customer_email": "a@b.co"}


def test_capture_confirms_with_automatic_capture(gw, monkeypatch):
    fn, calls = _recorder(SimpleNamespace(id="pi_2", status="succeeded"))
    monkeypatch.setattr(stripe.PaymentIntent, "create", fn)

    auth = gw.capture(token="pm_1", amount=180, currency="USD", description="Payment for booking HALA-20250601-1234")

    assert auth.status == "succeeded"
    _, kwargs = calls[0]
    assert kwargs["confirm"] is True
    assert kwargs["capture_method"] == "automatic"
    assert kwargs["amount"] == 18000
    assert kwargs["currency"] == "usd"
    assert kwargs["description"] == "Payment for booking HALA-20250601-1234"


def test_confirm_and_cancel_use_intent_id(gw, monkeypatch):
    confirm, confirm_calls = _recorder(SimpleNamespace(id="pi_1", status="requires_capture"))
    cancel, cancel_calls = _recorder(SimpleNamespace(id="pi_1", status="canceled"))
    monkeypatch.setattr(stripe.PaymentIntent, "confirm", confirm)
    monkeypatch.setattr(stripe.PaymentIntent, "cancel", cancel)

    assert gw.confirm_authorization("pi_1").status == "requires_capture"
    assert gw.cancel_authorization("pi_1") is None

    assert confirm_calls[0] == (("pi_1",), {"api_key": "sk_test_abc"})
    assert cancel_calls[0] == (("pi_1",), {"api_key": "sk_test_abc"})


@pytest.mark.parametrize("error, kind", [
    (stripe.CardError("Your card was declined.", "number", "card_declined"), CARD_DECLINED),
    (stripe.InvalidRequestError("Invalid card number", "card[number]", "invalid_number"), INVALID_REQUEST),
    (stripe.APIConnectionError("Network error"), PROCESSING_ERROR),
])
def test_provider_errors_are_classified(gw, monkeypatch, error, kind):
    def boom(*args, **kwargs):
        raise error
    monkeypatch.setattr(stripe.PaymentMethod, "create", boom)

    with pytest.raises(PaymentError) as exc:
        gw.tokenize_card(number="4000000000000002", exp_month=1, exp_year=2030, cvc="999")

    assert exc.value.kind == kind
    assert exc.value.message
    assert exc.value.__cause__ is error


def test_card_error_keeps_provider_message_and_code(gw, monkeypatch):
    def boom(*args, **kwargs):
        raise stripe.CardError("Your card has insufficient funds.", None, "card_declined")
    monkeypatch.setattr(stripe.PaymentIntent, "confirm", boom)

    with pytest.raises(PaymentError) as exc:
        gw.confirm_authorization("pi_1")

    assert exc.value.message == "Your card has insufficient funds."
    assert exc.value.code == "card_declined"
