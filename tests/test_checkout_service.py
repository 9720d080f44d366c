"""Express Checkout flow tests against a scripted provider."""

from urllib.parse import parse_qs, urlparse

import pytest

from expresspay.nvp.errors import (
    BusinessError,
    DuplicateConfirmationError,
    RateLimitExceededError,
    ResponseFormatError,
    TransportError,
)

DETAILS_OK = "ACK=Success&TOKEN=EC-1&PAYERID=PAYER42&EMAIL=buyer%40example.com&AMT=999.00&CURRENCYCODE=JPY"
PAYMENT_OK = "ACK=Success&TOKEN=EC-1&TRANSACTIONID=TX-7&AMT=10.00"


def record_success(amount, currency, token, result):
    return ("success", amount, currency, token, result)


def record_failure():
    return "failure"


def test_initiate_formats_amount_and_registers(checkout, transport, registry):
    """Amount 10 goes out as 10.00 and is stored the same way."""

    transport.queue("ACK=Success&TOKEN=EC-1")

    url = checkout.initiate_checkout(10, "10.0.0.1")

    sent = transport.sent()
    assert sent["METHOD"] == "SetExpressCheckout"
    assert sent["AMT"] == "10.00"
    assert sent["CURRENCYCODE"] == "USD"
    assert sent["RETURNURL"] == "https://shop.example.com/return"
    assert sent["CANCELURL"] == "https://shop.example.com/cancel"
    assert sent["PAYMENTACTION"] == "Sale"
    record = registry.find("EC-1")
    assert (record.amount, record.currency, record.origin) == ("10.00", "USD", "10.0.0.1")

    parsed = urlparse(url)
    assert parsed.netloc == "www.sandbox.paypal.com"
    assert parse_qs(parsed.query) == {"cmd": ["_express-checkout"], "token": ["EC-1"], "useraction": ["commit"]}


def test_initiate_overrides_and_extra_fields(checkout, transport):
    transport.queue("ACK=Success&TOKEN=EC-9")

    url = checkout.initiate_checkout(
        "5.5",
        "10.0.0.1",
        currency="EUR",
        useraction="continue",
        extra_params={"DESC": "Blue mug"},
    )

    sent = transport.sent()
    assert (sent["AMT"], sent["CURRENCYCODE"], sent["DESC"]) == ("5.50", "EUR", "Blue mug")
    assert "useraction=continue" in url


def test_production_redirect_host(checkout):
    checkout.sandbox = False
    assert checkout.redirect_url("EC-1").startswith("https://www.paypal.com/cgi-bin/webscr?")


def test_initiate_failure_registers_nothing(checkout, transport, registry):
    transport.queue("ACK=Failure&L_ERRORCODE0=10001")

    with pytest.raises(BusinessError):
        checkout.initiate_checkout(10, "10.0.0.1")
    assert registry.tokens() == []


def test_initiate_without_token_is_format_error(checkout, transport, registry):
    transport.queue("ACK=Success")

    with pytest.raises(ResponseFormatError) as exc_info:
        checkout.initiate_checkout(10, "10.0.0.1")
    assert exc_info.value.field == "TOKEN"
    assert registry.tokens() == []


def test_initiate_rejects_bad_amount_before_network(checkout, transport):
    with pytest.raises(ValueError):
        checkout.initiate_checkout("ten", "10.0.0.1")
    assert transport.requests == []


def test_initiate_rate_limit_propagates(checkout, transport, registry):
    for i in range(3):
        transport.queue(f"ACK=Success&TOKEN=EC-{i}")
        checkout.initiate_checkout(1, "10.0.0.1")
    transport.queue("ACK=Success&TOKEN=EC-3")

    with pytest.raises(RateLimitExceededError):
        checkout.initiate_checkout(1, "10.0.0.1")
    assert registry.find("EC-3", required=False) is None


def test_complete_unknown_token_skips_network(checkout, transport):
    """Forged or replayed tokens get the failure callback and no provider call."""

    assert checkout.complete_checkout("EC-forged", record_success, record_failure) == "failure"
    assert checkout.complete_checkout("", record_success, record_failure) == "failure"
    assert transport.requests == []


def test_complete_success_uses_registered_amount(checkout, transport, registry):
    """The details call's amount/currency are ignored in favour of the stored record."""

    registry.register("EC-1", "10.00", "USD", "10.0.0.1")
    transport.queue(DETAILS_OK)
    transport.queue(PAYMENT_OK)

    outcome = checkout.complete_checkout("EC-1", record_success, record_failure)

    assert outcome[:4] == ("success", "10.00", "USD", "EC-1")
    assert outcome[4]["TRANSACTIONID"] == "TX-7"
    details_req, payment_req = transport.sent(0), transport.sent(1)
    assert details_req["METHOD"] == "GetExpressCheckoutDetails"
    assert details_req["TOKEN"] == "EC-1"
    assert payment_req["METHOD"] == "DoExpressCheckoutPayment"
    assert (payment_req["TOKEN"], payment_req["PAYERID"]) == ("EC-1", "PAYER42")
    assert (payment_req["AMT"], payment_req["CURRENCYCODE"]) == ("10.00", "USD")
    assert payment_req["PAYMENTACTION"] == "Sale"
    assert registry.find("EC-1", required=False) is None
    assert registry.origin_count("10.0.0.1") == 0


def test_declined_payment_keeps_record_pending(checkout, transport, registry):
    registry.register("EC-1", "10.00", "USD", "10.0.0.1")
    transport.queue(DETAILS_OK)
    transport.queue("ACK=Failure&L_ERRORCODE0=10417&L_SHORTMESSAGE0=Declined")

    assert checkout.complete_checkout("EC-1", record_success, record_failure) == "failure"
    assert registry.find("EC-1").amount == "10.00"

    # A later retry can still succeed.
    transport.queue(DETAILS_OK)
    transport.queue(PAYMENT_OK)
    assert checkout.complete_checkout("EC-1", record_success, record_failure)[0] == "success"
    assert checkout.list_active_tokens() == []


def test_duplicate_confirmation_propagates(checkout, transport, registry):
    registry.register("EC-1", "10.00", "USD", "10.0.0.1")
    transport.queue(DETAILS_OK)
    transport.queue("ACK=Failure&L_ERRORCODE0=10415")

    with pytest.raises(DuplicateConfirmationError):
        checkout.complete_checkout("EC-1", record_success, record_failure)
    assert registry.find("EC-1", required=False) is not None


def test_details_failure_propagates(checkout, transport, registry):
    registry.register("EC-1", "10.00", "USD", "10.0.0.1")
    transport.queue("ACK=Failure&L_ERRORCODE0=10410")

    with pytest.raises(BusinessError):
        checkout.complete_checkout("EC-1", record_success, record_failure)
    assert len(transport.requests) == 1


def test_payment_transport_error_propagates(checkout, transport, registry):
    registry.register("EC-1", "10.00", "USD", "10.0.0.1")
    transport.queue(DETAILS_OK)
    transport.queue("oops", status=500)

    with pytest.raises(TransportError):
        checkout.complete_checkout("EC-1", record_success, record_failure)
    assert registry.find("EC-1", required=False) is not None


def test_details_without_payer_is_format_error(checkout, transport, registry):
    registry.register("EC-1", "10.00", "USD", "10.0.0.1")
    transport.queue("ACK=Success&TOKEN=EC-1")

    with pytest.raises(ResponseFormatError) as exc_info:
        checkout.complete_checkout("EC-1", record_success, record_failure)
    assert exc_info.value.field == "PAYERID"


def test_clear_all_transactions(checkout, registry):
    registry.register("EC-1", "10.00", "USD", "a")
    registry.register("EC-2", "10.00", "USD", "b")

    assert checkout.clear_all_transactions() == 2
    assert checkout.list_active_tokens() == []


class RegistryChurnTransport:
    """Runs a side effect on the registry while the payment call is in flight."""

    def __init__(self, inner, side_effect) -> None:
        self.inner = inner
        self.side_effect = side_effect

    def post(self, url, body):
        if "DoExpressCheckoutPayment" in body:
            self.side_effect()
        return self.inner.post(url, body)


def test_record_swept_during_payment_still_succeeds(checkout, transport, registry, clock):
    """A charged payment reaches on_success even if a concurrent sweep evicted the record."""

    registry.register("EC-1", "10.00", "USD", "10.0.0.1")
    for i in range(4):
        registry.register(f"EC-fill-{i}", "1.00", "USD", f"10.0.1.{i}")
    clock.advance(minutes=31)
    checkout.client.transport = RegistryChurnTransport(
        transport, lambda: registry.register("EC-other", "1.00", "USD", "10.0.0.9")
    )
    transport.queue(DETAILS_OK)
    transport.queue(PAYMENT_OK)

    outcome = checkout.complete_checkout("EC-1", record_success, record_failure)

    assert outcome[:4] == ("success", "10.00", "USD", "EC-1")
    assert registry.tokens() == ["EC-other"]
    assert registry.origin_count("10.0.0.1") == 0


def test_record_cleared_during_payment_still_succeeds(checkout, transport, registry):
    registry.register("EC-1", "10.00", "USD", "10.0.0.1")
    checkout.client.transport = RegistryChurnTransport(transport, checkout.clear_all_transactions)
    transport.queue(DETAILS_OK)
    transport.queue(PAYMENT_OK)

    outcome = checkout.complete_checkout("EC-1", record_success, record_failure)

    assert outcome[:4] == ("success", "10.00", "USD", "EC-1")
    assert checkout.list_active_tokens() == []
