"""Express Checkout flow: initiate, redirect, confirm.

Initiate opens a provider session and registers it as pending. Complete looks
the token up locally, fetches the payer, executes the payment with the stored
amount/currency, and drops the record only when the payment succeeds.
"""

from collections.abc import Callable, Mapping
from typing import Any, TypeVar
from urllib.parse import urlencode

from expresspay.common.logging import checkout_context, logger
from expresspay.common.metrics import checkout_completed_total, checkout_failed_total
from expresspay.nvp.client import NvpClient
from expresspay.nvp.codec import NvpMessage, first, format_amount
from expresspay.nvp.errors import BusinessError, DuplicateConfirmationError, ResponseFormatError
from expresspay.services.checkout.registry import TransactionRegistry


SANDBOX_CHECKOUT_URL = "https://www.sandbox.paypal.com/cgi-bin/webscr"
LIVE_CHECKOUT_URL = "https://www.paypal.com/cgi-bin/webscr"
PAYMENT_ACTION = "Sale"

T = TypeVar("T")


class ExpressCheckoutService:
    """Owns the checkout state machine on top of the NVP client and registry."""

    def __init__(
        self,
        client: NvpClient,
        registry: TransactionRegistry,
        return_url: str,
        cancel_url: str,
        currency: str = "USD",
        useraction: str = "commit",
        sandbox: bool = True,
    ) -> None:
        self.client = client
        self.registry = registry
        self.return_url = return_url
        self.cancel_url = cancel_url
        self.currency = currency
        self.useraction = useraction
        self.sandbox = sandbox

    def redirect_url(self, token: str, useraction: str | None = None) -> str:
        """Provider checkout page URL for a token."""

        base = SANDBOX_CHECKOUT_URL if self.sandbox else LIVE_CHECKOUT_URL
        query = urlencode(
            [("cmd", "_express-checkout"), ("token", token), ("useraction", useraction or self.useraction)]
        )
        return f"{base}?{query}"

    def initiate_checkout(
        self,
        amount: Any,
        origin: str,
        *,
        currency: str | None = None,
        return_url: str | None = None,
        cancel_url: str | None = None,
        useraction: str | None = None,
        extra_params: Mapping[str, Any] | None = None,
    ) -> str:
        """Open a provider session, register it, and return the payer redirect URL.

        Provider and registry failures propagate; nothing is registered when
        SetExpressCheckout fails.
        """

        amt = format_amount(amount)
        currency = currency or self.currency
        params: list[tuple[str, Any]] = [
            ("AMT", amt),
            ("CURRENCYCODE", currency),
            ("RETURNURL", return_url or self.return_url),
            ("CANCELURL", cancel_url or self.cancel_url),
            ("PAYMENTACTION", PAYMENT_ACTION),
        ]
        if extra_params:
            params.extend(extra_params.items())

        response = self.client.call("SetExpressCheckout", params)
        token = first(response, "TOKEN")
        if not token:
            raise ResponseFormatError("TOKEN", str(response))
        with checkout_context(token):
            self.registry.register(token, amt, currency, origin)
        return self.redirect_url(token, useraction)

    def complete_checkout(
        self,
        token: str,
        on_success: Callable[[str, str, str, NvpMessage], T],
        on_failure: Callable[[], T],
    ) -> T:
        """Confirm a returning payer's checkout.

        Unknown tokens go straight to `on_failure` without touching the network.
        A declined payment also goes to `on_failure` and leaves the record
        pending. Other provider errors, including DuplicateConfirmationError,
        are raised to the caller. A charged payment always reaches `on_success`
        with the amount registered at initiation, even if the record was swept
        or cleared while the payment call was in flight.
        """

        with checkout_context(token):
            return self._confirm(token, on_success, on_failure)

    def _confirm(
        self,
        token: str,
        on_success: Callable[[str, str, str, NvpMessage], T],
        on_failure: Callable[[], T],
    ) -> T:
        record = self.registry.find(token, required=False) if token else None
        if record is None:
            logger.warning("completion for unknown token")
            checkout_failed_total.inc()
            return on_failure()

        details = self.client.call("GetExpressCheckoutDetails", [("TOKEN", token)])
        payer_id = first(details, "PAYERID")
        if not payer_id:
            raise ResponseFormatError("PAYERID", str(details))

        try:
            result = self.client.call(
                "DoExpressCheckoutPayment",
                [
                    ("TOKEN", token),
                    ("PAYERID", payer_id),
                    ("AMT", record.amount),
                    ("CURRENCYCODE", record.currency),
                    ("PAYMENTACTION", PAYMENT_ACTION),
                ],
            )
        except DuplicateConfirmationError:
            raise
        except BusinessError as exc:
            logger.warning("payment declined codes=%s", exc.error_codes)
            checkout_failed_total.inc()
            return on_failure()

        if self.registry.discard(token) is None:
            logger.warning("pending record gone before payment finished")
        checkout_completed_total.inc()
        logger.info("checkout completed amount=%s %s", record.amount, record.currency)
        return on_success(record.amount, record.currency, token, result)

    def list_active_tokens(self) -> list[str]:
        return self.registry.tokens()

    def clear_all_transactions(self) -> int:
        return self.registry.clear()
