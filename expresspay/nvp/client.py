"""NVP operation client.

One call is one synchronous round trip: fixed auth/version fields first, then
the caller's fields in order. Non-200 statuses, malformed bodies and non-Success
ACKs are raised as the matching ProviderError refinement. No retries.
"""

from collections.abc import Iterable, Mapping
from time import perf_counter
from typing import Any

from expresspay.common.logging import logger
from expresspay.common.metrics import provider_request_duration_seconds, provider_requests_total
from expresspay.common.tracing import provider_span
from expresspay.nvp.codec import NvpMessage, decode, encode, first
from expresspay.nvp.errors import BusinessError, DuplicateConfirmationError, TransportError
from expresspay.nvp.transport import Transport


# Provider code for "a previous transaction with this token already completed".
DUPLICATE_CONFIRMATION_CODE = "10415"


class NvpClient:
    """Issues named operations against the provider's NVP endpoint."""

    def __init__(
        self,
        transport: Transport,
        endpoint_url: str,
        user: str,
        password: str,
        signature: str,
        version: str,
    ) -> None:
        self.transport = transport
        self.endpoint_url = endpoint_url
        self.user = user
        self.password = password
        self.signature = signature
        self.version = version

    def _fixed_params(self, method: str) -> list[tuple[str, Any]]:
        return [
            ("METHOD", method),
            ("VERSION", self.version),
            ("USER", self.user),
            ("PWD", self.password),
            ("SIGNATURE", self.signature),
        ]

    def call(
        self,
        method: str,
        params: Iterable[tuple[str, Any]] | Mapping[str, Any] = (),
    ) -> NvpMessage:
        """Run one provider operation and return the decoded response on Success."""

        if isinstance(params, Mapping):
            params = params.items()
        body = encode(self._fixed_params(method) + list(params))

        outcome = "error"
        start = perf_counter()
        try:
            with provider_span(method, self.endpoint_url) as span:
                status, text = self.transport.post(self.endpoint_url, body)
                span.set_attribute("http.response.status_code", status)
                if status != 200:
                    outcome = "transport_error"
                    logger.error("provider call failed method=%s status=%s", method, status)
                    raise TransportError(status, text)

                response = decode(text)
                ack = first(response, "ACK") or ""
                span.set_attribute("nvp.ack", ack)
                if ack.lower() != "success":
                    codes = response.get("ERRORCODE")
                    code = codes[0] if isinstance(codes, list) and codes else codes
                    if code == DUPLICATE_CONFIRMATION_CODE:
                        outcome = "duplicate"
                        logger.warning("provider reports duplicate confirmation method=%s", method)
                        raise DuplicateConfirmationError(response)
                    outcome = "business_error"
                    logger.warning("provider rejected call method=%s ack=%s code=%s", method, ack, code)
                    raise BusinessError(response)

                outcome = "success"
                logger.info("provider call ok method=%s", method)
                return response
        finally:
            provider_requests_total.labels(method=method, outcome=outcome).inc()
            provider_request_duration_seconds.labels(method=method).observe(max(0.0, perf_counter() - start))
