"""Failure taxonomy for NVP provider calls and the checkout registry.

Every error derives from `ProviderError` so callers can catch broadly, or
narrowly on one refinement.
"""

from typing import Any


class ProviderError(Exception):
    """Root of all checkout failures."""


class TransportError(ProviderError):
    """Provider answered with a non-200 status, or could not be reached."""

    def __init__(self, status: int | None, body: str) -> None:
        super().__init__(f"provider transport failure status={status}")
        self.status = status
        self.body = body


class ResponseFormatError(ProviderError):
    """Response body violated the NVP list-field ordering rules."""

    def __init__(self, field: str, raw: str) -> None:
        super().__init__(f"malformed provider response at {field}")
        self.field = field
        self.raw = raw


class BusinessError(ProviderError):
    """Provider processed the call but ACK was not Success."""

    def __init__(self, response: dict[str, Any]) -> None:
        super().__init__(f"provider rejected call ack={response.get('ACK')} codes={response.get('ERRORCODE')}")
        self.response = response

    @property
    def error_codes(self) -> list[str]:
        codes = self.response.get("ERRORCODE", [])
        return codes if isinstance(codes, list) else [codes]

    @property
    def message(self) -> str:
        for name in ("LONGMESSAGE", "SHORTMESSAGE"):
            value = self.response.get(name)
            if isinstance(value, list) and value:
                return value[0]
            if isinstance(value, str):
                return value
        return "payment provider rejected the request"


class DuplicateConfirmationError(BusinessError):
    """Payment for this token was already confirmed with the provider."""


class RegistryError(ProviderError):
    """Local transaction registry failure; never involves the network."""


class RegistrationConflictError(RegistryError):
    def __init__(self, token: str) -> None:
        super().__init__(f"transaction already pending token={token}")
        self.token = token


class RateLimitExceededError(RegistryError):
    def __init__(self, origin: str, limit: int) -> None:
        super().__init__(f"too many pending transactions origin={origin} limit={limit}")
        self.origin = origin
        self.limit = limit


class TransactionNotFoundError(RegistryError):
    def __init__(self, token: str) -> None:
        super().__init__(f"no pending transaction token={token}")
        self.token = token
