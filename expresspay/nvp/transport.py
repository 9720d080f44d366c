from __future__ import annotations

from types import TracebackType
from typing import Optional, Protocol, Type

import httpx

from expresspay.nvp.errors import TransportError


FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class Transport(Protocol):
    """Anything able to POST an encoded form body and hand back status + text."""

    def post(self, url: str, body: str) -> tuple[int, str]: ...


class HttpxTransport:
    """Synchronous form POST transport around httpx.

    - Applies a default timeout.
    - Converts connection failures and timeouts into TransportError.
    - Leaves status interpretation to the caller.
    """

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.Client] = None) -> None:
        self._client = client or httpx.Client(timeout=timeout)

    def post(self, url: str, body: str) -> tuple[int, str]:
        try:
            resp = self._client.post(url, content=body, headers={"Content-Type": FORM_CONTENT_TYPE})
        except httpx.HTTPError as exc:
            raise TransportError(None, str(exc)) from exc
        return resp.status_code, resp.text

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpxTransport":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        self.close()
