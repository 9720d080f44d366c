"""Name/value-pair wire codec.

Requests are flat `application/x-www-form-urlencoded` bodies. Responses use
the same encoding, with repeated fields spelled `L_<NAME><index>`; decoding
folds those back into ordered lists keyed by `<NAME>`.
"""

import re
from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from urllib.parse import quote_plus, unquote_plus

from expresspay.nvp.errors import ResponseFormatError


NvpMessage = dict[str, str | list[str]]

LIST_FIELD_RE = re.compile(r"^L_(.+?)(\d+)$")
CENTS = Decimal("0.01")


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, float):
        # repr() gives the shortest round-tripping form, never locale-dependent.
        return repr(value)
    return str(value)


def encode(pairs: Iterable[tuple[str, Any]] | Mapping[str, Any]) -> str:
    """Encode ordered (name, value) pairs into an NVP request body."""

    if isinstance(pairs, Mapping):
        pairs = pairs.items()
    return "&".join(
        f"{quote_plus(name)}={quote_plus(_to_text(value))}" for name, value in pairs if value is not None
    )


def decode(body: str | bytes) -> NvpMessage:
    """Decode an NVP response body, folding `L_` fields into lists.

    Indexed fields must arrive zero-based and contiguous per name; the first
    index that is not the next expected position raises ResponseFormatError.
    """

    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ResponseFormatError("<body>", body.decode("utf-8", errors="replace")) from exc
    message: NvpMessage = {}
    for segment in body.split("&"):
        if not segment:
            continue
        raw_name, _, raw_value = segment.partition("=")
        name = unquote_plus(raw_name, encoding="utf-8")
        value = unquote_plus(raw_value, encoding="utf-8")
        match = LIST_FIELD_RE.match(name)
        if match is None:
            message[name] = value
            continue
        field, index = match.group(1), int(match.group(2))
        items = message.get(field)
        if not isinstance(items, list):
            items = []
        if index != len(items):
            raise ResponseFormatError(name, body)
        items.append(value)
        message[field] = items
    return message


def first(message: Mapping[str, str | list[str]], name: str) -> str | None:
    """Return a scalar field, or the first element of a list field."""

    value = message.get(name)
    if isinstance(value, list):
        return value[0] if value else None
    return value


def format_amount(value: Any) -> str:
    """Format an amount with exactly two fraction digits, rounding half-up."""

    try:
        amount = Decimal(_to_text(value))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"invalid amount: {value!r}")
    return f"{amount.quantize(CENTS, rounding=ROUND_HALF_UP):f}"
