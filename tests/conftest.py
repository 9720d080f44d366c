"""Shared fixtures: provider environment, scripted transport, controllable clock."""

import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("NVP_USER", "merchant_api1.example.com")
os.environ.setdefault("NVP_PASSWORD", "test-password")
os.environ.setdefault("NVP_SIGNATURE", "test-signature")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

import pytest

from expresspay.nvp.client import NvpClient
from expresspay.nvp.codec import decode
from expresspay.services.checkout.registry import TransactionRegistry
from expresspay.services.checkout.service import ExpressCheckoutService


ENDPOINT = "https://api-3t.sandbox.paypal.com/nvp"


class FakeTransport:
    """Replays scripted (status, body) replies and records every request."""

    def __init__(self, replies=None) -> None:
        self.replies = list(replies or [])
        self.requests: list[tuple[str, str]] = []

    def queue(self, body: str, status: int = 200) -> None:
        self.replies.append((status, body))

    def post(self, url: str, body: str) -> tuple[int, str]:
        self.requests.append((url, body))
        if not self.replies:
            raise AssertionError(f"unexpected provider call: {body}")
        return self.replies.pop(0)

    def sent(self, index: int = -1) -> dict:
        """Decoded form of one recorded request body."""

        return decode(self.requests[index][1])


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def nvp_client(transport):
    return NvpClient(
        transport,
        endpoint_url=ENDPOINT,
        user="merchant_api1.example.com",
        password="test-password",
        signature="test-signature",
        version="63.0",
    )


@pytest.fixture
def registry(clock):
    return TransactionRegistry(
        max_active=5,
        max_lifetime=timedelta(minutes=30),
        max_per_origin=3,
        clock=clock,
    )


@pytest.fixture
def checkout(nvp_client, registry):
    return ExpressCheckoutService(
        nvp_client,
        registry,
        return_url="https://shop.example.com/return",
        cancel_url="https://shop.example.com/cancel",
    )
