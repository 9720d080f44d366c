"""Start many checkouts from one client to trigger the per-origin limit."""

import argparse
import asyncio
from uuid import uuid4

import httpx


async def main() -> None:
    """CLI entrypoint for burst checkout smoke tests."""

    parser = argparse.ArgumentParser(description="Start many checkouts from the same origin.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--amount", default="10.00")
    parser.add_argument("--currency", default="USD")
    parser.add_argument("--count", type=int, default=20)
    args = parser.parse_args()

    statuses: dict[int, int] = {}
    async with httpx.AsyncClient(timeout=10.0, follow_redirects=False) as client:
        for _ in range(args.count):
            resp = await client.get(
                f"{args.base_url}/checkout",
                params={"amount": args.amount, "currency": args.currency},
                headers={"x-correlation-id": str(uuid4())},
            )
            statuses[resp.status_code] = statuses.get(resp.status_code, 0) + 1
            print(resp.status_code, resp.headers.get("location") or resp.text)

    print("status_counts=", statuses)


if __name__ == "__main__":
    asyncio.run(main())
