"""Send one notification through a running engine, pinned to a single channel."""

import argparse
import json
from uuid import uuid4

import httpx


def parse_fields(pairs: list[str]) -> dict[str, str]:
    fields = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise SystemExit(f"expected key=value, got {pair!r}")
        fields[key] = value
    return fields


def main() -> None:
    """CLI entrypoint for manual channel checks."""

    parser = argparse.ArgumentParser(description="Send a test notification via POST /notifications.")
    parser.add_argument("--engine-url", default="http://localhost:8000")
    parser.add_argument("--kind", default="appointment_confirmation")
    parser.add_argument("--channel", required=True, help="sms, sms_backup or email")
    parser.add_argument("--phone")
    parser.add_argument("--email")
    parser.add_argument("--name", default="Test Customer")
    parser.add_argument("--field", action="append", default=[], help="payload field as key=value")
    parser.add_argument("--dedup-key", default=None, help="defaults to a random key")
    args = parser.parse_args()

    payload = {
        "customer_name": args.name,
        "date": "Monday, May 6, 2024",
        "time": "2:30 PM",
        "artist_name": "Sam",
        "amount": "50.00",
    }
    payload.update(parse_fields(args.field))
    body = {
        "kind": args.kind,
        "dedup_key": args.dedup_key or f"manual-test:{uuid4()}",
        "phone": args.phone,
        "email": args.email,
        "recipient_name": args.name,
        "payload": payload,
        "channel_preference": [args.channel],
    }
    resp = httpx.post(f"{args.engine_url}/notifications", json=body, timeout=60.0)
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
