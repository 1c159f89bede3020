"""Queue a test notification for one or more users through the internal API.

Useful for checking a device end to end: register a subscription from the
client, run this, and watch the worker logs.
"""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for manual push smoke tests."""

    parser = argparse.ArgumentParser(description="Enqueue a push notification via the notification service.")
    parser.add_argument("--base-url", default="http://localhost:8005")
    parser.add_argument("--user-id", action="append", required=True, help="Repeat for a bulk enqueue")
    parser.add_argument("--title", default="Test notification")
    parser.add_argument("--body", default="Hello from the push queue")
    parser.add_argument("--navigate", default=None, help="Client route opened on tap")
    parser.add_argument("--metadata", default=None, help="Opaque metadata string (usually JSON)")
    args = parser.parse_args()

    payload = {
        "title": args.title,
        "body": args.body,
        "metadata": args.metadata,
        "navigate_target": args.navigate,
    }
    if len(args.user_id) == 1:
        resp = httpx.post(
            f"{args.base_url}/internal/notifications",
            json={"user_id": args.user_id[0], "payload": payload},
            timeout=10.0,
        )
    else:
        resp = httpx.post(
            f"{args.base_url}/internal/notifications/bulk",
            json={"user_ids": args.user_id, "payload": payload},
            timeout=10.0,
        )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
