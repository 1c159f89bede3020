"""Print delivery backlog stats, optionally polling until the queue drains."""

import argparse
import time

import httpx


def fetch_stats(base_url: str) -> dict:
    resp = httpx.get(f"{base_url}/internal/deliveries/stats", timeout=10.0)
    resp.raise_for_status()
    return resp.json()


def format_stats(stats: dict) -> str:
    counts = stats["counts"]
    parts = [f"{status}={counts.get(status, 0)}" for status in ("pending", "processing", "sent", "failed")]
    oldest = stats.get("oldest_pending_created_at") or "-"
    return " ".join(parts) + f" oldest_pending={oldest}"


def main() -> None:
    """CLI entrypoint for backlog checks."""

    parser = argparse.ArgumentParser(description="Show notification delivery backlog.")
    parser.add_argument("--base-url", default="http://localhost:8005")
    parser.add_argument("--watch", action="store_true", help="Poll until nothing is pending or processing")
    parser.add_argument("--interval-seconds", type=float, default=2.0)
    args = parser.parse_args()

    while True:
        stats = fetch_stats(args.base_url)
        print(format_stats(stats))
        backlog = stats["counts"].get("pending", 0) + stats["counts"].get("processing", 0)
        if not args.watch or backlog == 0:
            break
        time.sleep(args.interval_seconds)


if __name__ == "__main__":
    main()
