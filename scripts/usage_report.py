"""Print per-channel quota usage and recent delivery outcomes from a running engine."""

import argparse
from collections import Counter

import httpx


def main() -> None:
    """CLI entrypoint for quota checks."""

    parser = argparse.ArgumentParser(description="Summarize GET /usage and GET /deliveries.")
    parser.add_argument("--engine-url", default="http://localhost:8000")
    parser.add_argument("--recent", type=int, default=200)
    args = parser.parse_args()

    with httpx.Client(base_url=args.engine_url, timeout=10.0) as client:
        usage = client.get("/usage")
        usage.raise_for_status()
        recent = client.get("/deliveries", params={"limit": args.recent})
        recent.raise_for_status()

    print(f"{'channel':<12} {'today':>12} {'month':>14} {'est. cost':>10}")
    for row in usage.json():
        print(
            f"{row['channel']:<12} "
            f"{row['daily_count']:>5}/{row['daily_cap']:<6} "
            f"{row['monthly_count']:>6}/{row['monthly_cap']:<7} "
            f"{row['estimated_cost']:>10.4f}"
        )

    outcomes = Counter((a["channel"], a["status"]) for a in recent.json())
    print(f"\nlast {args.recent} attempts:")
    for (channel, status), count in sorted(outcomes.items()):
        print(f"  {channel:<12} {status:<7} {count}")


if __name__ == "__main__":
    main()
