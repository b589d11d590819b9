"""Trigger failed-notification recovery, or resend one notification.

Both operations create new log rows; the original FAILED rows are kept as
history.
"""

import argparse

import httpx


def list_failed(client: httpx.Client, base_url: str) -> int:
    resp = client.get(f"{base_url}/api/v1/notifications/failed")
    resp.raise_for_status()
    rows = resp.json()
    for row in rows:
        print(f"{row['id']} channel={row['channel']} recipient={row['recipient']} retry_count={row['retry_count']}")
    print(f"eligible={len(rows)}")
    return 0


def trigger_recovery(client: httpx.Client, base_url: str, api_key: str) -> int:
    resp = client.post(f"{base_url}/api/v1/notifications/retry-failed", headers={"x-api-key": api_key})
    resp.raise_for_status()
    details = resp.json().get("details", {})
    print(
        f"candidates={details.get('candidates')} succeeded={details.get('succeeded')} "
        f"failed={details.get('failed')} skipped={details.get('skipped')}"
    )
    return 0 if not details.get("failed") else 1


def resend(client: httpx.Client, base_url: str, api_key: str, notification_id: str) -> int:
    resp = client.post(
        f"{base_url}/api/v1/notifications/{notification_id}/resend",
        headers={"x-api-key": api_key},
    )
    if resp.status_code == 404:
        print(f"Notification {notification_id} not found.")
        return 2
    resp.raise_for_status()
    body = resp.json()
    print(body["message"])
    return 0 if body["success"] else 1


def main() -> None:
    """CLI entrypoint for operator-driven recovery."""

    parser = argparse.ArgumentParser(description="Replay failed notifications.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="dev-secret")
    parser.add_argument("--id", dest="notification_id", default=None, help="resend this one notification")
    parser.add_argument("--dry-run", action="store_true", help="only list rows eligible for recovery")
    parser.add_argument("--timeout-seconds", type=float, default=120.0)
    args = parser.parse_args()

    with httpx.Client(timeout=args.timeout_seconds) as client:
        if args.dry_run:
            rc = list_failed(client, args.base_url)
        elif args.notification_id:
            rc = resend(client, args.base_url, args.api_key, args.notification_id)
        else:
            rc = trigger_recovery(client, args.base_url, args.api_key)
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
