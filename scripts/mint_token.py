# scripts/mint_token.py
import argparse
import os
import time
from datetime import datetime, timezone

from checkin_gate.security import mint_download, mint_live


def main() -> None:
    parser = argparse.ArgumentParser(description="Mint a check-in ticket for manual scanner testing.")
    parser.add_argument("--attendee-id", required=True)
    parser.add_argument("--event-id", required=True)
    parser.add_argument("--ttl-seconds", type=int, default=30)
    parser.add_argument(
        "--download-until",
        help="ISO timestamp; mints a v2dl ticket expiring then instead of a short v1 ticket",
    )
    args = parser.parse_args()

    secret = os.environ.get("QR_TOKEN_SECRET", "")
    if not secret:
        parser.error("QR_TOKEN_SECRET must be set")

    now = int(time.time())
    if args.download_until:
        until = datetime.fromisoformat(args.download_until)
        if until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        token, exp = mint_download(args.attendee_id, args.event_id, secret, now, int(until.timestamp()))
    else:
        token, exp = mint_live(args.attendee_id, args.event_id, secret, now, args.ttl_seconds)

    print(token)
    print(f"expires_at={exp}")


if __name__ == "__main__":
    main()
