#!/usr/bin/env python3
"""
Trigger a user-similarity rebuild on a running API.

Meant for operators and external cron runners; the API also rebuilds on its
own daily schedule. Exits non-zero when the rebuild is rejected or fails.

  BACKEND_URL=http://localhost:8000 UPDATE_SECRET=... python scripts/update_similarity.py
"""
import argparse
import json
import os
import sys
import urllib.error
import urllib.request


def update_similarity(backend_url: str, secret: str, timeout: float) -> int:
    url = f"{backend_url.rstrip('/')}/update-similarity"
    print(f"Requesting similarity rebuild at {url} ...")
    req = urllib.request.Request(
        url,
        data=b"{}",
        headers={"Content-Type": "application/json", "X-Update-Secret": secret},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = json.loads(resp.read() or b"{}")
            print(f"Rebuild finished: HTTP {resp.status} {body}")
            return 0
    except urllib.error.HTTPError as e:
        print(f"Rebuild failed: HTTP {e.code} {e.read().decode()}", file=sys.stderr)
    except urllib.error.URLError as e:
        print(f"API unreachable: {e.reason}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rebuild the user-similarity relation")
    parser.add_argument(
        "--backend-url",
        default=os.environ.get("BACKEND_URL", "http://localhost:8000"),
    )
    parser.add_argument("--secret", default=os.environ.get("UPDATE_SECRET"))
    # Full rebuilds are O(n²); give them room
    parser.add_argument("--timeout", type=float, default=600.0)
    args = parser.parse_args()

    if not args.secret:
        parser.error("UPDATE_SECRET is not set (pass --secret or export it)")
    sys.exit(update_similarity(args.backend_url, args.secret, args.timeout))
