#!/usr/bin/env python3
"""
Seed script — creates a small subscription platform to exercise the
recommendation engine end to end.

Creates:
  • 6 creators, each with 4 free posts and 2 paid posts
  • 12 subscribers, each subscribed to 1-3 creators
  • Ratings from every subscriber for 2-4 creators
  • A few hundred post views so the popularity fallback has data
Then triggers a similarity rebuild and prints recommendations for one user.

Run after the API is up:
  python scripts/seed_data.py --api-url http://localhost:8000 --secret $UPDATE_SECRET
"""
import argparse
import json
import os
import random
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional


CREATORS = [
    ("mila_draws", "Mila Orlova", "art"),
    ("chef_tim", "Tim Baker", "cooking"),
    ("lift_with_ana", "Ana Ruiz", "fitness"),
    ("synth_sasha", "Sasha Ivanov", "music"),
    ("code_kai", "Kai Tanaka", "programming"),
    ("trail_nora", "Nora Berg", "travel"),
]

SAMPLE_TITLES = [
    "Behind the scenes",
    "Weekly update",
    "Q&A answers",
    "Work in progress",
    "My favourite tools",
    "Lessons from this month",
    "A small announcement",
    "Sketchbook dump",
]

N_SUBSCRIBERS = 12


@dataclass
class ApiClient:
    base_url: str

    def request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        url = f"{self.base_url}{path}"
        body = json.dumps(data).encode() if data is not None else None
        req = urllib.request.Request(
            url,
            data=body,
            headers={"Content-Type": "application/json", **(headers or {})},
            method=method,
        )
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                raw = resp.read()
                return json.loads(raw) if raw else {}
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on {method} {path}: {e.read().decode()}")
            return {}

    def as_user(self, user_id: int) -> dict:
        return {"X-User-Id": str(user_id)}


def wait_for_api(client: ApiClient, retries: int = 15) -> None:
    print(f"Waiting for API at {client.base_url} ...")
    for _ in range(retries):
        try:
            result = client.request("GET", "/health")
            if result.get("status") == "ok":
                print("  API is ready!\n")
                return
        except urllib.error.URLError:
            pass
        time.sleep(3)
    raise RuntimeError(f"API not reachable at {client.base_url} after {retries} retries")


def main(api_url: str, secret: str) -> None:
    client = ApiClient(api_url)
    wait_for_api(client)

    # ── Creators + posts ──────────────────────────────────────────────────
    print("Creating creators and posts...")
    creator_ids: list[int] = []
    free_post_ids: list[int] = []
    for username, name, category in CREATORS:
        user = client.request("POST", "/users/", {"username": username, "display_name": name})
        if not user:
            print(f"  ✗ Failed to create {username}")
            continue
        creator = client.request(
            "POST",
            "/creators/",
            {"name": name, "category": category, "price": 4.99},
            headers=client.as_user(user["id"]),
        )
        if not creator:
            continue
        creator_ids.append(creator["id"])
        for i in range(6):
            is_paid = i >= 4
            post = client.request(
                "POST",
                "/posts/",
                {
                    "title": random.choice(SAMPLE_TITLES),
                    "content": f"{name} on {category}, part {i + 1}",
                    "is_paid": is_paid,
                    "price": 1.99 if is_paid else None,
                },
                headers=client.as_user(user["id"]),
            )
            if post and not is_paid:
                free_post_ids.append(post["id"])
        print(f"  ✓ {username} (creator {creator['id']})")

    if not creator_ids:
        print("No creators created — aborting")
        return

    # ── Subscribers, subscriptions, ratings ──────────────────────────────
    print("\nCreating subscribers...")
    subscriber_ids: list[int] = []
    for n in range(N_SUBSCRIBERS):
        user = client.request("POST", "/users/", {"username": f"fan_{n:02d}"})
        if not user:
            continue
        uid = user["id"]
        subscriber_ids.append(uid)
        for creator_id in random.sample(creator_ids, k=random.randint(1, 3)):
            client.request(
                "POST", "/subscriptions/", {"creator_id": creator_id},
                headers=client.as_user(uid),
            )
        for creator_id in random.sample(creator_ids, k=random.randint(2, 4)):
            client.request(
                "PUT", f"/preferences/{creator_id}", {"score": random.randint(-5, 5)},
                headers=client.as_user(uid),
            )
    print(f"  ✓ {len(subscriber_ids)} subscribers")

    # ── Views ─────────────────────────────────────────────────────────────
    print("\nGenerating views...")
    views = 0
    for post_id in free_post_ids:
        for _ in range(random.randint(0, 20)):
            client.request("GET", f"/posts/{post_id}")
            views += 1
    print(f"  ✓ {views} views")

    # ── Similarity rebuild ────────────────────────────────────────────────
    print("\nRebuilding similarity relation...")
    result = client.request(
        "POST", "/update-similarity", {}, headers={"X-Update-Secret": secret}
    )
    print(f"  {'✓' if result.get('status') == 'ok' else '✗'} {result}")

    # ── Print summary ─────────────────────────────────────────────────────
    u = subscriber_ids[0]
    recs = client.request("GET", "/recommendations/?limit=5", headers=client.as_user(u))
    print("\n" + "=" * 60)
    print(f"Recommendations for user {u} ({recs.get('source')}):")
    for post in recs.get("posts", []):
        print(f"  #{post['id']:<4} {str(post['creator_name']):<14} {post['title']:<26} {post['rank_score']}")
    print("\n# Try it yourself:")
    print(f"  curl -s -H 'X-User-Id: {u}' '{api_url}/recommendations/' | python3 -m json.tool")
    print(f"# Metrics: {api_url}/metrics")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the Phantom platform")
    parser.add_argument("--api-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument(
        "--secret",
        default=os.environ.get("UPDATE_SECRET", ""),
        help="Admin secret for /update-similarity (default: $UPDATE_SECRET)",
    )
    args = parser.parse_args()
    main(args.api_url, args.secret)
