"""Seed the database with a sample agency, clients, posts and analytics for development.

Usage:
    python scripts/seed_sample.py
    python scripts/seed_sample.py --reset  # drop all data first

Generates:
    - 1 agency with 3 clients
    - 12 draft posts per client across all approval states
    - 60 days of daily analytics per client
    - 8 weeks of follower counts per client
"""

import argparse
import random
import sys
from datetime import date, datetime, timedelta
from pathlib import Path

# Ensure the postflow package is importable when running from the project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from postflow.database import init_db, session_scope
from postflow.models import (
    Agency,
    Analytics,
    Client,
    FollowerAnalytics,
    Post,
    PostStatus,
    TweetAnalytics,
    Upload,
)
from postflow.parsing import click_through_rate, engagement_rate

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

SEED = 42
random.seed(SEED)

POSTS_PER_CLIENT = 12
DAYS = 60
WEEKS = 8
BASE_DATE = date.today() - timedelta(days=DAYS)

CLIENTS = [
    ("Northwind Coffee", "GMT +8"),
    ("Harbor Fitness", "EST"),
    ("Lumen Analytics", "GMT +1"),
]

TOPICS = [
    "Behind the scenes of our first product launch",
    "Three lessons from a year of shipping weekly",
    "Customer spotlight: how a small team scaled support",
    "Why we rewrote our onboarding flow",
    "The metric we stopped tracking (and why)",
    "Hiring for curiosity over credentials",
    "A thread on pricing experiments that failed",
    "What our churn survey actually told us",
    "Community AMA recap",
    "Roadmap preview for next quarter",
    "The tools we use to run a remote team",
    "Founder notes: saying no to good ideas",
]

STATUSES = list(PostStatus)


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------


def generate_posts(client: Client) -> list[Post]:
    posts = []
    for i in range(POSTS_PER_CLIENT):
        scheduled = datetime.combine(
            BASE_DATE + timedelta(days=i * 5), datetime.min.time()
        ) + timedelta(hours=random.randint(0, 23))
        posts.append(
            Post(
                client_id=client.id,
                content=TOPICS[i % len(TOPICS)],
                tweet_text=f"{TOPICS[i % len(TOPICS)]}. More in the thread below.",
                typefully_url=f"https://typefully.com/t/{client.id}-{i:03d}",
                scheduled_date=scheduled,
                status=STATUSES[i % len(STATUSES)],
                feedback="Tighten the hook" if i % 4 == 0 else None,
            )
        )
    return posts


def generate_daily_analytics(client: Client) -> list[Analytics]:
    records = []
    for i in range(DAYS):
        impressions = random.randint(400, 4000) + i * 10  # Slight upward trend
        engagements = random.randint(int(impressions * 0.01), int(impressions * 0.06))
        profile_clicks = random.randint(0, int(impressions * 0.01))
        url_clicks = random.randint(0, int(impressions * 0.005))
        records.append(
            Analytics(
                client_id=client.id,
                date=BASE_DATE + timedelta(days=i),
                impressions=impressions,
                engagements=engagements,
                likes=int(engagements * 0.6),
                retweets=int(engagements * 0.1),
                replies=int(engagements * 0.05),
                profile_clicks=profile_clicks,
                url_clicks=url_clicks,
                follows=random.randint(0, 5),
                engagement_rate=engagement_rate(engagements, impressions),
                click_through_rate=click_through_rate(profile_clicks, impressions),
            )
        )
    return records


def generate_tweet_analytics(client: Client) -> list[TweetAnalytics]:
    records = []
    for i in range(POSTS_PER_CLIENT):
        impressions = random.randint(500, 8000)
        engagements = random.randint(int(impressions * 0.01), int(impressions * 0.05))
        records.append(
            TweetAnalytics(
                client_id=client.id,
                tweet_id=f"{client.id}{1800000000000000000 + i}",
                tweet_url=f"https://x.com/i/status/{client.id}{1800000000000000000 + i}",
                text=TOPICS[i % len(TOPICS)],
                created_at=datetime.combine(BASE_DATE + timedelta(days=i * 5), datetime.min.time()),
                impression_count=impressions,
                like_count=int(engagements * 0.6),
                retweet_count=int(engagements * 0.1),
                reply_count=int(engagements * 0.05),
                total_engagements=engagements,
                engagement_rate=round(engagements / impressions * 100, 2),
            )
        )
    return records


def generate_followers(client: Client) -> list[FollowerAnalytics]:
    records = []
    total = random.randint(800, 5000)
    previous = None
    for week in range(WEEKS):
        start = BASE_DATE + timedelta(weeks=week)
        total += random.randint(-5, 60)
        records.append(
            FollowerAnalytics(
                client_id=client.id,
                start_date=start,
                end_date=start + timedelta(days=6),
                follower_count=total,
                followers_gained=total - previous if previous is not None else 0,
            )
        )
        previous = total
    return records


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed sample data into the postflow database.")
    parser.add_argument("--reset", action="store_true", help="Drop all existing data before seeding.")
    args = parser.parse_args()

    init_db()

    with session_scope() as db:
        if args.reset:
            print("Resetting database...")
            for model in (FollowerAnalytics, TweetAnalytics, Analytics, Post, Upload, Client, Agency):
                db.query(model).delete()
            db.commit()
            print("All data cleared.")

        existing = db.query(Agency).count()
        if existing > 0 and not args.reset:
            print(f"Database already contains {existing} agencies. Use --reset to clear first.")
            return

        agency = Agency(name="Sample Agency", email="writers@example.com")
        db.add(agency)
        db.commit()

        for name, timezone in CLIENTS:
            client = Client(name=name, agency_id=agency.id, timezone=timezone)
            db.add(client)
            db.commit()

            db.add_all(generate_posts(client))
            db.add_all(generate_daily_analytics(client))
            db.add_all(generate_tweet_analytics(client))
            db.add_all(generate_followers(client))
            db.commit()
            print(f"  Seeded client '{name}' (id={client.id})")

        print("\nSample data loaded successfully.")
        print(f"  Agency id: {agency.id}")
        print(f"  Posts: {db.query(Post).count()}")
        print(f"  Analytics days: {db.query(Analytics).count()}")
        print(f"\nDownload a report at http://localhost:8060/api/excel/export?agency_id={agency.id}")


if __name__ == "__main__":
    main()
