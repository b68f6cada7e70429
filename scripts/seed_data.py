#!/usr/bin/env python3
"""
Seed the database with mock subscribers and a picks newsletter.

Creates subscribers spread over all tiers and channel preferences plus one
content item built from generated picks, ready to be scheduled.

Usage:
    python scripts/seed_data.py [--subscribers 50] [--dry-run]
"""

import argparse
import random
import sys
from pathlib import Path
from dotenv import load_dotenv
from faker import Faker

# Load environment variables from .env file
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"
load_dotenv(dotenv_path=env_path)

# Add project root to path
sys.path.insert(0, str(project_root))

from sqlmodel import Session
from quantumbets.database.engine import engine
from quantumbets.crud.subscriber import subscriber_crud
from quantumbets.schemas.subscriber import SubscriberCreate, SubscriptionTier
from quantumbets.services.content_service import content_service

# Initialize Faker for generating realistic mock data
fake = Faker('en_US')

SPORTS = ["NFL", "NBA", "MLB", "NHL", "NCAAF", "NCAAB"]
BETS = ["-3.5", "+7", "ML", "Over 47.5", "Under 221", "-1.5"]


def fake_pick_html() -> str:
    odds = random.choice(["-110", "-105", "+120", "+145", "-150"])
    return (
        '<div class="pick">'
        f'<span class="sport">{random.choice(SPORTS)}</span> '
        f'<span class="team">{fake.city()} {fake.last_name()}s</span> '
        f'<span class="bet">{random.choice(BETS)}</span> '
        f'<span class="odds">{odds}</span> '
        f'<span class="units">{random.randint(1, 3)}</span>'
        f'<span class="analysis">{fake.sentence(nb_words=12)}</span>'
        '</div>'
    )


def fake_subscriber() -> SubscriberCreate:
    tier = random.choice(list(SubscriptionTier))
    wants_sms = tier != SubscriptionTier.FREE and random.random() < 0.5
    return SubscriberCreate(
        email=fake.unique.email(),
        name=fake.name(),
        phone=fake.numerify("555-###-####") if wants_sms or random.random() < 0.3 else None,
        subscription_tier=tier,
        receive_email=random.random() < 0.95,
        receive_sms=wants_sms,
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Seed the QuantumBets database with mock subscribers and content"
    )
    parser.add_argument(
        "--subscribers",
        type=int,
        default=50,
        help="Number of subscribers to create (default: 50)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print what would be created without writing to the database"
    )
    args = parser.parse_args()

    subscribers = [fake_subscriber() for _ in range(args.subscribers)]
    picks_html = "".join(fake_pick_html() for _ in range(3))
    html = (
        "<html><body><h1>Today's Picks</h1>"
        f"{picks_html}"
        '<p><a href="https://quantumbets.com/picks/today">Full analysis</a></p>'
        "</body></html>"
    )

    if args.dry_run:
        for data in subscribers:
            print(f"[dry-run] subscriber {data.email} ({data.subscription_tier.value}, sms={data.receive_sms})")
        print(f"[dry-run] content with {len(content_service.extract_picks(html))} picks")
        return

    created = 0
    with Session(engine) as db:
        for data in subscribers:
            if subscriber_crud.get_subscriber_by_email(db, data.email):
                print(f"Skipping existing subscriber {data.email}")
                continue
            subscriber_crud.create_subscriber(db, data)
            created += 1
        content = content_service.process_and_store_content(
            db,
            html_content=html,
            title=f"QuantumBets Picks for {fake.date_this_month().isoformat()}",
            tier_availability=["DAILY", "WEEKLY", "MONTHLY"],
            is_published=True
        )

    print(f"Created {created} subscribers and content {content.id}")
    print(f"Schedule it with: python scripts/run_delivery_sweep.py schedule --content-id {content.id}")


if __name__ == "__main__":
    main()
