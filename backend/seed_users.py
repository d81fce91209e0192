"""
Database seeding script for initial users and accounts.

Creates an ADMIN and a cashier USER, a default bank account and a default
card, then prints a bearer token for each user. Tokens are the only way in:
this service has no password login, so seeded users carry an unusable
password marker.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.core.jwt import create_access_token
from backend.app.db.session import AsyncSessionLocal, Base, engine
from backend.app.models.bank_account import BankAccount
from backend.app.models.card import Card
from backend.app.models.enums import UserKind
from backend.app.models.user import User
from sqlalchemy import select

UNUSABLE_PASSWORD = "!"
TOKEN_LIFETIME = timedelta(days=30)


def issue_token(user: User) -> str:
    return create_access_token(
        data={"sub": user.username, "user_id": user.id, "kind": user.kind.value},
        expires_delta=TOKEN_LIFETIME,
    )


async def seed():
    """
    Seed initial users and accounts.

    Creates:
    - 1 ADMIN user
    - 1 USER (cashier)
    - 1 default bank account, 1 default card
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting seeding...")

        result = await db.execute(select(User).where(User.username == "admin"))
        admin = result.scalar_one_or_none()

        if admin:
            print("ℹ️  ADMIN user already exists, skipping seeding")
            result = await db.execute(select(User).order_by(User.id))
            users = list(result.scalars().all())
        else:
            admin = User(
                email="admin@venue.local",
                username="admin",
                full_name="Venue Admin",
                hashed_password=UNUSABLE_PASSWORD,
                kind=UserKind.ADMIN,
                is_active=True,
            )
            cashier = User(
                email="cashier@venue.local",
                username="cashier",
                full_name="Front Desk",
                hashed_password=UNUSABLE_PASSWORD,
                kind=UserKind.USER,
                is_active=True,
            )
            db.add_all([
                admin,
                cashier,
                BankAccount(account_name="Main Account", account_number="0000000001",
                            bank_name="Default Bank", is_default=True),
                Card(name="POS Terminal", bank_name="Default Bank", is_default=True),
            ])
            await db.commit()
            users = [admin, cashier]
            print("✅ Created ADMIN (admin), USER (cashier), default bank account and card")

        print("\nBearer tokens (valid 30 days):")
        for user in users:
            print(f"  - {user.kind.value:<6} {user.username}: {issue_token(user)}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
