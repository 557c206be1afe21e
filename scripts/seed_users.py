"""Seed a handful of demo accounts for local development (idempotent)."""
import asyncio
import sys
from datetime import date
sys.path.insert(0, ".")

from sqlalchemy import select
from app.database import async_session_factory, engine
from app.models.user import User
from app.services.profile_service import compute_age
from app.utils.security import hash_password

DEMO_PASSWORD = "password123"

DEMO_USERS = [
    {
        "email": "alex@example.com",
        "name": "Alex",
        "date_of_birth": date(1996, 4, 12),
        "bio": "Climber, coffee snob, terrible at karaoke.",
        "location": "Berlin",
    },
    {
        "email": "sam@example.com",
        "name": "Sam",
        "date_of_birth": date(1993, 9, 3),
        "bio": "Looking for someone to share long walks and longer podcasts.",
        "location": "Berlin",
    },
    {
        "email": "jordan@example.com",
        "name": "Jordan",
        "date_of_birth": date(1999, 1, 27),
        "bio": "New in town, happy to make friends first.",
        "location": "Hamburg",
    },
    {
        "email": "riley@example.com",
        "name": "Riley",
        "date_of_birth": date(1990, 11, 15),
        "bio": "Board games on Sundays.",
        "location": "Munich",
    },
]


async def seed():
    today = date.today()
    async with async_session_factory() as session:
        for u in DEMO_USERS:
            existing = await session.execute(select(User).where(User.email == u["email"]))
            if existing.scalar_one_or_none() is None:
                session.add(
                    User(
                        **u,
                        age=compute_age(u["date_of_birth"], today),
                        password_hash=hash_password(DEMO_PASSWORD),
                        photos=[],
                    )
                )
                print(f"  Seeded user {u['email']}")
            else:
                print(f"  User {u['email']} already exists, skipping.")
        await session.commit()
    await engine.dispose()
    print(f"Done seeding users (password: {DEMO_PASSWORD}).")


if __name__ == "__main__":
    asyncio.run(seed())
