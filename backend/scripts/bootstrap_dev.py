"""
Dev bootstrap script: create a user and an API key for local development.

Usage:
    python -m scripts.bootstrap_dev [user_id]

This will:
  1. Create the user (default "dev-user") if it does not exist yet
  2. Issue a new nai_ API key for that user
  3. Print the key, ready to paste into an Authorization header
"""

import asyncio
import sys

# Ensure the project root is on the path
sys.path.insert(0, ".")

from app.auth.keygen import generate_api_key
from app.core.database import async_session_factory, engine
from app.models.api_key import ApiKey
from app.models.user import User


async def main(user_id: str) -> None:
    async with async_session_factory() as session:
        # ── Ensure user ─────────────────────────────────────
        user = await session.get(User, user_id)
        if user is None:
            user = User(id=user_id, email=f"{user_id}@localhost", name="Dev User")
            session.add(user)
            await session.flush()

        # ── Issue API key ───────────────────────────────────
        api_key = ApiKey(key=generate_api_key(), name="Dev Key", user_id=user.id)
        session.add(api_key)
        await session.commit()

    # ── Print results ───────────────────────────────────────
    print()
    print("=" * 60)
    print("  Dev Bootstrap Complete")
    print("=" * 60)
    print()
    print(f"  User:       {user.id}")
    print(f"  Key name:   {api_key.name}")
    print()
    print(f"  API Key:    {api_key.key}")
    print()
    print("  curl -H 'Authorization: Bearer <key>' localhost:8000/api/v1/models")
    print("=" * 60)
    print()

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "dev-user"))
