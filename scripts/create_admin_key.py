"""Script to create an API key for a deck moderator."""

import argparse
import asyncio
from typing import Optional

from alias_decks.auth.security import create_api_key, is_admin_login
from alias_decks.db.session import dispose_engine, get_session_maker, init_db


async def main(owner: str, name: str, expires_in_days: Optional[int]):
    """Create a moderator API key."""
    print("Initializing database...")
    await init_db()

    print(f"Creating API key for {owner}...")
    async with get_session_maker()() as db:
        api_key, full_key = await create_api_key(
            db,
            name=name,
            owner=owner,
            expires_in_days=expires_in_days,
        )
        await db.commit()

        print("\n" + "=" * 60)
        print("API KEY CREATED SUCCESSFULLY")
        print("=" * 60)
        print(f"\nAPI Key: {full_key}")
        print(f"Key ID:  {api_key.id}")
        print(f"Prefix:  {api_key.key_prefix}")
        if not is_admin_login(owner):
            print(f"\nNote: add '{owner}' to DECK_ADMIN_LOGINS to let this key moderate decks.")
        print("\n⚠️  SAVE THIS KEY NOW - IT WILL NOT BE SHOWN AGAIN!")
        print("=" * 60)

    await dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("owner", help="Login recorded as the submitter identity")
    parser.add_argument("--name", default="Moderator Key")
    parser.add_argument("--expires-in-days", type=int, default=None)
    args = parser.parse_args()
    asyncio.run(main(args.owner, args.name, args.expires_in_days))
