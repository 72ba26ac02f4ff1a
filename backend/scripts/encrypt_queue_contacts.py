"""Encrypt queue contact fields still stored as plaintext.

One-off data migration for rows written before contact encryption was
enabled. Already-encrypted values are left untouched, so it is safe to
re-run.

Usage:
    python encrypt_queue_contacts.py
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

# Ensure backend/ is on sys.path so api.* and shared.* are importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv

from api.services.email_client import EmailClient
from api.services.notifications import NotificationDispatcher
from api.services.queue_service import QueueService
from api.services.sms_client import SmsClient
from shared.crypto import ContactCipher
from shared.database import DatabaseManager, PoolConfig

load_dotenv(Path(__file__).resolve().parent.parent / "api" / ".env")

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


async def main() -> None:
    database_url = os.getenv("DATABASE_URL")
    encryption_key = os.getenv("ENCRYPTION_KEY")
    if not database_url:
        print("ERROR: DATABASE_URL not set. Check api/.env or environment variables.")
        sys.exit(1)
    if not encryption_key:
        print("ERROR: ENCRYPTION_KEY not set. Nothing to encrypt with.")
        sys.exit(1)

    db = DatabaseManager(
        database_url,
        PoolConfig.for_service("scripts", ssl=os.getenv("DATABASE_SSL", "require") or None),
    )
    await db.connect()

    # No notifications are sent here; unconfigured clients never hit the network
    dispatcher = NotificationDispatcher(sms=SmsClient(""), email=EmailClient(""))
    try:
        service = QueueService(
            db.pool, dispatcher=dispatcher, cipher=ContactCipher(encryption_key)
        )
        result = await service.encrypt_legacy_contacts()

        print(f"Updated {result.updated_count} queue entr{'y' if result.updated_count == 1 else 'ies'}.")
        if result.errors:
            print(f"{len(result.errors)} error(s):")
            for entry_id, error in result.errors:
                print(f"  - entry {entry_id}: {error}")
            sys.exit(1)
    finally:
        await dispatcher.close()
        await db.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
