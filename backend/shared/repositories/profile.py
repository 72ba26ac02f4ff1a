"""Repository for the Profiles table (owned by the auth layer, read only here)."""

from __future__ import annotations

import asyncpg

from shared.cache import AsyncTTLCache, cached
from shared.models.profile import Profile

# Usernames rarely change
_profile_cache = AsyncTTLCache(maxsize=256, ttl=600)


class ProfileRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    @cached(
        cache=_profile_cache,
        key_func=lambda self, user_id: f"profile:{user_id}",
        retry=1,
    )
    async def get_profile(self, user_id: str) -> Profile | None:
        """Look up a customer profile by id."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT id::text AS id, username FROM "Profiles" WHERE id::text = $1',
                user_id,
            )
            if not row:
                return None
            return Profile(**dict(row))

    async def get_display_name(self, user_id: str) -> str | None:
        profile = await self.get_profile(user_id)
        return profile.username if profile else None
