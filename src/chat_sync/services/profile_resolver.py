from __future__ import annotations

import asyncio
import logging

from chat_sync.application.exceptions import NotFoundError, TransportError
from chat_sync.application.ports.profiles import ProfileDirectory
from chat_sync.domain.entities.profile import ANONYMOUS_LABEL, Profile

logger = logging.getLogger(__name__)


class ProfileResolver:
    """Per-view profile cache in front of a ``ProfileDirectory``.

    Each unseen user id is fetched exactly once; concurrent callers for the
    same id share one in-flight fetch. Unknown users are remembered so they are
    not fetched again. Transport failures are not cached.
    """

    def __init__(
        self,
        directory: ProfileDirectory,
        *,
        placeholder_label: str = ANONYMOUS_LABEL,
    ) -> None:
        self._directory = directory
        self._placeholder_label = placeholder_label
        self._cache: dict[str, Profile] = {}
        self._missing: set[str] = set()
        self._inflight: dict[str, asyncio.Future[Profile]] = {}
        self._generation = 0

    def peek(self, user_id: str) -> Profile | None:
        return self._cache.get(user_id)

    def is_known(self, user_id: str) -> bool:
        return user_id in self._cache or user_id in self._missing

    def placeholder(self, user_id: str) -> Profile:
        return Profile.placeholder(user_id, self._placeholder_label)

    async def resolve(self, user_id: str) -> Profile:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached
        if user_id in self._missing:
            raise NotFoundError(f"User {user_id} not found")

        inflight = self._inflight.get(user_id)
        if inflight is None:
            inflight = asyncio.create_task(
                self._fetch(user_id, self._generation), name=f"profile-{user_id}"
            )
            inflight.add_done_callback(lambda fut: self._forget(user_id, fut))
            self._inflight[user_id] = inflight
        # shield: one caller being cancelled must not cancel the shared fetch
        return await asyncio.shield(inflight)

    async def resolve_or_placeholder(self, user_id: str) -> Profile:
        try:
            return await self.resolve(user_id)
        except NotFoundError:
            return self.placeholder(user_id)
        except TransportError:
            logger.warning("Profile lookup failed for %s, using placeholder", user_id)
            return self.placeholder(user_id)

    def clear(self) -> None:
        """Forget cached profiles.

        In-flight fetches run to completion for their callers, but their results
        are not cached.
        """
        self._generation += 1
        self._cache.clear()
        self._missing.clear()
        self._inflight.clear()

    async def _fetch(self, user_id: str, generation: int) -> Profile:
        try:
            profile = await self._directory.get_profile(user_id)
        except NotFoundError:
            if generation == self._generation:
                self._missing.add(user_id)
            logger.debug("No profile for user %s", user_id)
            raise
        if generation == self._generation:
            self._cache[user_id] = profile
        else:
            logger.debug("Discarding late profile for %s", user_id)
        return profile

    def _forget(self, user_id: str, fut: asyncio.Future[Profile]) -> None:
        if self._inflight.get(user_id) is fut:
            del self._inflight[user_id]
