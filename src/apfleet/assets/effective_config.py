"""Per-asset effective configuration cache and debounced push scheduling."""

import asyncio
import copy
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from apfleet.errors import ConfigValidationError
from apfleet.identity.registry import IdentityRegistry
from apfleet.store.hashes import EFFECTIVE_CONFIG, HashStore

logger = logging.getLogger(__name__)

TS_FIELD = "_ts"


def strip_ts(doc: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in doc.items() if k != TS_FIELD}


def is_equivalent(a: dict[str, Any] | None, b: dict[str, Any] | None) -> bool:
    """Deep equality ignoring the controller timestamp."""
    if a is None or b is None:
        return a is b
    return strip_ts(a) == strip_ts(b)


class PushScheduler:
    """At most one pending push per uid; a new schedule replaces the old one."""

    def __init__(self, delay: float, push: Callable[[str], Awaitable[None]]) -> None:
        self.delay = delay
        self._push = push
        self._pending: dict[str, asyncio.Task[None]] = {}

    def schedule(self, uid: str) -> None:
        previous = self._pending.pop(uid, None)
        if previous is not None:
            previous.cancel()
        self._pending[uid] = asyncio.create_task(self._fire(uid))

    def pending(self) -> list[str]:
        return list(self._pending)

    async def _fire(self, uid: str) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return
        # Stays tracked while the push is in flight so cancel_all() reaches it
        try:
            await self._push(uid)
        except Exception:
            logger.exception("Config push to asset %s failed", uid)
        finally:
            if self._pending.get(uid) is asyncio.current_task():
                del self._pending[uid]

    async def cancel_all(self) -> None:
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class EffectiveConfigStore:
    """Last committed effective config per uid, mirrored to the hash store."""

    def __init__(
        self,
        hashes: HashStore,
        registry: IdentityRegistry,
        scheduler: PushScheduler,
    ) -> None:
        self.hashes = hashes
        self.registry = registry
        self.scheduler = scheduler
        self._cache: dict[str, dict[str, Any]] = {}

    def load(self) -> int:
        """Warm the cache from storage and re-register persisted public keys."""
        docs = self.hashes.hgetall(EFFECTIVE_CONFIG)
        for uid, doc in docs.items():
            if not isinstance(doc, dict):
                continue
            self._cache[uid] = doc
            public_key = doc.get("publicKey")
            if isinstance(public_key, str) and public_key:
                self.registry.register_asset(uid, public_key)
        logger.info("Loaded effective config of %d asset(s)", len(self._cache))
        return len(self._cache)

    def get(self, uid: str) -> dict[str, Any] | None:
        if uid not in self._cache:
            doc = self.hashes.hget(EFFECTIVE_CONFIG, uid)
            if not isinstance(doc, dict):
                return None
            self._cache[uid] = doc
        return copy.deepcopy(self._cache[uid])

    def get_all(self) -> dict[str, dict[str, Any]]:
        result = {}
        for uid in self.registry.uids():
            doc = self.get(uid)
            if doc is not None:
                result[uid] = doc
        return result

    async def set(self, uid: str, doc: dict[str, Any]) -> bool:
        """Commit doc for uid. Return False if it matched the previous one."""
        if not isinstance(doc, dict):
            logger.error("Set config failed on asset %s, config is not an object", uid)
            raise ConfigValidationError(f"config of asset {uid} is not an object")

        public_key = doc.get("publicKey")
        if isinstance(public_key, str) and public_key:
            self.registry.register_asset(uid, public_key)

        if is_equivalent(self.get(uid), doc):
            logger.debug("Effective config of asset %s unchanged", uid)
            return False

        committed = copy.deepcopy(doc)
        committed[TS_FIELD] = time.time()
        self.hashes.hset(EFFECTIVE_CONFIG, uid, committed)
        self._cache[uid] = committed
        logger.info("Effective config of asset %s updated", uid)
        self.scheduler.schedule(uid)
        return True

    async def delete(self, uid: str) -> dict[str, Any] | None:
        """Forget the asset. Return its last config, if any."""
        doc = self.get(uid)
        self.registry.deregister(uid)
        self.hashes.hdel(EFFECTIVE_CONFIG, uid)
        self._cache.pop(uid, None)
        if doc is not None:
            logger.info("Effective config of asset %s deleted", uid)
        return doc
