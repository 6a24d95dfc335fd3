"""Hash-style persistence on top of SQLite.

Each namespace behaves like a string-keyed hash of JSON values with
get/set/get-all/delete-multiple semantics.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine
from sqlmodel import Session, col, select

from apfleet.store.models import HashEntry

logger = logging.getLogger(__name__)

EFFECTIVE_CONFIG = "assets:effective_config"
STATION_STATUS = "assets:sta_status"
ASSET_STATUS = "assets:ap_status"
NETWORK_CONFIG = "netconfig"


class HashStore:
    """JSON values in named hashes, one row per (namespace, key)."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def hget(self, namespace: str, key: str) -> Any | None:
        with Session(self.engine) as session:
            entry = session.get(HashEntry, (namespace, key))
            if entry is None:
                return None
            return _loads(namespace, key, entry.value)

    def hset(self, namespace: str, key: str, value: Any) -> None:
        text = json.dumps(value, separators=(",", ":"))
        with Session(self.engine) as session:
            entry = session.get(HashEntry, (namespace, key))
            if entry is None:
                entry = HashEntry(namespace=namespace, key=key, value=text)
            else:
                entry.value = text
                entry.updated_at = datetime.now(UTC)
            session.add(entry)
            session.commit()

    def hgetall(self, namespace: str) -> dict[str, Any]:
        with Session(self.engine) as session:
            stmt = select(HashEntry).where(HashEntry.namespace == namespace)
            result: dict[str, Any] = {}
            for entry in session.exec(stmt).all():
                value = _loads(namespace, entry.key, entry.value)
                if value is not None:
                    result[entry.key] = value
            return result

    def hdel(self, namespace: str, *keys: str) -> int:
        """Delete the given keys. Return how many rows were removed."""
        if not keys:
            return 0
        with Session(self.engine) as session:
            stmt = select(HashEntry).where(
                HashEntry.namespace == namespace,
                col(HashEntry.key).in_(keys),
            )
            entries = list(session.exec(stmt).all())
            for entry in entries:
                session.delete(entry)
            session.commit()
            return len(entries)


def _loads(namespace: str, key: str, text: str) -> Any | None:
    try:
        return json.loads(text)
    except ValueError:
        logger.warning("Corrupt JSON in %s[%s], ignoring", namespace, key)
        return None
