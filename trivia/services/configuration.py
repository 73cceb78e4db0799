"""
Runtime configuration overrides.

Tunable economy values (reward amounts, the streak interval, the premium
multiplier) can be changed without a redeploy by writing JSON values to the
configurations table. Reads are served from an in-memory snapshot that is
rebuilt after every write; keys without an override fall back to the
default the caller passes, normally a trivia.config.Config attribute.
"""

import json
import logging
from typing import Any, Dict
from sqlalchemy import select
from trivia.services.base import BaseService
from trivia.database.models import Configuration, AuditLog

logger = logging.getLogger(__name__)

_SKIP = object()  # load_all marker for unparsable rows

def _decode(key: str, raw: str, default: Any) -> Any:
    """Parse a stored JSON value, returning default when it is not valid JSON."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Invalid JSON for config key '{key}'")
        return default

class ConfigurationService(BaseService):
    """DB-backed configuration overrides with an in-memory snapshot and an audit trail."""

    def __init__(self, session_factory, read_session_factory=None):
        super().__init__(session_factory, read_session_factory)
        self._values: Dict[str, Any] = {}

    async def load_all(self):
        """Rebuild the snapshot from the configurations table, skipping unparsable rows."""
        async with self.get_read_session() as session:
            rows = (await session.execute(select(Configuration))).scalars().all()

        snapshot = {}
        for row in rows:
            value = _decode(row.key, row.value, _SKIP)
            if value is not _SKIP:
                snapshot[row.key] = value

        self._values = snapshot
        logger.info(f"Loaded {len(snapshot)} configuration overrides")

    def get(self, key: str, default: Any = None) -> Any:
        """Override for key (e.g. 'rewards.game_win'), or default."""
        return self._values.get(key, default)

    def get_int(self, key: str, default: int) -> int:
        """Integer override for key; unusable values are logged and replaced by default."""
        value = self._values.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            logger.warning(f"Config key '{key}' has non-integer value {value!r}, using default {default}")
            return default
        return value

    async def set(self, key: str, value: Any, actor: str):
        """
        Store an override and record the change in the audit log.

        Args:
            key: Configuration key
            value: Any JSON-serializable value
            actor: Who made the change
        """
        encoded = json.dumps(value)
        async with self.get_session() as session:
            row = await session.get(Configuration, key)
            if row is None:
                previous = None
                session.add(Configuration(key=key, value=encoded))
            else:
                previous = _decode(key, row.value, {"error": "invalid JSON", "raw": row.value})
                row.value = encoded

            session.add(AuditLog(
                actor=actor,
                action='config_set',
                details=json.dumps({'key': key, 'old_value': previous, 'new_value': value})
            ))

        logger.info(f"Config '{key}' set to {encoded} by {actor}")
        await self.load_all()

    def list_all(self) -> Dict[str, Any]:
        return dict(self._values)

    def get_by_category(self, category: str) -> Dict[str, Any]:
        """Overrides under 'category.', keyed without the prefix."""
        prefix = f"{category}."
        return {
            key[len(prefix):]: value
            for key, value in self._values.items()
            if key.startswith(prefix)
        }
