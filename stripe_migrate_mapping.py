"""Persistent old-ID -> new-ID mapping shared by every migration stage."""

import json
import logging
import os
from typing import Dict, Optional

from stripe_migrate_errors import MigrationSetupError
from stripe_migrate_reports import read_json, write_json

MAP_FILENAME = "migration-map.json"

# Entity kinds, in migration (dependency) order
ENTITY_KINDS = ("products", "prices", "customers", "subscriptions")


def map_path(export_dir: str) -> str:
    return os.path.join(export_dir, MAP_FILENAME)


class MigrationMap:
    """
    Translation tables from source-account IDs to target-account IDs.

    The mapping is the only record of what has already been migrated: a
    source ID present here is never created again. Entries are write-once.

    Usage:
        mapping = MigrationMap.load(map_path("exports"))
        if not mapping.has("customers", "cus_old"):
            mapping.set("customers", "cus_old", "cus_new")
        mapping.save()
    """

    def __init__(self, path: str, tables: Optional[Dict[str, Dict[str, str]]] = None):
        self.path = path
        self._tables: Dict[str, Dict[str, str]] = {kind: {} for kind in ENTITY_KINDS}
        for kind, table in (tables or {}).items():
            if kind not in self._tables:
                logging.warning("Ignoring unknown mapping table '%s' in %s", kind, path)
                continue
            self._tables[kind] = {str(k): str(v) for k, v in (table or {}).items()}

    @classmethod
    def load(cls, path: str, required: bool = False) -> "MigrationMap":
        """
        Loads the mapping persisted by a previous run.

        Args:
            path: Path to migration-map.json
            required: If True, a missing file is a setup error instead of an empty map

        Returns:
            The loaded mapping, or an empty one if no file exists
        """
        if not os.path.exists(path):
            if required:
                logging.error("Migration map not found at %s.", path)
                raise MigrationSetupError(
                    "Migration map not found at %s. Run the migration steps first." % path
                )
            logging.info("No migration map at %s. Starting with an empty map.", path)
            return cls(path)

        try:
            data = read_json(path)
        except (OSError, json.JSONDecodeError) as e:
            logging.error("Could not read migration map %s: %s", path, e)
            raise MigrationSetupError("Could not read migration map %s: %s" % (path, e)) from e
        if not isinstance(data, dict):
            raise MigrationSetupError("Migration map %s is not a JSON object." % path)

        mapping = cls(path, data)
        logging.info(
            "Loaded migration map: %s",
            ", ".join("%s=%d" % (kind, mapping.count(kind)) for kind in ENTITY_KINDS),
        )
        return mapping

    def save(self) -> None:
        """Overwrites the persisted file with the complete current snapshot."""
        write_json(self.path, self.to_dict())

    def get(self, kind: str, old_id: Optional[str]) -> Optional[str]:
        if old_id is None:
            return None
        return self._table(kind).get(old_id)

    def has(self, kind: str, old_id: Optional[str]) -> bool:
        return self.get(kind, old_id) is not None

    def set(self, kind: str, old_id: str, new_id: str) -> str:
        """
        Records a migrated entity. An existing entry is kept, never overwritten.

        Returns:
            The new ID now stored for old_id
        """
        if not old_id or not new_id:
            raise ValueError("Mapping entries need non-empty IDs (%r -> %r)" % (old_id, new_id))
        table = self._table(kind)
        existing = table.get(old_id)
        if existing is not None:
            if existing != new_id:
                logging.warning(
                    "  %s %s is already mapped to %s. Keeping it (ignoring %s).",
                    kind,
                    old_id,
                    existing,
                    new_id,
                )
            return existing
        table[old_id] = new_id
        return new_id

    def count(self, kind: str) -> int:
        return len(self._table(kind))

    def table(self, kind: str) -> Dict[str, str]:
        """Returns a copy of one kind's table, in insertion order."""
        return dict(self._table(kind))

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {kind: dict(table) for kind, table in self._tables.items()}

    def _table(self, kind: str) -> Dict[str, str]:
        try:
            return self._tables[kind]
        except KeyError:
            raise ValueError("Unknown entity kind: %s" % kind) from None
