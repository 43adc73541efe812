#
# Copyright 2025 The LevelSenseLocal contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
"""SQLite-backed accessory registry."""

import logging
import sqlite3
from typing import Dict, Iterable, List

from aiohomekit import hkjson

from .accessory import AccessoryHandle
from .database import ensure_schema_and_migrate

logger = logging.getLogger(__name__)


class AccessoryRegistrySQLite:
    """Persists registered accessory handles across restarts.

    Keeps every handle in RAM and only writes to the DB when the set of
    accessories or a context changes. The reconciler talks to it through
    restore_cached(), register(), unregister() and update().
    """

    def __init__(self, db_path: str):
        """Initialize SQLite-backed registry.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.accessories: Dict[str, AccessoryHandle] = {}
        ensure_schema_and_migrate(self.db_path)
        self._load_from_db()

    def _load_from_db(self):
        """Load all persisted handles into memory."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.execute("SELECT uuid, display_name, context FROM accessories")

        for uuid, display_name, context_json in cursor.fetchall():
            try:
                context = hkjson.loads(context_json)
                self.accessories[uuid] = AccessoryHandle(display_name, uuid, context)
                logger.debug(f"Loaded accessory {display_name} ({uuid})")
            except Exception as e:
                logger.warning(f"Failed to load accessory {uuid}: {e}")

        conn.close()
        logger.info(f"Loaded {len(self.accessories)} accessories from database")

    def restore_cached(self) -> List[AccessoryHandle]:
        """Return the handles persisted by a previous run."""
        return list(self.accessories.values())

    def register(self, handles: Iterable[AccessoryHandle]):
        handles = list(handles)
        for handle in handles:
            self.accessories[handle.uuid] = handle
        self._save_to_db(handles)

    def update(self, handles: Iterable[AccessoryHandle]):
        self.register(handles)

    def unregister(self, handles: Iterable[AccessoryHandle]):
        uuids = [handle.uuid for handle in handles]
        for uuid in uuids:
            self.accessories.pop(uuid, None)

        conn = sqlite3.connect(self.db_path)
        try:
            conn.executemany("DELETE FROM accessories WHERE uuid = ?", [(uuid,) for uuid in uuids])
            conn.commit()
        finally:
            conn.close()
        logger.debug(f"Deleted {len(uuids)} accessories from database")

    def _save_to_db(self, handles: List[AccessoryHandle]):
        conn = sqlite3.connect(self.db_path)
        try:
            for handle in handles:
                conn.execute("""
                    INSERT INTO accessories (uuid, serial_number, display_name, context, updated_at)
                    VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(uuid) DO UPDATE SET
                        serial_number = excluded.serial_number,
                        display_name = excluded.display_name,
                        context = excluded.context,
                        updated_at = CURRENT_TIMESTAMP
                """, (handle.uuid, handle.serial_number or '', handle.display_name, hkjson.dumps(handle.context)))
            conn.commit()
        finally:
            conn.close()
        logger.debug(f"Saved {len(handles)} accessories to database")
