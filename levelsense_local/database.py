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

"""Database schema for LevelSense Local."""

import logging
import sqlite3

logger = logging.getLogger(__name__)

# Bump together with a migration step in ensure_schema_and_migrate().
SUPPORTED_SCHEMA_VERSION = 1

ACCESSORY_SCHEMA = """
CREATE TABLE IF NOT EXISTS accessories (
    uuid TEXT PRIMARY KEY,
    serial_number TEXT NOT NULL,
    display_name TEXT NOT NULL,
    context TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_accessories_serial ON accessories(serial_number);
"""


def ensure_schema_and_migrate(db_path: str):
    """Ensure the accessory schema exists and track it with PRAGMA user_version.

    Refuses to touch a database written by a newer release, since the stored
    accessory contexts may carry a shape this code cannot read.
    """
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute("PRAGMA user_version").fetchone()
        current_version = row[0] if row else 0
        if current_version > SUPPORTED_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema version ({current_version}) is newer than supported ({SUPPORTED_SCHEMA_VERSION})"
            )

        conn.executescript(ACCESSORY_SCHEMA)

        if current_version < 1:
            conn.execute("PRAGMA user_version = 1")
            logger.info(f"Initialized accessory database at {db_path}")

        conn.commit()
    finally:
        conn.close()
