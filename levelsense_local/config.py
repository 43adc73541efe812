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

"""Platform configuration.

The configuration is a homebridge-style platform block::

    {
        "email": "me@example.com",
        "password": "secret",
        "sessionKey": "optional, bypasses login",
        "pollMinutes": 15
    }

Values from the JSON file can be overridden by environment variables and by
command line flags, in that order.
"""

import json
import logging
import math
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_POLL_MINUTES = 15
MIN_POLL_MINUTES = 2
DEFAULT_REQUEST_TIMEOUT = 30.0

ENV_OVERRIDES = {
    'LEVELSENSE_EMAIL': 'email',
    'LEVELSENSE_PASSWORD': 'password',
    'LEVELSENSE_SESSION_KEY': 'sessionKey',
    'LEVELSENSE_POLL_MINUTES': 'pollMinutes',
}


class ConfigError(ValueError):
    """Raised when the platform configuration cannot be used."""


def normalize_poll_minutes(value: Any) -> int:
    """
    Clamp the poll interval.

    Unset, non-numeric or below-minimum values fall back to the default
    instead of being rejected: ``0``, ``"abc"``, ``None`` and ``1`` all give 15.
    """
    if value is None or isinstance(value, bool):
        return DEFAULT_POLL_MINUTES
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return DEFAULT_POLL_MINUTES
    if math.isnan(minutes) or math.isinf(minutes) or minutes < MIN_POLL_MINUTES:
        return DEFAULT_POLL_MINUTES
    return int(minutes)


class LevelSenseConfig:
    """Validated platform configuration."""

    def __init__(
        self,
        email: Optional[str] = None,
        password: Optional[str] = None,
        session_key: Optional[str] = None,
        poll_minutes: Any = None,
        request_timeout: Any = None
    ):
        self.email = email or None
        self.password = password or None
        self.session_key = session_key or None
        self.poll_minutes = normalize_poll_minutes(poll_minutes)
        self.request_timeout = self._normalize_timeout(request_timeout)
        self.validate()

    @staticmethod
    def _normalize_timeout(value: Any) -> float:
        if value is None:
            return DEFAULT_REQUEST_TIMEOUT
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"requestTimeout must be a number of seconds, got {value!r}")
        if timeout <= 0:
            raise ConfigError(f"requestTimeout must be positive, got {value!r}")
        return timeout

    def validate(self):
        if self.session_key:
            return
        if not self.email or not self.password:
            raise ConfigError("Both email and password are required unless a sessionKey is configured")

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds."""
        return self.poll_minutes * 60.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LevelSenseConfig':
        return cls(
            email=data.get('email'),
            password=data.get('password'),
            session_key=data.get('sessionKey'),
            poll_minutes=data.get('pollMinutes'),
            request_timeout=data.get('requestTimeout'),
        )

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        return {
            'email': self.email,
            'password': '***' if redact and self.password else self.password,
            'sessionKey': '***' if redact and self.session_key else self.session_key,
            'pollMinutes': self.poll_minutes,
            'requestTimeout': self.request_timeout,
        }


def load_config(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None,
                environ: Optional[Dict[str, str]] = None) -> LevelSenseConfig:
    """
    Build the configuration from a JSON file, the environment and overrides.

    Args:
        path: Optional JSON file holding the platform block
        overrides: Values from the command line; None entries are ignored
        environ: Environment to read (defaults to os.environ)

    Raises:
        ConfigError: if the file is unreadable or the result is invalid
    """
    data: Dict[str, Any] = {}

    if path:
        config_path = Path(os.path.expanduser(path))
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigError(f"Failed to read config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a JSON object")
        logger.info(f"Loaded configuration from {config_path}")

    environ = os.environ if environ is None else environ
    for env_name, key in ENV_OVERRIDES.items():
        if environ.get(env_name):
            data[key] = environ[env_name]

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    return LevelSenseConfig.from_dict(data)
