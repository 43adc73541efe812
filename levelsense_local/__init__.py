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
"""LevelSense Local - keeps LevelSense sensors in sync as local accessories."""

from .__version__ import __version__

__author__ = "LevelSense Local Contributors"
__description__ = "Polls the LevelSense API and reconciles sensors into an accessory registry"

from .models import Device, DeviceReading, SensorEntry
from .cloud import LevelSenseCloudAPI, LevelSenseError, AuthError, FetchError, ServiceDegraded
from .accessory import ACCESSORY_SCHEMA_VERSION, AccessoryHandle, SensorAccessory
from .config import LevelSenseConfig, ConfigError, load_config, normalize_poll_minutes
from .registry import AccessoryRegistrySQLite
from .refresher import ReadingRefresher
from .scheduler import PollScheduler
from .platform import LevelSensePlatform, SUPPORTED_DEVICES, generate_uuid

__all__ = [
    "__version__",
    "Device",
    "DeviceReading",
    "SensorEntry",
    "LevelSenseCloudAPI",
    "LevelSenseError",
    "AuthError",
    "FetchError",
    "ServiceDegraded",
    "ACCESSORY_SCHEMA_VERSION",
    "AccessoryHandle",
    "SensorAccessory",
    "LevelSenseConfig",
    "ConfigError",
    "load_config",
    "normalize_poll_minutes",
    "AccessoryRegistrySQLite",
    "ReadingRefresher",
    "PollScheduler",
    "LevelSensePlatform",
    "SUPPORTED_DEVICES",
    "generate_uuid",
]
