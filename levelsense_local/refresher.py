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

"""Concurrent per-accessory reading refresh."""

import asyncio
import logging
from typing import Dict, Mapping, Optional, Tuple

from .accessory import SensorAccessory
from .cloud import LevelSenseCloudAPI, LevelSenseError
from .models import DeviceReading

logger = logging.getLogger('levelsense-local')


class ReadingRefresher:
    """Fetches the latest reading of every online accessory.

    Fetches run concurrently and are joined before refresh() returns. The
    accessories are only read here; the caller applies the returned readings.
    """

    def __init__(self, cloud_api: LevelSenseCloudAPI):
        self.cloud_api = cloud_api

    async def refresh(self, accessories: Mapping[str, SensorAccessory]) -> Dict[str, DeviceReading]:
        """
        Fetch readings for all online accessories.

        Args:
            accessories: serial number -> tracked accessory

        Returns:
            serial number -> fresh reading, for every fetch that succeeded
        """
        logger.info("Updating device readings.")
        online = [acc for acc in accessories.values() if acc.device.online]
        skipped = len(accessories) - len(online)
        if skipped:
            logger.debug(f"Skipping {skipped} offline accessories")
        if not online:
            return {}

        results = await asyncio.gather(*(self._fetch_one(acc) for acc in online))

        readings = {serial: reading for serial, reading in results if reading is not None}
        failed = len(online) - len(readings)
        if failed:
            logger.warning(f"Refreshed {len(readings)} of {len(online)} online accessories ({failed} failed)")
        else:
            logger.info(f"Refreshed {len(readings)} accessories")
        return readings

    async def _fetch_one(self, accessory: SensorAccessory) -> Tuple[str, Optional[DeviceReading]]:
        device = accessory.device
        try:
            reading = await self.cloud_api.get_device_alarm(device.id)
        except LevelSenseError as e:
            logger.error(f"Failed to refresh {device.display_name} ({device.serial_number}): {e}")
            return device.serial_number, None
        except Exception as e:
            logger.error(f"Unexpected error refreshing {device.display_name} ({device.serial_number}): {e}", exc_info=True)
            return device.serial_number, None
        return device.serial_number, reading
