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

"""Keeps the registered accessories in sync with the LevelSense account.

Lifecycle:
----------
1. restore(handles): hand over the accessories persisted by a previous run.
2. start(): run the initial discovery pass, then arm the poll timer.

Reconciliation Pass:
--------------------
- Fetch the device list (a failed fetch counts as an empty list).
- Keep only supported device types; anything else is invisible to us.
- Register devices we do not track yet, and re-register tracked ones whose
  accessory was wired by an older schema version.
- Unregister, in one call, tracked accessories whose device disappeared.
- Refresh the readings of the resulting set.

Passes never overlap: a poll tick that arrives while a pass is running is
skipped, the next tick picks up whatever changed.
"""

import asyncio
import hashlib
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from .accessory import ACCESSORY_SCHEMA_VERSION, AccessoryHandle, SensorAccessory
from .cloud import LevelSenseCloudAPI, LevelSenseError
from .config import LevelSenseConfig
from .models import Device, DeviceReading
from .refresher import ReadingRefresher
from .scheduler import PollScheduler

logger = logging.getLogger('levelsense-local')

SUPPORTED_DEVICES = ['LS_SENTRY']


def generate_uuid(serial_number: str) -> str:
    """
    Derive a stable accessory UUID from a serial number.

    The SHA-1 of the serial is laid out as a version 4 style UUID, so the same
    device always maps onto the same accessory.
    """
    digest = hashlib.sha1(serial_number.encode('utf-8')).hexdigest()
    chars = []
    i = 0
    for c in 'xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx':
        if c == 'x':
            chars.append(digest[i])
            i += 1
        elif c == 'y':
            chars.append(format((int(digest[i], 16) & 0x3) | 0x8, 'x'))
            i += 1
        else:
            chars.append(c)
    return ''.join(chars)


class LevelSensePlatform:
    """Reconciles LevelSense devices against the host's accessory registry."""

    def __init__(self, config: LevelSenseConfig, cloud_api: LevelSenseCloudAPI, registry,
                 refresher: Optional[ReadingRefresher] = None):
        """
        Args:
            config: Validated platform configuration
            cloud_api: LevelSense API client
            registry: Host registry with register(), unregister() and update()
            refresher: Reading refresher (defaults to one using cloud_api)
        """
        self.config = config
        self.cloud_api = cloud_api
        self.registry = registry
        self.refresher = refresher or ReadingRefresher(cloud_api)
        self.scheduler = PollScheduler(config.poll_interval, self.poll_for_new_data)

        self.cached_accessories: List[AccessoryHandle] = []
        self.current_accessories: Dict[str, SensorAccessory] = {}

        self.started = False
        self.pass_count = 0
        self.skipped_passes = 0
        self.last_pass: Optional[Dict[str, Any]] = None
        self._pass_lock = asyncio.Lock()

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def restore(self, handles: Iterable[AccessoryHandle]):
        """Accept accessories restored by the host. Must precede start()."""
        if self.started:
            raise RuntimeError("restore() must be called before start()")
        for handle in handles:
            logger.info(f"Loading accessory from cache: {handle.display_name}")
            self.cached_accessories.append(handle)

    async def start(self):
        """Run initial discovery, then arm the poll timer."""
        if self.started:
            logger.warning("Platform already started")
            return
        self.started = True

        await self.discover()
        logger.info("Discovery action completed")
        self.scheduler.arm()

    async def stop(self):
        await self.scheduler.stop()

    @property
    def pass_running(self) -> bool:
        return self._pass_lock.locked()

    # ========================================================================
    # Reconciliation passes
    # ========================================================================

    async def discover(self) -> Dict[str, Any]:
        """Initial pass, seeded from the restored accessories."""
        logger.info("Discovering from LevelSense API")
        async with self._pass_lock:
            cached = self.cached_accessories
            self.cached_accessories = []
            return await self._reconcile('discovery', cached)

    async def poll_for_new_data(self) -> Optional[Dict[str, Any]]:
        """
        Periodic pass, seeded from the current accessories.

        Returns:
            Pass summary, or None if skipped because another pass is running
        """
        if self._pass_lock.locked():
            self.skipped_passes += 1
            logger.warning("Previous reconciliation pass still running, skipping this poll")
            return None

        logger.info("Polling LevelSense API")
        async with self._pass_lock:
            seed = [accessory.handle for accessory in self.current_accessories.values()]
            return await self._reconcile('poll', seed)

    async def get_sensors(self) -> List[Device]:
        """Fetch the device list; failures are logged and yield an empty list."""
        try:
            return await self.cloud_api.get_device_list()
        except LevelSenseError as e:
            logger.error(f"ERROR: unable to fetch devices - {e}")
            return []

    async def _reconcile(self, kind: str, seed_handles: List[AccessoryHandle]) -> Dict[str, Any]:
        started_at = time.time()
        devices = await self.get_sensors()

        fetched: Dict[str, Device] = {}
        for device in devices:
            if device.device_type in SUPPORTED_DEVICES:
                fetched[device.serial_number] = device
            else:
                logger.debug(f"Ignoring unsupported device {device.display_name} ({device.device_type})")

        seed: Dict[str, AccessoryHandle] = {}
        orphans: List[AccessoryHandle] = []
        for handle in seed_handles:
            serial = handle.serial_number
            if serial and serial in seed:
                kept = seed[serial]
                if handle.uuid != kept.uuid:
                    logger.warning(
                        f"Accessory {handle.display_name} duplicates serial {serial} "
                        f"of {kept.display_name}, removing"
                    )
                    orphans.append(handle)
            elif serial:
                seed[serial] = handle
            else:
                logger.warning(f"Accessory {handle.display_name} has no device context, removing")
                orphans.append(handle)

        current: Dict[str, SensorAccessory] = {}
        registered: List[str] = []
        replaced: List[str] = []

        # New devices, and tracked ones wired by an older schema version
        for serial, device in fetched.items():
            handle = seed.get(serial)
            if handle is not None and handle.schema_version != ACCESSORY_SCHEMA_VERSION:
                logger.info(
                    f"{handle.display_name} was registered with accessory version "
                    f"{handle.schema_version}, re-registering as {ACCESSORY_SCHEMA_VERSION}"
                )
                self.registry.unregister([handle])
                del seed[serial]
                replaced.append(serial)
                handle = None
            if handle is None:
                current[serial] = self._register(device)
                registered.append(serial)

        # Devices that disappeared from the account
        removals = orphans[:]
        for serial, handle in seed.items():
            if serial not in fetched:
                logger.info(f"{handle.display_name} is no longer registered to this account. Removing.")
                removals.append(handle)
        if removals:
            self.registry.unregister(removals)

        # Devices we already track
        changed: List[AccessoryHandle] = []
        for serial, handle in seed.items():
            if serial not in fetched:
                continue
            accessory = self.current_accessories.get(serial)
            if accessory is None or accessory.handle is not handle:
                logger.info(f"The cached sensor {handle.display_name} is still registered to this account. Configuring.")
                accessory = SensorAccessory(handle)
            if accessory.set_device(fetched[serial]):
                changed.append(handle)
            current[serial] = accessory
        if changed:
            self.registry.update(changed)

        self.current_accessories = current

        readings = await self.refresher.refresh(current)
        refreshed = self._apply_readings(readings)

        self.pass_count += 1
        self.last_pass = {
            'kind': kind,
            'started_at': started_at,
            'duration': round(time.time() - started_at, 3),
            'devices': len(fetched),
            'tracked': len(current),
            'registered': registered,
            'replaced': replaced,
            'removed': [h.serial_number or h.uuid for h in removals],
            'refreshed': refreshed,
        }
        logger.info(
            f"Reconciliation ({kind}) complete: {len(current)} tracked, "
            f"{len(registered)} registered, {len(removals)} removed, {refreshed} refreshed"
        )
        return self.last_pass

    def _register(self, device: Device) -> SensorAccessory:
        logger.info(f"Discovered Level Sense Device: {device.display_name}.")
        handle = AccessoryHandle(device.display_name, generate_uuid(device.serial_number), {
            'device': device.to_dict(),
            'readings': None,
            'version': ACCESSORY_SCHEMA_VERSION,
        })
        accessory = SensorAccessory(handle)
        self.registry.register([handle])
        logger.info(f"Level Sense Device {device.display_name} has been registered!")
        return accessory

    def _apply_readings(self, readings: Dict[str, DeviceReading]) -> int:
        updated = []
        for serial, reading in readings.items():
            accessory = self.current_accessories.get(serial)
            # Removed or gone offline while the fetch was in flight
            if accessory is None or not accessory.device.online:
                continue
            accessory.push_reading(reading)
            updated.append(accessory.handle)
        if updated:
            self.registry.update(updated)
        return len(updated)

    def status(self) -> Dict[str, Any]:
        return {
            'started': self.started,
            'scheduler_armed': self.scheduler.armed,
            'poll_minutes': self.config.poll_minutes,
            'pass_running': self.pass_running,
            'pass_count': self.pass_count,
            'skipped_passes': self.skipped_passes,
            'tracked_accessories': len(self.current_accessories),
            'last_pass': self.last_pass,
        }
