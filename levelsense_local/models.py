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

"""Records reported by the LevelSense API.

The API returns almost every field as a string, including flags such as
``online`` ("0" / "1"). The classes below keep the raw payload around so it
can be stashed in an accessory context and restored on the next start.
"""

from typing import Any, Dict, List, Optional


def parse_flag(value: Any) -> bool:
    """Interpret the API's loosely typed boolean fields."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return False


class Device:
    """Identity record for one sensor unit, as listed by /v1/getDeviceList."""

    def __init__(
        self,
        id: str,
        serial_number: str,
        device_type: str,
        display_name: str,
        online: bool = False,
        firmware: Optional[str] = None,
        raw: Optional[Dict[str, Any]] = None
    ):
        self.id = id
        self.serial_number = serial_number
        self.device_type = device_type
        self.display_name = display_name
        self.online = online
        self.firmware = firmware
        self.raw = raw if raw is not None else {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Device':
        """
        Build a Device from an API deviceList entry.

        Raises:
            KeyError: if the entry has no serial number
        """
        serial = data['deviceSerialNumber']
        if not serial:
            raise KeyError('deviceSerialNumber')

        return cls(
            id=str(data.get('id', '')),
            serial_number=str(serial),
            device_type=str(data.get('deviceType', '')),
            display_name=str(data.get('displayName') or serial),
            online=parse_flag(data.get('online')),
            firmware=data.get('deviceFirmware'),
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Return the wire representation (used for accessory contexts)."""
        data = dict(self.raw)
        data.update({
            'id': self.id,
            'deviceSerialNumber': self.serial_number,
            'deviceType': self.device_type,
            'displayName': self.display_name,
            'deviceFirmware': self.firmware,
            'online': '1' if self.online else '0',
        })
        return data

    def __eq__(self, other) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        state = "online" if self.online else "offline"
        return f"<Device {self.serial_number} {self.device_type} '{self.display_name}' ({state})>"


class SensorEntry:
    """One entry of a device's sensorLimit list."""

    def __init__(
        self,
        sensor_slug: str,
        current_value: Optional[str],
        is_alarm: bool = False,
        display_name: Optional[str] = None,
        display_units: Optional[str] = None
    ):
        self.sensor_slug = sensor_slug
        self.current_value = current_value
        self.is_alarm = is_alarm
        self.display_name = display_name
        self.display_units = display_units

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SensorEntry':
        value = data.get('currentValue')
        return cls(
            sensor_slug=str(data.get('sensorSlug', '')),
            current_value=None if value is None else str(value),
            is_alarm=parse_flag(data.get('isAlarm')),
            display_name=data.get('sensorDisplayName'),
            display_units=data.get('sensorDisplayUnits'),
        )

    def __repr__(self) -> str:
        return f"<SensorEntry {self.sensor_slug}={self.current_value}{self.display_units or ''}>"


class DeviceReading:
    """Live telemetry for one device, as returned by /v2/getAlarmConfig."""

    def __init__(self, device_id: str, sensors: List[SensorEntry], raw: Optional[Dict[str, Any]] = None):
        self.device_id = device_id
        self.sensors = sensors
        self.raw = raw if raw is not None else {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeviceReading':
        entries = data.get('sensorLimit') or []
        if not isinstance(entries, list):
            raise ValueError(f"sensorLimit is not a list: {type(entries).__name__}")
        return cls(
            device_id=str(data.get('id', '')),
            sensors=[SensorEntry.from_dict(entry) for entry in entries],
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.raw)

    def find(self, slug: str) -> Optional[SensorEntry]:
        """Return the first sensor entry with the given slug, if any."""
        for sensor in self.sensors:
            if sensor.sensor_slug == slug:
                return sensor
        return None

    def __repr__(self) -> str:
        return f"<DeviceReading {self.device_id}: {len(self.sensors)} sensors>"
