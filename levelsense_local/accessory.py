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

"""Accessory handles and the HomeKit wiring of one LevelSense sensor."""

import logging
from typing import Any, Callable, Dict, List, Optional

from aiohomekit.model.characteristics import CharacteristicsTypes
from aiohomekit.model.services import ServicesTypes

from .models import Device, DeviceReading

logger = logging.getLogger('levelsense-local')

# Shape of the services created below. Restored accessories carrying another
# version are unregistered and registered again.
ACCESSORY_SCHEMA_VERSION = "2"

MANUFACTURER = "LevelSense"

# HomeKit ContactSensorState values
CONTACT_DETECTED = 0
CONTACT_NOT_DETECTED = 1

LEAK_SENSOR_SUBTYPE = "LevelSense-Sentry-Leak-Sensor"
FLOAT_SWITCH_SUBTYPE = "LevelSense-Sentry-Float-Switch"


def _format_number(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


def convert_f_to_c(fahrenheit: Optional[str]) -> Optional[str]:
    """Convert a Fahrenheit reading string to Celsius, e.g. "212" -> "100"."""
    if fahrenheit is None:
        return None
    try:
        value = float(fahrenheit)
    except ValueError:
        logger.debug(f"Cannot convert non-numeric temperature '{fahrenheit}'")
        return None
    return _format_number((value - 32) * 5 / 9)


def to_contact_state(current_value: Optional[str]) -> int:
    """Map an input sensor value to ContactSensorState: "Open" means no contact."""
    return CONTACT_NOT_DETECTED if current_value == "Open" else CONTACT_DETECTED


class Service:
    """A HomeKit service on an accessory handle."""

    def __init__(self, service_type: str, name: Optional[str] = None, subtype: Optional[str] = None):
        self.type = service_type
        self.name = name
        self.subtype = subtype
        self.characteristics: Dict[str, Any] = {}
        self.getters: Dict[str, Callable[[], Any]] = {}
        self.linked: List['Service'] = []

    def set_characteristic(self, char_type: str, value: Any) -> 'Service':
        self.characteristics[char_type] = value
        return self

    def update_characteristic(self, char_type: str, value: Any) -> 'Service':
        # Same storage as set_characteristic; kept separate to mirror push vs setup
        self.characteristics[char_type] = value
        return self

    def on_get(self, char_type: str, getter: Callable[[], Any]) -> 'Service':
        self.getters[char_type] = getter
        self.characteristics.setdefault(char_type, None)
        return self

    def get_value(self, char_type: str) -> Any:
        """Read a characteristic, asking its getter when one is registered."""
        getter = self.getters.get(char_type)
        if getter is not None:
            return getter()
        return self.characteristics.get(char_type)

    def add_linked_service(self, service: 'Service'):
        if service not in self.linked:
            self.linked.append(service)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'name': self.name,
            'subtype': self.subtype,
            'linked': [s.subtype or s.name for s in self.linked],
            'characteristics': [
                {'type': char_type, 'value': self.get_value(char_type)}
                for char_type in self.characteristics
            ],
        }


class AccessoryHandle:
    """
    The host's record of one exposed accessory.

    ``context`` is the opaque blob persisted by the host registry. We keep
    ``{'device': ..., 'readings': ..., 'version': ...}`` in it.
    """

    def __init__(self, display_name: str, uuid: str, context: Optional[Dict[str, Any]] = None):
        self.display_name = display_name
        self.uuid = uuid
        self.context: Dict[str, Any] = context if context is not None else {}
        self.services: List[Service] = [Service(ServicesTypes.ACCESSORY_INFORMATION)]

    @property
    def serial_number(self) -> Optional[str]:
        device = self.context.get('device') or {}
        return device.get('deviceSerialNumber')

    @property
    def schema_version(self) -> Optional[str]:
        return self.context.get('version')

    def get_service(self, key: str) -> Optional[Service]:
        """Find a service by type UUID, name or subtype."""
        for service in self.services:
            if key in (service.type, service.name, service.subtype):
                return service
        return None

    def add_service(self, service_type: str, name: Optional[str] = None,
                    subtype: Optional[str] = None) -> Service:
        service = Service(service_type, name, subtype)
        self.services.append(service)
        return service

    def to_dict(self) -> Dict[str, Any]:
        return {
            'uuid': self.uuid,
            'display_name': self.display_name,
            'serial_number': self.serial_number,
            'schema_version': self.schema_version,
            'services': [service.to_dict() for service in self.services],
        }

    def __repr__(self) -> str:
        return f"<AccessoryHandle {self.uuid} '{self.display_name}'>"


class SensorAccessory:
    """
    Tracked accessory for one LevelSense Sentry.

    Wires the temperature, humidity and two contact sensor services onto the
    handle, and projects readings into their characteristics.
    """

    def __init__(self, handle: AccessoryHandle):
        self.handle = handle
        self.device = Device.from_dict(handle.context['device'])
        self.reading: Optional[DeviceReading] = None
        readings = handle.context.get('readings')
        if readings:
            try:
                self.reading = DeviceReading.from_dict(readings)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Discarding unreadable cached reading of {handle.display_name}: {e}")
                handle.context['readings'] = None

        name = self.device.display_name

        info = handle.get_service(ServicesTypes.ACCESSORY_INFORMATION)
        if info is None:
            info = handle.add_service(ServicesTypes.ACCESSORY_INFORMATION)
        self.info_service = info
        self._set_information()

        self.temp_service = self._get_or_add(ServicesTypes.TEMPERATURE_SENSOR, f"{name} Temperature")
        self.temp_service.set_characteristic(CharacteristicsTypes.NAME, f"{name} Temperature")
        self.temp_service.on_get(CharacteristicsTypes.TEMPERATURE_CURRENT, self.get_current_temperature)

        self.humidity_service = self._get_or_add(ServicesTypes.HUMIDITY_SENSOR, f"{name} Humidity")
        self.humidity_service.set_characteristic(CharacteristicsTypes.NAME, f"{name} Humidity")
        self.humidity_service.on_get(CharacteristicsTypes.RELATIVE_HUMIDITY_CURRENT, self.get_current_relative_humidity)
        self.temp_service.add_linked_service(self.humidity_service)

        self.leak_service = self._get_or_add(ServicesTypes.CONTACT_SENSOR, f"{name} Leak Sensor", LEAK_SENSOR_SUBTYPE)
        self.leak_service.on_get(CharacteristicsTypes.CONTACT_STATE, self.get_leak_sensor_state)
        self.temp_service.add_linked_service(self.leak_service)

        self.float_service = self._get_or_add(ServicesTypes.CONTACT_SENSOR, f"{name} Float Switch", FLOAT_SWITCH_SUBTYPE)
        self.float_service.on_get(CharacteristicsTypes.CONTACT_STATE, self.get_float_switch_state)
        self.temp_service.add_linked_service(self.float_service)

        if self.reading is not None:
            self._project(self.reading)

    def _get_or_add(self, service_type: str, name: str, subtype: Optional[str] = None) -> Service:
        service = self.handle.get_service(subtype or name)
        if service is None:
            service = self.handle.get_service(service_type) if subtype is None else None
        if service is None:
            service = self.handle.add_service(service_type, name, subtype)
        service.name = name
        return service

    def _set_information(self):
        (self.info_service
            .set_characteristic(CharacteristicsTypes.MANUFACTURER, MANUFACTURER)
            .set_characteristic(CharacteristicsTypes.MODEL, self.device.device_type)
            .set_characteristic(CharacteristicsTypes.SERIAL_NUMBER, self.device.serial_number)
            .set_characteristic(CharacteristicsTypes.FIRMWARE_REVISION, self.device.firmware)
            .set_characteristic(CharacteristicsTypes.CONFIGURED_NAME, self.device.display_name))

    @property
    def serial_number(self) -> str:
        return self.device.serial_number

    @property
    def schema_version(self) -> Optional[str]:
        return self.handle.schema_version

    def set_device(self, device: Device) -> bool:
        """Replace the device snapshot. Returns True if anything changed."""
        if device == self.device:
            return False
        self.device = device
        self.handle.context['device'] = device.to_dict()
        self._set_information()
        return True

    def identify(self):
        logger.info(f"{self.handle.display_name} identified!")

    def push_reading(self, reading: DeviceReading):
        """Store a fresh reading and push the projected values to the services."""
        self.reading = reading
        self.handle.context['readings'] = reading.to_dict()
        self._project(reading)

    def _project(self, reading: DeviceReading):
        self.temp_service.update_characteristic(CharacteristicsTypes.TEMPERATURE_CURRENT, self._temperature(reading))
        humidity = reading.find('rh')
        self.humidity_service.update_characteristic(
            CharacteristicsTypes.RELATIVE_HUMIDITY_CURRENT, humidity.current_value if humidity else None)
        input1 = reading.find('input1')
        self.leak_service.update_characteristic(
            CharacteristicsTypes.CONTACT_STATE, to_contact_state(input1.current_value if input1 else None))
        input2 = reading.find('input2')
        self.float_service.update_characteristic(
            CharacteristicsTypes.CONTACT_STATE, to_contact_state(input2.current_value if input2 else None))

    @staticmethod
    def _temperature(reading: Optional[DeviceReading]) -> Optional[str]:
        sensor = reading.find('tempc') if reading else None
        if sensor is None:
            return None
        if sensor.display_units == 'F':
            return convert_f_to_c(sensor.current_value)
        return sensor.current_value

    # Handlers for on-demand reads; they answer from the last stored reading.

    def get_current_temperature(self) -> Optional[str]:
        temp = self._temperature(self.reading)
        logger.debug(f"{self.device.display_name}: getCurrentTemperature -> {temp}")
        return temp

    def get_current_relative_humidity(self) -> Optional[str]:
        sensor = self.reading.find('rh') if self.reading else None
        value = sensor.current_value if sensor else None
        logger.debug(f"{self.device.display_name}: getCurrentRelativeHumidity -> {value}")
        return value

    def get_leak_sensor_state(self) -> int:
        sensor = self.reading.find('input1') if self.reading else None
        return to_contact_state(sensor.current_value if sensor else None)

    def get_float_switch_state(self) -> int:
        sensor = self.reading.find('input2') if self.reading else None
        return to_contact_state(sensor.current_value if sensor else None)

    def __repr__(self) -> str:
        return f"<SensorAccessory {self.serial_number} v{self.schema_version}>"
