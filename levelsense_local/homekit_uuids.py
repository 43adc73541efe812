"""
HomeKit UUID mappings for the services and characteristics we expose.

These mappings convert HomeKit UUIDs to human-readable names for better API
usability. The UUIDs themselves come from aiohomekit so they always match
what a HomeKit controller expects.
"""

from typing import Any, Dict, List

from aiohomekit.model.characteristics import CharacteristicsTypes
from aiohomekit.model.services import ServicesTypes

HOMEKIT_SERVICES = {
    ServicesTypes.ACCESSORY_INFORMATION: "AccessoryInformation",
    ServicesTypes.TEMPERATURE_SENSOR: "TemperatureSensor",
    ServicesTypes.HUMIDITY_SENSOR: "HumiditySensor",
    ServicesTypes.CONTACT_SENSOR: "ContactSensor",
}

HOMEKIT_CHARACTERISTICS = {
    # Required for AccessoryInformation service
    CharacteristicsTypes.IDENTIFY: "Identify",
    CharacteristicsTypes.MANUFACTURER: "Manufacturer",
    CharacteristicsTypes.MODEL: "Model",
    CharacteristicsTypes.NAME: "Name",
    CharacteristicsTypes.SERIAL_NUMBER: "SerialNumber",
    CharacteristicsTypes.FIRMWARE_REVISION: "FirmwareRevision",
    CharacteristicsTypes.CONFIGURED_NAME: "ConfiguredName",

    # Sensors
    CharacteristicsTypes.TEMPERATURE_CURRENT: "CurrentTemperature",
    CharacteristicsTypes.RELATIVE_HUMIDITY_CURRENT: "CurrentRelativeHumidity",
    CharacteristicsTypes.CONTACT_STATE: "ContactSensorState",
}

# Lookups are case-insensitive; aiohomekit and other controllers disagree on case.
_SERVICES_UPPER = {k.upper(): v for k, v in HOMEKIT_SERVICES.items()}
_CHARACTERISTICS_UPPER = {k.upper(): v for k, v in HOMEKIT_CHARACTERISTICS.items()}


def get_service_name(uuid: str) -> str:
    """Get human-readable service name from UUID."""
    return _SERVICES_UPPER.get(uuid.upper(), f"Unknown Service ({uuid})")


def get_characteristic_name(uuid: str) -> str:
    """Get human-readable characteristic name from UUID."""
    return _CHARACTERISTICS_UPPER.get(uuid.upper(), f"Unknown Characteristic ({uuid})")


def enhance_accessory_data(accessories: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Add human-readable names next to the UUIDs of serialized accessories."""
    enhanced = []
    for accessory in accessories:
        services = []
        for service in accessory.get('services', []):
            characteristics = []
            for char in service.get('characteristics', []):
                characteristics.append({**char, 'type_name': get_characteristic_name(char['type'])})
            services.append({
                **service,
                'type_name': get_service_name(service['type']),
                'characteristics': characteristics,
            })
        enhanced.append({**accessory, 'services': services})
    return enhanced
