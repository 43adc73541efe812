import pytest

from conftest import FakeCloudAPI, device_dict, reading_dict
from levelsense_local.accessory import ACCESSORY_SCHEMA_VERSION, AccessoryHandle, SensorAccessory
from levelsense_local.platform import generate_uuid
from levelsense_local.refresher import ReadingRefresher


def tracked(*devices):
    accessories = {}
    for device in devices:
        handle = AccessoryHandle(device['displayName'], generate_uuid(device['deviceSerialNumber']), {
            'device': device,
            'readings': None,
            'version': ACCESSORY_SCHEMA_VERSION,
        })
        accessories[device['deviceSerialNumber']] = SensorAccessory(handle)
    return accessories


@pytest.mark.asyncio
async def test_refresh_returns_readings_by_serial():
    api = FakeCloudAPI(readings={'1': reading_dict('1', temp='50')})
    accessories = tracked(device_dict('S1', device_id='1'), device_dict('S2', device_id='2'))

    readings = await ReadingRefresher(api).refresh(accessories)

    assert set(readings) == {'S1', 'S2'}
    assert readings['S1'].find('tempc').current_value == '50'
    # Accessories are left untouched
    assert accessories['S1'].reading is None


@pytest.mark.asyncio
async def test_refresh_skips_offline_devices():
    api = FakeCloudAPI()
    accessories = tracked(device_dict('S1', device_id='1', online='0'))

    assert await ReadingRefresher(api).refresh(accessories) == {}
    assert api.alarm_calls == []


@pytest.mark.asyncio
async def test_refresh_isolates_failures():
    api = FakeCloudAPI(failing_ids={'2'})
    accessories = tracked(
        device_dict('S1', device_id='1'),
        device_dict('S2', device_id='2'),
        device_dict('S3', device_id='3'),
    )

    readings = await ReadingRefresher(api).refresh(accessories)

    assert set(readings) == {'S1', 'S3'}
    assert sorted(api.alarm_calls) == ['1', '2', '3']


@pytest.mark.asyncio
async def test_refresh_survives_unexpected_errors():
    class BrokenAPI(FakeCloudAPI):
        async def get_device_alarm(self, device_id):
            if device_id == '1':
                raise KeyError('sensorLimit')
            return await super().get_device_alarm(device_id)

    accessories = tracked(device_dict('S1', device_id='1'), device_dict('S2', device_id='2'))

    readings = await ReadingRefresher(BrokenAPI()).refresh(accessories)

    assert set(readings) == {'S2'}


@pytest.mark.asyncio
async def test_refresh_with_nothing_tracked():
    assert await ReadingRefresher(FakeCloudAPI()).refresh({}) == {}
