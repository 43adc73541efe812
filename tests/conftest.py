import pytest

from levelsense_local.cloud import FetchError
from levelsense_local.config import LevelSenseConfig
from levelsense_local.models import DeviceReading


def device_dict(serial, device_id=None, device_type='LS_SENTRY', online='1', name=None, firmware='SENTRY_011922B'):
    return {
        'id': device_id or f"id-{serial}",
        'deviceType': device_type,
        'deviceSerialNumber': serial,
        'displayName': name or f"Sensor {serial}",
        'deviceFirmware': firmware,
        'online': online,
    }


def reading_dict(device_id, temp='70', units='F', rh='45', input1='Closed', input2='Closed'):
    return {
        'id': device_id,
        'sensorLimit': [
            {'sensorSlug': 'tempc', 'currentValue': temp, 'sensorDisplayUnits': units,
             'sensorDisplayName': 'Temperature', 'isAlarm': False},
            {'sensorSlug': 'rh', 'currentValue': rh, 'sensorDisplayUnits': '%',
             'sensorDisplayName': 'Humidity', 'isAlarm': False},
            {'sensorSlug': 'input1', 'currentValue': input1, 'sensorDisplayName': 'Leak', 'isAlarm': False},
            {'sensorSlug': 'input2', 'currentValue': input2, 'sensorDisplayName': 'Float', 'isAlarm': False},
        ],
    }


class FakeResponse:
    def __init__(self, payload=None, status=200, text=''):
        self.payload = payload
        self.status = status
        self._text = text

    async def json(self, content_type=None):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession; answers by URL suffix."""

    def __init__(self, routes):
        # suffix -> list of FakeResponse or exceptions, consumed in order
        self.routes = {suffix: list(responses) for suffix, responses in routes.items()}
        self.calls = []
        self.closed = False

    def get(self, url, headers=None, json=None, timeout=None):
        self.calls.append({'url': url, 'headers': headers, 'json': json})
        for suffix, responses in self.routes.items():
            if url.endswith(suffix):
                result = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(result, BaseException):
                    raise result
                return result
        raise AssertionError(f"unexpected request to {url}")

    def calls_to(self, suffix):
        return [c for c in self.calls if c['url'].endswith(suffix)]

    async def close(self):
        self.closed = True


class FakeCloudAPI:
    """Cloud API double serving fixed device lists and readings."""

    def __init__(self, devices=None, readings=None, failing_ids=()):
        self.devices = devices if devices is not None else []
        self.readings = readings or {}
        self.failing_ids = set(failing_ids)
        self.list_error = None
        self.list_calls = 0
        self.alarm_calls = []
        self.degraded = False

    async def get_device_list(self):
        from levelsense_local.models import Device
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return [Device.from_dict(d) for d in self.devices]

    async def get_device_alarm(self, device_id):
        self.alarm_calls.append(device_id)
        if device_id in self.failing_ids:
            raise FetchError(f"getAlarmConfig({device_id}) failed: boom")
        return DeviceReading.from_dict(self.readings.get(device_id) or reading_dict(device_id))

    def reset_degraded(self):
        self.degraded = False

    def status(self):
        return {'authenticated': True, 'degraded': self.degraded}


class FakeRegistry:
    def __init__(self):
        self.register_calls = []
        self.unregister_calls = []
        self.update_calls = []

    def register(self, handles):
        self.register_calls.append(list(handles))

    def unregister(self, handles):
        self.unregister_calls.append(list(handles))

    def update(self, handles):
        self.update_calls.append(list(handles))


@pytest.fixture
def config():
    return LevelSenseConfig(session_key='test-session')


@pytest.fixture
def registry():
    return FakeRegistry()
