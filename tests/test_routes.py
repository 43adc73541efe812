import pytest
from fastapi.testclient import TestClient

from conftest import FakeCloudAPI, FakeRegistry, device_dict
from levelsense_local import routes
from levelsense_local.config import LevelSenseConfig
from levelsense_local.platform import LevelSensePlatform


def make_client(platform):
    app = routes.create_app()
    routes.register_routes(app, lambda: platform)
    return TestClient(app)


@pytest.fixture
def api():
    return FakeCloudAPI(devices=[device_dict('S1', device_id='1', name='Walk-in Cooler')])


@pytest.fixture
def platform(api):
    return LevelSensePlatform(LevelSenseConfig(session_key='test'), api, FakeRegistry())


def test_refresh_runs_a_pass_and_lists_accessories(platform):
    with make_client(platform) as client:
        response = client.post("/refresh")
        assert response.status_code == 200
        assert response.json()['registered'] == ['S1']

        response = client.get("/accessories")
        assert response.status_code == 200
        body = response.json()
        assert body['enhanced'] is True
        accessory = body['accessories'][0]
        assert accessory['serial_number'] == 'S1'
        type_names = {s['type_name'] for s in accessory['services']}
        assert {'TemperatureSensor', 'HumiditySensor', 'ContactSensor'} <= type_names


def test_get_single_accessory(platform):
    with make_client(platform) as client:
        client.post("/refresh")

        response = client.get("/accessories/S1", params={'enhanced': 'false'})
        assert response.status_code == 200
        data = response.json()
        assert data['display_name'] == 'Walk-in Cooler'
        assert data['online'] is True
        assert data['reading']['id'] == '1'

        assert client.get("/accessories/NOPE").status_code == 404


def test_status_reports_platform_and_cloud(platform, api):
    with make_client(platform) as client:
        data = client.get("/status").json()
        assert data['status'] == 'ok'
        assert data['platform']['tracked_accessories'] == 0

        api.degraded = True
        assert client.get("/status").json()['status'] == 'degraded'


def test_refresh_login_clears_degraded(platform, api):
    api.degraded = True
    with make_client(platform) as client:
        response = client.post("/refresh/login")

    assert response.status_code == 200
    assert response.json()['was_degraded'] is True
    assert api.degraded is False


def test_refresh_conflicts_with_running_pass(api):
    class BusyPlatform:
        pass_running = True
        cloud_api = api

    with make_client(BusyPlatform()) as client:
        assert client.post("/refresh").status_code == 409


def test_missing_platform_is_unavailable():
    with make_client(None) as client:
        assert client.get("/status").status_code == 503


def test_api_keys_are_enforced(platform, monkeypatch):
    monkeypatch.setattr(routes, 'API_KEYS', {'secret-key'})

    with make_client(platform) as client:
        assert client.get("/status").status_code == 401
        assert client.get("/status", headers={'Authorization': 'Bearer wrong'}).status_code == 401
        assert client.get("/status", headers={'Authorization': 'Bearer secret-key'}).status_code == 200
        # Landing page stays open
        assert client.get("/").status_code == 200
