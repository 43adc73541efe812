import asyncio

import aiohttp
import pytest

from conftest import FakeResponse, FakeSession, device_dict, reading_dict
from levelsense_local.cloud import AuthError, FetchError, LevelSenseCloudAPI, ServiceDegraded


def login_ok(key='key-1'):
    return FakeResponse({'success': True, 'message': 'ok', 'sessionKey': key})


def make_api(routes, **kwargs):
    session = FakeSession(routes)
    kwargs.setdefault('email', 'me@example.com')
    kwargs.setdefault('password', 'secret')
    return LevelSenseCloudAPI(session=session, **kwargs), session


@pytest.mark.asyncio
async def test_static_session_key_skips_login():
    api, session = make_api({}, email=None, password=None, session_key='static')

    assert await api.authenticate() == 'static'
    assert session.calls == []


@pytest.mark.asyncio
async def test_lazy_login_then_device_list_sends_session_header():
    api, session = make_api({
        '/v1/login': [login_ok('abc')],
        '/v1/getDeviceList': [FakeResponse({'success': True, 'deviceList': [device_dict('S1'), device_dict('S2')]})],
    })

    devices = await api.get_device_list()

    assert [d.serial_number for d in devices] == ['S1', 'S2']
    login = session.calls_to('/v1/login')[0]
    assert login['json'] == {'email': 'me@example.com', 'password': 'secret'}
    assert session.calls_to('/v1/getDeviceList')[0]['headers']['SESSIONKEY'] == 'abc'
    assert api.login_count == 1


@pytest.mark.asyncio
async def test_empty_device_list_is_not_an_error():
    api, _ = make_api({
        '/v1/login': [login_ok()],
        '/v1/getDeviceList': [FakeResponse({'success': True, 'deviceList': []})],
    })

    assert await api.get_device_list() == []
    assert api.is_authenticated()


@pytest.mark.asyncio
async def test_success_false_on_http_200_invalidates_session():
    api, session = make_api({
        '/v1/login': [login_ok('first'), login_ok('second')],
        '/v1/getDeviceList': [
            FakeResponse({'success': False, 'errorId': 'E1', 'message': 'session expired'}),
            FakeResponse({'success': True, 'deviceList': []}),
        ],
    })

    with pytest.raises(FetchError):
        await api.get_device_list()
    assert api.session_key is None
    assert not api.degraded

    await api.get_device_list()
    assert api.login_count == 2
    assert session.calls_to('/v1/getDeviceList')[1]['headers']['SESSIONKEY'] == 'second'


@pytest.mark.asyncio
async def test_rejected_login_degrades_and_fails_fast():
    api, session = make_api({
        '/v1/login': [FakeResponse({'success': False, 'message': 'bad password'})],
    })

    with pytest.raises(AuthError):
        await api.get_device_list()
    assert api.degraded

    calls_before = len(session.calls)
    with pytest.raises(ServiceDegraded):
        await api.get_device_list()
    with pytest.raises(ServiceDegraded):
        await api.get_device_alarm('11018')
    assert len(session.calls) == calls_before


@pytest.mark.asyncio
async def test_login_transport_failure_degrades():
    api, _ = make_api({'/v1/login': [aiohttp.ClientConnectionError('refused')]})

    with pytest.raises(AuthError):
        await api.authenticate()
    assert api.degraded
    assert 'refused' in api.degraded_reason


@pytest.mark.asyncio
async def test_reset_degraded_allows_new_login():
    api, _ = make_api({
        '/v1/login': [FakeResponse({'success': False, 'message': 'nope'}), login_ok('fresh')],
        '/v1/getDeviceList': [FakeResponse({'success': True, 'deviceList': []})],
    })
    with pytest.raises(AuthError):
        await api.authenticate()

    api.reset_degraded()

    assert await api.get_device_list() == []
    assert api.session_key == 'fresh'


@pytest.mark.asyncio
async def test_timeout_is_treated_as_fetch_error():
    api, _ = make_api({
        '/v1/login': [login_ok()],
        '/v2/getAlarmConfig': [asyncio.TimeoutError()],
    })

    with pytest.raises(FetchError, match='Timed out'):
        await api.get_device_alarm('11018')
    assert api.session_key is None


@pytest.mark.asyncio
async def test_http_error_status_is_fetch_error():
    api, _ = make_api({
        '/v1/login': [login_ok()],
        '/v1/getDeviceList': [FakeResponse(None, status=500, text='oops')],
    })

    with pytest.raises(FetchError, match='HTTP 500'):
        await api.get_device_list()
    assert api.session_key is None


@pytest.mark.asyncio
async def test_get_device_alarm_sends_id_and_parses_sensors():
    api, session = make_api({
        '/v1/login': [login_ok()],
        '/v2/getAlarmConfig': [FakeResponse({'success': True, 'device': reading_dict('11018', temp='68')})],
    })

    reading = await api.get_device_alarm('11018')

    assert session.calls_to('/v2/getAlarmConfig')[0]['json'] == {'id': '11018'}
    assert reading.device_id == '11018'
    assert reading.find('tempc').current_value == '68'
    assert reading.find('input2').current_value == 'Closed'


@pytest.mark.asyncio
async def test_missing_device_payload_is_fetch_error():
    api, _ = make_api({
        '/v1/login': [login_ok()],
        '/v2/getAlarmConfig': [FakeResponse({'success': True})],
    })

    with pytest.raises(FetchError, match='malformed'):
        await api.get_device_alarm('11018')
    assert api.session_key is None


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_login():
    api, _ = make_api({
        '/v1/login': [login_ok()],
        '/v2/getAlarmConfig': [FakeResponse({'success': True, 'device': reading_dict('1')})],
    })

    await asyncio.gather(*(api.get_device_alarm(str(i)) for i in range(5)))

    assert api.login_count == 1


def test_invalidate_keeps_newer_session_key():
    api = LevelSenseCloudAPI(email='a', password='b')
    api.session_key = 'newer'

    api._invalidate('older')

    assert api.session_key == 'newer'


@pytest.mark.asyncio
async def test_malformed_device_entries_are_skipped():
    api, _ = make_api({
        '/v1/login': [login_ok()],
        '/v1/getDeviceList': [FakeResponse({'success': True, 'deviceList': [
            device_dict('S1'), {'id': '7', 'deviceType': 'LS_SENTRY'},
        ]})],
    })

    devices = await api.get_device_list()

    assert [d.serial_number for d in devices] == ['S1']
