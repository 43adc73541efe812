import socket

import pytest

from levelsense_local import zeroconf_register


class FakeAsyncZeroconf:
    instances = []

    def __init__(self, fail=False):
        self.fail = fail
        self.registered = []
        self.unregistered = []
        self.closed = False
        FakeAsyncZeroconf.instances.append(self)

    async def async_register_service(self, info, allow_name_change=False):
        if self.fail:
            raise OSError("multicast unavailable")
        self.registered.append((info, allow_name_change))

    async def async_unregister_service(self, info):
        self.unregistered.append(info)

    async def async_close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def fake_zeroconf(monkeypatch):
    FakeAsyncZeroconf.instances = []
    monkeypatch.setattr(zeroconf_register, '_reg', None)
    monkeypatch.setattr(zeroconf_register, 'AsyncZeroconf', FakeAsyncZeroconf)
    yield


def test_build_service_info_uses_given_address():
    info = zeroconf_register.build_service_info('levelsense-test', 4408, {'path': '/'}, '192.168.1.10')

    assert info.type == zeroconf_register.SERVICE_TYPE
    assert info.name == f"levelsense-test.{zeroconf_register.SERVICE_TYPE}"
    assert info.port == 4408
    assert info.addresses == [socket.inet_aton('192.168.1.10')]
    assert info.properties[b'path'] == b'/'


@pytest.mark.asyncio
async def test_register_then_unregister():
    ok, msg = await zeroconf_register.register_service_async('levelsense-test', 4408, {'path': '/'}, '10.0.0.2')
    assert ok is True
    assert msg is None

    zc = FakeAsyncZeroconf.instances[0]
    info, allow_name_change = zc.registered[0]
    assert allow_name_change is True

    ok, msg = await zeroconf_register.register_service_async('levelsense-test', 4408, None, '10.0.0.2')
    assert (ok, msg) == (True, "already registered")
    assert len(FakeAsyncZeroconf.instances) == 1

    await zeroconf_register.unregister_service_async()
    assert zc.unregistered == [info]
    assert zc.closed
    assert zeroconf_register._reg is None


@pytest.mark.asyncio
async def test_failed_registration_reports_error(monkeypatch):
    monkeypatch.setattr(zeroconf_register, 'AsyncZeroconf', lambda: FakeAsyncZeroconf(fail=True))

    ok, msg = await zeroconf_register.register_service_async('levelsense-test', 4408, None, '10.0.0.2')

    assert ok is False
    assert 'multicast' in msg
    assert FakeAsyncZeroconf.instances[0].closed
    assert zeroconf_register._reg is None


@pytest.mark.asyncio
async def test_unregister_without_registration_is_noop():
    await zeroconf_register.unregister_service_async()

    assert FakeAsyncZeroconf.instances == []
