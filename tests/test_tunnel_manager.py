import pytest
from unittest.mock import patch

from core.exceptions import ProcessStartError, ProcessStopError
from core.models import ProxyKind
from core.tunnel_manager import TunnelManager
from tests.conftest import FakeEngine


@pytest.fixture(autouse=True)
def free_ports():
    with patch('core.tunnel_manager.check_port_availability', return_value=(True, "Порт свободен")):
        yield


def test_start_registers_process_and_binds_listener(decoder, engine):
    manager = TunnelManager(decoder, engine)

    manager.start("vless://a:1", "vless://a:1", 1080, ProxyKind.SOCKS, "/bin/xray")
    manager.start("vmess://b:2", "vmess://b:2", 1081, ProxyKind.HTTP, "/bin/xray")

    assert sorted(manager.list_running()) == ["vless://a:1", "vmess://b:2"]
    assert engine.spawned[0].document["inbounds"][0] == {"protocol": "socks", "port": 1080}
    assert engine.spawned[1].document["inbounds"][0] == {"protocol": "http", "port": 1081}


def test_start_config_failure_inserts_nothing(decoder, engine):
    manager = TunnelManager(decoder, engine)

    with pytest.raises(ProcessStartError) as exc_info:
        manager.start("vless://noconfig:1", "vless://noconfig:1", 1080, ProxyKind.SOCKS, "/bin/xray")

    assert exc_info.value.key == "vless://noconfig:1"
    assert manager.list_running() == []
    assert engine.spawned == []


def test_start_spawn_failure_inserts_nothing(decoder):
    engine = FakeEngine(fail_spawn_ports={1080})
    manager = TunnelManager(decoder, engine)

    with pytest.raises(ProcessStartError):
        manager.start("vless://a:1", "vless://a:1", 1080, ProxyKind.SOCKS, "/bin/xray")

    assert manager.list_running() == []


def test_start_replaces_existing_process(decoder, engine):
    manager = TunnelManager(decoder, engine)

    manager.start("vless://a:1", "vless://a:1", 1080, ProxyKind.SOCKS, "/bin/xray")
    first = engine.spawned[0]
    manager.start("vless://a:1", "vless://a:1", 1090, ProxyKind.SOCKS, "/bin/xray")

    assert first.terminated is True
    assert manager.list_running() == ["vless://a:1"]


def test_stop_removes_entry_and_absent_key_is_noop(decoder, engine):
    manager = TunnelManager(decoder, engine)
    manager.start("vless://a:1", "vless://a:1", 1080, ProxyKind.SOCKS, "/bin/xray")

    manager.stop("vless://a:1")
    manager.stop("vless://a:1")
    manager.stop("never://started:0")

    assert manager.list_running() == []
    assert len(engine.terminated) == 1


def test_stop_single_surfaces_termination_failure(decoder):
    engine = FakeEngine(fail_terminate=True)
    manager = TunnelManager(decoder, engine)
    manager.start("vless://a:1", "vless://a:1", 1080, ProxyKind.SOCKS, "/bin/xray")

    with pytest.raises(ProcessStopError):
        manager.stop("vless://a:1")

    assert manager.list_running() == []


def test_stop_all_empties_table_even_when_termination_fails(decoder):
    engine = FakeEngine(fail_terminate=True)
    manager = TunnelManager(decoder, engine)
    for i in range(3):
        manager.start(f"vless://s{i}:1", f"vless://s{i}:1", 1080 + i, ProxyKind.SOCKS, "/bin/xray")

    manager.stop_all()

    assert manager.list_running() == []
    assert len(engine.terminated) == 3


def test_busy_port_only_warns(decoder, engine, caplog):
    manager = TunnelManager(decoder, engine)

    with patch('core.tunnel_manager.check_port_availability', return_value=(False, "Порт 1080 занят")):
        manager.start("vless://a:1", "vless://a:1", 1080, ProxyKind.SOCKS, "/bin/xray")

    assert manager.is_running("vless://a:1")
    assert "Порт 1080 занят" in caplog.text


def test_concurrent_start_for_same_key_keeps_single_process(decoder):
    class ReentrantEngine(FakeEngine):
        """Пока идёт первый spawn, другой поток успевает запустить тот же ключ"""

        def __init__(self):
            super().__init__()
            self.manager = None

        def spawn(self, config_document, binary_path):
            if not self.spawned:
                self.spawned.append(None)
                self.manager.start("vless://a:1", "vless://a:1", 1090, ProxyKind.SOCKS, "/bin/xray")
                self.spawned.remove(None)
            return super().spawn(config_document, binary_path)

    engine = ReentrantEngine()
    manager = TunnelManager(decoder, engine)
    engine.manager = manager

    manager.start("vless://a:1", "vless://a:1", 1080, ProxyKind.SOCKS, "/bin/xray")

    inner, outer = engine.spawned
    assert manager.list_running() == ["vless://a:1"]
    assert engine.terminated == [inner]
    assert outer.terminated is False
