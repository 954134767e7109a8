import json

import pytest

from core.config_manager import ConfigManager
from core.exceptions import ConfigIoError
from core.models import ProxyKind, ServerSettings


def test_missing_file_loads_defaults(config_manager):
    config = config_manager.load()

    assert config['subscription_url'] == ''
    assert config_manager.engine_binary_path == ''
    assert config_manager.server_settings() == {}
    assert config_manager.autostart is False
    assert config_manager.decoder_command == ['v2parser']


def test_parse_failure_raises(config_manager):
    config_manager.config_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigIoError):
        config_manager.load()


def test_non_object_root_raises(config_manager):
    config_manager.config_path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ConfigIoError):
        config_manager.load()


def test_invalid_server_settings_raise(config_manager):
    config_manager.config_path.write_text(
        json.dumps({'server_settings': {'vless://a:1': {'proxy_type': 'SOCKS'}}}),
        encoding="utf-8",
    )

    with pytest.raises(ConfigIoError):
        config_manager.load()


def test_server_settings_defaults_and_unknown_kind(config_manager):
    config_manager.config_path.write_text(json.dumps({
        'subscription_url': ' https://feed.example/sub ',
        'server_settings': {
            'vless://a:1': {'local_port': 1080, 'proxy_type': 'HTTP'},
            'vmess://b:2': {'local_port': 1081, 'proxy_type': 'weird', 'enabled': False},
        },
    }), encoding="utf-8")

    config_manager.load()

    assert config_manager.subscription_url == 'https://feed.example/sub'
    assert config_manager.server_settings() == {
        'vless://a:1': ServerSettings(1080, ProxyKind.HTTP, True),
        'vmess://b:2': ServerSettings(1081, ProxyKind.SOCKS, False),
    }


def test_save_then_load(tmp_path):
    path = tmp_path / "nested" / "config.json"
    writer = ConfigManager(config_path=path)
    writer.set('engine_binary_path', '/opt/xray/xray')
    writer.set('autostart', True)
    writer.set_server_settings({'ss://c:3': ServerSettings(2000, ProxyKind.HTTP, False)})
    writer.save()

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored['server_settings'] == {
        'ss://c:3': {'local_port': 2000, 'proxy_type': 'HTTP', 'enabled': False}
    }

    reader = ConfigManager(config_path=path)
    reader.load()
    assert reader.engine_binary_path == '/opt/xray/xray'
    assert reader.autostart is True
    assert reader.server_settings()['ss://c:3'].local_port == 2000


def test_save_failure_raises(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    manager = ConfigManager(config_path=blocker / "config.json")

    with pytest.raises(ConfigIoError):
        manager.save()


def test_dot_notation_get_set(config_manager):
    config_manager.set('server_settings.vless://a:1', {'local_port': 1080})

    assert config_manager.get('server_settings.vless://a:1') == {'local_port': 1080}
    assert config_manager.get('missing.key', 'fallback') == 'fallback'


@pytest.mark.parametrize("entry", [
    {'local_port': 70000, 'proxy_type': 'SOCKS', 'enabled': True},
    {'local_port': -5, 'proxy_type': 'SOCKS', 'enabled': True},
    {'local_port': "1080", 'proxy_type': 'SOCKS', 'enabled': True},
    {'local_port': 1080, 'proxy_type': 'SOCKS', 'enabled': "false"},
])
def test_out_of_schema_server_settings_raise(config_manager, entry):
    config_manager.config_path.write_text(
        json.dumps({'server_settings': {'vless://a:1': entry}}),
        encoding="utf-8",
    )

    with pytest.raises(ConfigIoError):
        config_manager.load()


def test_server_settings_from_dict_accepts_port_bounds():
    assert ServerSettings.from_dict({'local_port': 0}).local_port == 0
    assert ServerSettings.from_dict({'local_port': 65535, 'enabled': False}) == \
        ServerSettings(65535, ProxyKind.SOCKS, False)
