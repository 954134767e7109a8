import base64
import itertools

import pytest

from core.config_manager import ConfigManager
from core.exceptions import UriDecodeError
from core.models import FetchResult
from core.subscription import decode_subscription_body
from core.tunnel_engine import EngineError
from core.uri_decoder import UriDecoder


def encode_feed(*lines):
    return base64.b64encode("\n".join(lines).encode("utf-8")).decode("ascii")


class FakeDecoder(UriDecoder):
    """
    Разбирает URI вида scheme://address:port#name без внешней утилиты.
    URI с "bad" в адресе не декодируются, с "noconfig" не дают конфиг.
    """

    def __init__(self):
        self.built = []

    def decode(self, uri):
        scheme, rest = uri.split("://", 1)
        rest, _, name = rest.partition("#")
        address, _, port = rest.rpartition(":")
        if "bad" in address or not port.isdigit():
            raise UriDecodeError(f"cannot decode {uri}")
        return {"protocol": scheme, "address": address, "port": int(port), "name": name}

    def build_config(self, uri, local_port, proxy_kind):
        if "noconfig" in uri:
            raise UriDecodeError(f"cannot build config for {uri}")
        self.built.append((uri, local_port, proxy_kind))
        inbound = "socks" if proxy_kind.value == "SOCKS" else "http"
        return {"inbounds": [{"protocol": inbound, "port": local_port}], "uri": uri}


class FakeHandle:
    def __init__(self, pid, document):
        self.pid = pid
        self.document = document
        self.terminated = False


class FakeEngine:
    """Движок без реальных процессов"""

    def __init__(self, fail_spawn_ports=(), fail_terminate=False):
        self.fail_spawn_ports = set(fail_spawn_ports)
        self.fail_terminate = fail_terminate
        self.spawned = []
        self.terminated = []
        self._pids = itertools.count(1000)

    def spawn(self, config_document, binary_path):
        port = config_document["inbounds"][0]["port"]
        if port in self.fail_spawn_ports:
            raise EngineError(f"engine refused port {port}")
        handle = FakeHandle(next(self._pids), config_document)
        self.spawned.append(handle)
        return handle

    def terminate(self, handle):
        self.terminated.append(handle)
        if self.fail_terminate:
            raise EngineError(f"cannot terminate {handle.pid}")
        handle.terminated = True


class StaticFetcher:
    """Подменяет сетевую загрузку готовым телом подписки"""

    def __init__(self, body=""):
        self.body = body
        self.calls = []

    async def __call__(self, url, decoder):
        self.calls.append(url)
        if self.body is None:
            return FetchResult(error="unreachable")
        return decode_subscription_body(self.body, decoder)


@pytest.fixture
def decoder():
    return FakeDecoder()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(config_path=tmp_path / "config.json")


@pytest.fixture
def configured(config_manager):
    """Конфиг с URL подписки и путём к движку"""
    config_manager.set('subscription_url', 'https://feed.example/sub')
    config_manager.set('engine_binary_path', '/opt/xray/xray')
    config_manager.save()
    return config_manager
