# core/models.py
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

# Порт 0 означает "ещё не назначен"
UNASSIGNED_PORT = 0


class ProxyKind(str, Enum):
    SOCKS = "SOCKS"
    HTTP = "HTTP"

    @classmethod
    def parse(cls, value) -> "ProxyKind":
        """Неизвестные значения трактуются как SOCKS"""
        if isinstance(value, ProxyKind):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.SOCKS


def make_server_key(protocol: str, address: str, port: int) -> str:
    """Стабильный идентификатор сервера: protocol://address:port"""
    return f"{protocol}://{address}:{port}"


@dataclass
class ServerSettings:
    """Пользовательские настройки сервера, сохраняемые в конфиге"""
    local_port: int
    proxy_kind: ProxyKind = ProxyKind.SOCKS
    enabled: bool = True

    def to_dict(self) -> dict:
        return {
            'local_port': self.local_port,
            'proxy_type': self.proxy_kind.value,
            'enabled': self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ServerSettings":
        """Raises ValueError, если значения не соответствуют схеме конфига"""
        local_port = data['local_port']
        if isinstance(local_port, bool) or not isinstance(local_port, int) or not 0 <= local_port <= 65535:
            raise ValueError(f"local_port must be an integer in 0..65535, got {local_port!r}")

        enabled = data.get('enabled', True)
        if not isinstance(enabled, bool):
            raise ValueError(f"enabled must be a boolean, got {enabled!r}")

        return cls(
            local_port=local_port,
            proxy_kind=ProxyKind.parse(data.get('proxy_type', 'SOCKS')),
            enabled=enabled,
        )


@dataclass
class Server:
    protocol: str
    address: str
    port: int
    name: str = "Unnamed"
    enabled: bool = False
    local_port: int = UNASSIGNED_PORT
    proxy_kind: ProxyKind = ProxyKind.SOCKS

    @property
    def key(self) -> str:
        return make_server_key(self.protocol, self.address, self.port)

    def copy(self) -> "Server":
        return replace(self)

    def settings(self) -> ServerSettings:
        return ServerSettings(self.local_port, self.proxy_kind, self.enabled)


@dataclass
class SubscriptionEntry:
    """Сервер вместе с исходной строкой URI из подписки"""
    server: Server
    uri: str


@dataclass
class FetchResult:
    entries: List[SubscriptionEntry] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)  # (строка, причина)
    error: Optional[str] = None

    @property
    def servers(self) -> List[Server]:
        return [entry.server for entry in self.entries]

    def uris(self) -> Dict[str, str]:
        return {entry.server.key: entry.uri for entry in self.entries}


class CycleState(str, Enum):
    UNCONFIGURED = "unconfigured"
    COMPLETED = "completed"


@dataclass
class ReconcileReport:
    state: CycleState
    started: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    skipped_lines: int = 0
    fetch_error: Optional[str] = None
    config_error: Optional[str] = None
