# core/registry.py
import logging
import threading
from typing import Dict, List, Optional

from core.exceptions import PortAllocationError
from core.models import ProxyKind, Server, ServerSettings, UNASSIGNED_PORT

logger = logging.getLogger(__name__)

FIRST_LOCAL_PORT = 1080
MAX_PORT = 65535


def assign_local_ports(servers: List[Server], saved_settings: Dict[str, ServerSettings]) -> List[Server]:
    """
    Применяет сохранённые настройки и назначает локальные порты новым серверам.

    Первый проход переносит порт, тип прокси и флаг enabled из сохранённых
    настроек как есть, без исправления коллизий между ними. Второй проход
    выдаёт серверам с портом 0 наименьший свободный порт начиная с 1080.
    Порядок обхода совпадает с порядком входного списка.

    Список изменяется на месте и возвращается для удобства.
    """
    used_ports = set()

    for server in servers:
        settings = saved_settings.get(server.key)
        if settings is not None:
            server.local_port = settings.local_port
            server.proxy_kind = settings.proxy_kind
            server.enabled = settings.enabled
            used_ports.add(settings.local_port)

    next_port = FIRST_LOCAL_PORT
    for server in servers:
        if server.local_port != UNASSIGNED_PORT:
            continue

        while next_port in used_ports:
            next_port += 1
        if next_port > MAX_PORT:
            raise PortAllocationError(f"No free local port left for {server.key}")

        server.local_port = next_port
        used_ports.add(next_port)
        next_port += 1

    return servers


class ServerRegistry:
    """
    Текущий снимок списка серверов.

    Снимок заменяется целиком при каждой загрузке подписки.
    Все методы потокобезопасны.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._servers: List[Server] = []

    def publish(self, servers: List[Server]):
        with self._lock:
            self._servers = [server.copy() for server in servers]
        logger.debug(f"Реестр обновлён: {len(servers)} серверов")

    def snapshot(self) -> List[Server]:
        with self._lock:
            return [server.copy() for server in self._servers]

    def get(self, key: str) -> Optional[Server]:
        with self._lock:
            for server in self._servers:
                if server.key == key:
                    return server.copy()
        return None

    def update_server(self, key: str, enabled: Optional[bool] = None,
                      local_port: Optional[int] = None,
                      proxy_kind: Optional[ProxyKind] = None) -> bool:
        """Правка сервера из окна настроек (до сохранения)"""
        if local_port is not None and not 0 < local_port <= MAX_PORT:
            raise ValueError(f"Invalid local port: {local_port}")

        with self._lock:
            for server in self._servers:
                if server.key != key:
                    continue
                if enabled is not None:
                    server.enabled = enabled
                if local_port is not None:
                    server.local_port = local_port
                if proxy_kind is not None:
                    server.proxy_kind = ProxyKind.parse(proxy_kind)
                return True

        logger.warning(f"⚠️ Сервер {key} отсутствует в реестре")
        return False

    def to_settings(self) -> Dict[str, ServerSettings]:
        """Настройки всех серверов снимка для сохранения в конфиг"""
        with self._lock:
            return {server.key: server.settings() for server in self._servers}
