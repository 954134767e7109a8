# core/uri_decoder.py
"""
Адаптер внешнего декодера URI.

Приложение само не разбирает vless/vmess/trojan/ss/socks ссылки:
этим занимается внешняя утилита-конвертер, которая печатает JSON в stdout.
"""
import json
import logging
import subprocess
import sys
from typing import Any, Dict, List, Optional

from core.exceptions import UriDecodeError
from core.models import ProxyKind

logger = logging.getLogger(__name__)

NO_WINDOW_FLAG = subprocess.CREATE_NO_WINDOW if sys.platform == 'win32' else 0


class UriDecoder:
    """Интерфейс внешнего декодера"""

    def decode(self, uri: str) -> Dict[str, Any]:
        """Возвращает {protocol, address, port, name} или бросает UriDecodeError"""
        raise NotImplementedError

    def build_config(self, uri: str, local_port: int, proxy_kind: ProxyKind) -> Dict[str, Any]:
        """Возвращает конфиг движка с inbound на local_port"""
        raise NotImplementedError


class CommandUriDecoder(UriDecoder):
    """
    Вызывает внешнюю утилиту:
        <command> metadata <uri>
        <command> config <uri> --socks-port N | --http-port N
    """

    def __init__(self, command: List[str]):
        self.command = list(command)

    def _run(self, args: List[str]) -> Any:
        argv = self.command + args
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                encoding='utf-8',
                creationflags=NO_WINDOW_FLAG,
            )
        except (OSError, ValueError) as e:
            # ValueError: NUL в аргументах или не-UTF-8 вывод утилиты
            raise UriDecodeError(f"Cannot run decoder {self.command[0]!r}: {e}") from e

        if completed.returncode != 0:
            stderr = (completed.stderr or '').strip()
            raise UriDecodeError(f"Decoder exited with code {completed.returncode}: {stderr}")

        try:
            return json.loads(completed.stdout)
        except ValueError as e:
            raise UriDecodeError(f"Decoder returned invalid JSON: {e}") from e

    def decode(self, uri: str) -> Dict[str, Any]:
        metadata = self._run(['metadata', uri])
        if not isinstance(metadata, dict):
            raise UriDecodeError("Decoder metadata must be a JSON object")
        return metadata

    def build_config(self, uri: str, local_port: int, proxy_kind: ProxyKind) -> Dict[str, Any]:
        flag = '--socks-port' if proxy_kind == ProxyKind.SOCKS else '--http-port'
        document = self._run(['config', uri, flag, str(local_port)])
        if not isinstance(document, dict):
            raise UriDecodeError("Decoder config must be a JSON object")
        logger.debug(f"Сгенерирован конфиг для {proxy_kind.value}:{local_port}")
        return document


def parse_metadata(metadata: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Нормализует ответ декодера.

    Returns:
        dict с protocol/address/port/name или None, если обязательных полей нет
    """
    protocol = metadata.get('protocol')
    address = metadata.get('address')
    port = metadata.get('port')

    if not isinstance(protocol, str) or not protocol:
        return None
    if not isinstance(address, str) or not address:
        return None
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port <= 65535:
        return None

    name = metadata.get('name')
    return {
        'protocol': protocol,
        'address': address,
        'port': port,
        'name': name if isinstance(name, str) and name else 'Unnamed',
    }
