# core/tunnel_manager.py
import logging
import threading
from typing import Dict, List

from core.exceptions import ProcessStartError, ProcessStopError, UriDecodeError
from core.models import ProxyKind
from core.tunnel_engine import EngineError, TunnelEngine
from core.uri_decoder import UriDecoder
from utils.port_utils import check_port_availability

logger = logging.getLogger(__name__)


class TunnelManager:
    """
    Таблица запущенных процессов движка по ключу сервера.

    Lock держится только на вставке/удалении записи: запуск процесса
    выполняется вне критической секции. stop_all останавливает процессы
    под локом, это редкая операция (цикл согласования и выход).
    """

    def __init__(self, decoder: UriDecoder, engine: TunnelEngine):
        self.decoder = decoder
        self.engine = engine
        self._lock = threading.Lock()
        self._processes: Dict[str, object] = {}

    def start(self, key: str, uri: str, local_port: int, proxy_kind: ProxyKind, binary_path: str):
        """
        Запускает движок для сервера.

        Raises:
            ProcessStartError: не удалось сгенерировать конфиг или запустить процесс.
                Запись в таблицу в этом случае не добавляется.
        """
        proxy_kind = ProxyKind.parse(proxy_kind)

        with self._lock:
            previous = self._processes.pop(key, None)
        if previous is not None:
            logger.info(f"🔄 Перезапуск {key}")
            self._terminate_quietly(key, previous)

        port_available, port_message = check_port_availability(local_port)
        if not port_available:
            logger.warning(f"⚠️ {port_message}")

        try:
            config_document = self.decoder.build_config(uri, local_port, proxy_kind)
        except UriDecodeError as e:
            logger.error(f"❌ Не удалось сгенерировать конфиг для {key}: {e}")
            raise ProcessStartError(key, f"config generation failed: {e}") from e

        try:
            handle = self.engine.spawn(config_document, binary_path)
        except EngineError as e:
            logger.error(f"❌ Не удалось запустить движок для {key}: {e}")
            raise ProcessStartError(key, f"spawn failed: {e}") from e

        with self._lock:
            displaced = self._processes.pop(key, None)
            self._processes[key] = handle
        if displaced is not None and displaced is not handle:
            logger.warning(f"⚠️ {key} запущен параллельно, лишний процесс остановлен")
            self._terminate_quietly(key, displaced)

        logger.info(f"✅ {key} слушает {proxy_kind.value} 127.0.0.1:{local_port}")

    def stop(self, key: str):
        """
        Останавливает процесс сервера. Отсутствующий ключ не ошибка.

        Raises:
            ProcessStopError: процесс не удалось завершить
        """
        with self._lock:
            handle = self._processes.pop(key, None)

        if handle is None:
            return

        try:
            self.engine.terminate(handle)
        except EngineError as e:
            logger.error(f"❌ Ошибка остановки {key}: {e}")
            raise ProcessStopError(key, str(e)) from e

        logger.info(f"🛑 {key} остановлен")

    def stop_all(self):
        """Останавливает все процессы. Ошибки логируются и не пробрасываются."""
        with self._lock:
            count = len(self._processes)
            while self._processes:
                key, handle = self._processes.popitem()
                self._terminate_quietly(key, handle)

        if count:
            logger.info(f"🛑 Остановлено процессов движка: {count}")

    def _terminate_quietly(self, key: str, handle):
        try:
            self.engine.terminate(handle)
        except Exception as e:
            logger.warning(f"⚠️ Ошибка остановки {key} (игнорируется): {e}")

    def list_running(self) -> List[str]:
        with self._lock:
            return list(self._processes.keys())

    def is_running(self, key: str) -> bool:
        with self._lock:
            return key in self._processes
