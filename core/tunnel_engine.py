# core/tunnel_engine.py
import hashlib
import json
import logging
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

from core.config_manager import get_app_data_dir
from utils.process_manager import terminate_process_tree

logger = logging.getLogger(__name__)

NO_WINDOW_FLAG = subprocess.CREATE_NO_WINDOW if sys.platform == 'win32' else 0

# Время, за которое движок должен не упасть после запуска
STARTUP_GRACE_SECONDS = 0.5


class EngineError(Exception):
    """Ошибка запуска или остановки движка"""
    pass


@dataclass
class EngineHandle:
    process: subprocess.Popen
    config_path: Path
    log_path: Path

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_alive(self) -> bool:
        return self.process.poll() is None


class TunnelEngine:
    """Запускает и останавливает процессы xray-совместимого движка"""

    def __init__(self, work_dir: Optional[Path] = None, grace_seconds: float = STARTUP_GRACE_SECONDS):
        self.work_dir = Path(work_dir) if work_dir else get_app_data_dir() / 'engine'
        self.grace_seconds = grace_seconds

    def _file_stem(self, config_document: Dict[str, Any]) -> str:
        payload = json.dumps(config_document, sort_keys=True).encode('utf-8')
        return hashlib.sha256(payload).hexdigest()[:16]

    def spawn(self, config_document: Dict[str, Any], binary_path: str) -> EngineHandle:
        """
        Пишет конфиг в файл и запускает `<binary> run -c <file>`.

        Raises:
            EngineError: бинарник не найден, процесс не стартовал или сразу завершился
        """
        binary = Path(binary_path)
        if not binary.is_file():
            raise EngineError(f"Engine binary not found: {binary_path}")

        self.work_dir.mkdir(parents=True, exist_ok=True)
        stem = self._file_stem(config_document)
        config_path = self.work_dir / f"{stem}.json"
        log_path = self.work_dir / f"{stem}.log"

        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                json.dump(config_document, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError) as e:
            raise EngineError(f"Cannot write engine config: {e}") from e

        try:
            with open(log_path, 'wb') as log_file:
                process = subprocess.Popen(
                    [str(binary), "run", "-c", str(config_path)],
                    stdout=subprocess.DEVNULL,
                    stderr=log_file,
                    cwd=str(binary.parent),
                    creationflags=NO_WINDOW_FLAG,
                )
        except OSError as e:
            config_path.unlink(missing_ok=True)
            raise EngineError(f"Cannot start engine: {e}") from e

        handle = EngineHandle(process=process, config_path=config_path, log_path=log_path)

        # Даем время на запуск
        time.sleep(self.grace_seconds)
        if not handle.is_alive():
            config_path.unlink(missing_ok=True)
            raise EngineError(
                f"Engine exited with code {process.returncode}: {self._tail_log(log_path)}"
            )

        logger.info(f"🚀 Движок запущен, PID: {handle.pid}")
        return handle

    def terminate(self, handle: EngineHandle):
        """Останавливает процесс движка и удаляет его конфиг"""
        try:
            if handle.is_alive() and not terminate_process_tree(handle.pid):
                raise EngineError(f"Engine PID {handle.pid} did not exit")
        except psutil.AccessDenied as e:
            raise EngineError(f"Access denied terminating PID {handle.pid}") from e
        finally:
            handle.config_path.unlink(missing_ok=True)

        # Забираем код возврата, чтобы не оставлять зомби
        try:
            handle.process.wait(timeout=1)
        except subprocess.TimeoutExpired:
            pass

    def _tail_log(self, log_path: Path, limit: int = 500) -> str:
        try:
            return log_path.read_text(encoding='utf-8', errors='ignore')[-limit:].strip()
        except OSError:
            return ''
