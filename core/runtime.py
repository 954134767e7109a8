# core/runtime.py
import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


class BackgroundRuntime:
    """Отдельный поток с собственным asyncio event loop"""

    def __init__(self, name: str = "xray-tray-runtime"):
        self.name = name
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    @property
    def is_running(self) -> bool:
        return self.loop is not None and self.loop.is_running()

    def start(self):
        if self.thread and self.thread.is_alive():
            return

        self._ready.clear()
        self.thread = threading.Thread(target=self._run_loop, name=self.name, daemon=True)
        self.thread.start()
        self._ready.wait()
        logger.debug("Фоновый event loop запущен")

    def _run_loop(self):
        """Запускает event loop в отдельном потоке"""
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(self._ready.set)
        try:
            self.loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self.loop)
            for task in pending:
                task.cancel()
            if pending:
                self.loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self.loop.close()
            self.loop = None

    def submit(self, coro: Coroutine) -> concurrent.futures.Future:
        """Планирует корутину в фоновом loop'е из любого потока"""
        if not self.is_running:
            coro.close()
            raise RuntimeError("Background runtime is not running")
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def run(self, coro: Coroutine) -> Any:
        """Выполняет корутину и блокирует вызывающий поток до результата"""
        return self.submit(coro).result()

    def stop(self, timeout: float = 5):
        if self.loop and self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)
        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=timeout)
        self.thread = None
        logger.debug("Фоновый event loop остановлен")
