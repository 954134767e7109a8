# core/app_controller.py
"""
Состояние приложения и единая точка входа для UI.

Все изменения состояния (согласование, предпросмотр подписки, правки
серверов, сохранение) оформляются как команды и выполняются по очереди
одной задачей в фоновом event loop. Поэтому результат более позднего
запроса никогда не перезаписывается результатом более раннего.
"""
import asyncio
import concurrent.futures
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core import autostart
from core.config_manager import ConfigManager
from core.exceptions import ConfigIoError, PortAllocationError
from core.models import ProxyKind, ReconcileReport, Server
from core.reconciler import Reconciler
from core.registry import ServerRegistry, assign_local_ports
from core.runtime import BackgroundRuntime
from core.subscription import fetch_subscription
from core.tunnel_engine import TunnelEngine
from core.tunnel_manager import TunnelManager
from core.uri_decoder import CommandUriDecoder, UriDecoder

logger = logging.getLogger(__name__)

RefreshListener = Callable[[Optional[ReconcileReport]], None]


class Command(Enum):
    RECONCILE = "reconcile"
    PREVIEW_SUBSCRIPTION = "preview_subscription"
    EDIT_SERVER = "edit_server"
    SAVE_AND_RECONCILE = "save_and_reconcile"
    STOP_SERVER = "stop_server"


@dataclass
class _Message:
    command: Command
    payload: Dict[str, Any] = field(default_factory=dict)
    future: concurrent.futures.Future = field(default_factory=concurrent.futures.Future)


class AppController:
    def __init__(self, config_manager: Optional[ConfigManager] = None,
                 decoder: Optional[UriDecoder] = None,
                 engine: Optional[TunnelEngine] = None,
                 fetcher=None,
                 apply_autostart: Callable[[bool], bool] = autostart.set_autostart):
        self.config_manager = config_manager or ConfigManager()

        if decoder is None:
            try:
                self.config_manager.load()
            except ConfigIoError as e:
                logger.warning(f"⚠️ Конфиг не загружен, используется декодер по умолчанию: {e}")
            decoder = CommandUriDecoder(self.config_manager.decoder_command)

        self.decoder = decoder
        self.fetcher = fetcher or fetch_subscription
        self.apply_autostart = apply_autostart
        self.registry = ServerRegistry()
        self.tunnels = TunnelManager(decoder, engine or TunnelEngine())
        self.reconciler = Reconciler(
            self.config_manager, self.registry, self.tunnels, decoder,
            fetcher=self.fetcher, on_refresh=self._notify,
        )
        self.runtime = BackgroundRuntime()
        self.last_report: Optional[ReconcileReport] = None

        self._listeners: List[RefreshListener] = []
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    # ---------- жизненный цикл ----------

    def start(self):
        """Запускает фоновый loop и задачу-владельца состояния"""
        self.runtime.start()
        self.runtime.run(self._start_worker())
        logger.info("✅ Контроллер запущен")

    async def _start_worker(self):
        self._queue = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(self._serve())

    def shutdown(self):
        """Останавливает все туннели и фоновый loop"""
        logger.info("🛑 Завершение работы контроллера")
        if self.runtime.is_running and self._queue is not None:
            self.runtime.run(self._stop_worker())
        self.tunnels.stop_all()
        self.runtime.stop()

    async def _stop_worker(self):
        await self._queue.put(None)
        await self._worker

    # ---------- подписчики ----------

    def add_refresh_listener(self, listener: RefreshListener):
        self._listeners.append(listener)

    def _notify(self, report: Optional[ReconcileReport] = None):
        if report is not None:
            self.last_report = report
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception as e:
                logger.error(f"Ошибка подписчика обновлений: {e}", exc_info=True)

    # ---------- чтение состояния ----------

    def snapshot(self) -> List[Server]:
        return self.registry.snapshot()

    def running_keys(self) -> List[str]:
        return self.tunnels.list_running()

    def running_servers(self) -> List[Server]:
        """Серверы снимка, для которых сейчас запущен процесс"""
        running = set(self.tunnels.list_running())
        return [server for server in self.registry.snapshot() if server.key in running]

    # ---------- команды ----------

    def dispatch(self, command: Command, **payload) -> concurrent.futures.Future:
        """Ставит команду в очередь задачи-владельца. Потокобезопасно."""
        if self._queue is None or not self.runtime.is_running:
            raise RuntimeError("AppController is not started")

        message = _Message(command=command, payload=payload)
        self.runtime.loop.call_soon_threadsafe(self._queue.put_nowait, message)
        return message.future

    def reconcile(self) -> ReconcileReport:
        """Полный цикл согласования, блокирует до завершения"""
        return self.dispatch(Command.RECONCILE).result()

    def preview_subscription(self, url: str) -> concurrent.futures.Future:
        """Загружает подписку для окна настроек без перезапуска туннелей"""
        return self.dispatch(Command.PREVIEW_SUBSCRIPTION, url=url)

    def edit_server(self, key: str, enabled: Optional[bool] = None,
                    local_port: Optional[int] = None,
                    proxy_kind: Optional[ProxyKind] = None) -> bool:
        return self.dispatch(
            Command.EDIT_SERVER, key=key, enabled=enabled,
            local_port=local_port, proxy_kind=proxy_kind,
        ).result()

    def save_and_reconcile(self, subscription_url: str, engine_binary_path: str,
                           autostart_enabled: bool) -> ReconcileReport:
        """
        Сохраняет конфиг и перезапускает туннели.

        Raises:
            ConfigIoError: конфиг не удалось записать, туннели не трогаются
        """
        return self.dispatch(
            Command.SAVE_AND_RECONCILE,
            subscription_url=subscription_url,
            engine_binary_path=engine_binary_path,
            autostart_enabled=autostart_enabled,
        ).result()

    def stop_server(self, key: str):
        """Raises: ProcessStopError"""
        return self.dispatch(Command.STOP_SERVER, key=key).result()

    # ---------- задача-владелец ----------

    async def _serve(self):
        while True:
            message = await self._queue.get()
            if message is None:
                break

            try:
                result = await self._handle(message.command, message.payload)
            except Exception as e:
                if not isinstance(e, ConfigIoError):
                    logger.error(f"❌ Ошибка команды {message.command.value}: {e}", exc_info=True)
                message.future.set_exception(e)
            else:
                message.future.set_result(result)

    async def _handle(self, command: Command, payload: Dict[str, Any]):
        if command is Command.RECONCILE:
            return await self.reconciler.run_cycle()
        if command is Command.PREVIEW_SUBSCRIPTION:
            return await self._preview(payload['url'])
        if command is Command.EDIT_SERVER:
            return self.registry.update_server(**payload)
        if command is Command.SAVE_AND_RECONCILE:
            return await self._save_and_reconcile(**payload)
        if command is Command.STOP_SERVER:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self.tunnels.stop, payload['key'])
        raise ValueError(f"Unknown command: {command}")

    async def _preview(self, url: str) -> List[Server]:
        result = await self.fetcher(url.strip(), self.decoder)
        servers = result.servers

        try:
            self.config_manager.load()
            saved_settings = self.config_manager.server_settings()
        except ConfigIoError as e:
            logger.warning(f"⚠️ Сохранённые настройки недоступны: {e}")
            saved_settings = {}

        try:
            assign_local_ports(servers, saved_settings)
        except PortAllocationError as e:
            logger.error(f"❌ {e}")
            return self.registry.snapshot()

        self.registry.publish(servers)
        self._notify(None)
        return servers

    async def _save_and_reconcile(self, subscription_url: str, engine_binary_path: str,
                                  autostart_enabled: bool) -> ReconcileReport:
        config = self.config_manager
        config.set('subscription_url', subscription_url.strip())
        config.set('engine_binary_path', engine_binary_path.strip())
        config.set('autostart', bool(autostart_enabled))
        config.set_server_settings(self.registry.to_settings())
        config.save()

        if self.apply_autostart is not None:
            self.apply_autostart(bool(autostart_enabled))

        return await self.reconciler.run_cycle()
