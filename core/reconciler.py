# core/reconciler.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core.config_manager import ConfigManager
from core.exceptions import ConfigIoError, PortAllocationError, ProcessStartError
from core.models import CycleState, FetchResult, ReconcileReport
from core.registry import ServerRegistry, assign_local_ports
from core.subscription import fetch_subscription
from core.tunnel_manager import TunnelManager
from core.uri_decoder import UriDecoder

logger = logging.getLogger(__name__)

Fetcher = Callable[[str, UriDecoder], Awaitable[FetchResult]]


class Reconciler:
    """
    Цикл согласования: остановить всё, загрузить подписку, применить
    сохранённые настройки, запустить включённые серверы.

    Цикл никогда не бросает исключений: любые ошибки сводятся
    к меньшему числу запущенных серверов.
    """

    def __init__(self, config_manager: ConfigManager, registry: ServerRegistry,
                 tunnels: TunnelManager, decoder: UriDecoder,
                 fetcher: Optional[Fetcher] = None,
                 on_refresh: Optional[Callable[[ReconcileReport], None]] = None):
        self.config_manager = config_manager
        self.registry = registry
        self.tunnels = tunnels
        self.decoder = decoder
        self.fetcher = fetcher or fetch_subscription
        self.on_refresh = on_refresh

    async def _blocking(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def run_cycle(self) -> ReconcileReport:
        logger.info("🔁 Начало цикла согласования")

        # 1. Всегда останавливаем все процессы
        await self._blocking(self.tunnels.stop_all)

        report = await self._reconcile()

        logger.info(
            f"🏁 Цикл завершен: состояние={report.state.value}, "
            f"запущено={len(report.started)}, ошибок={len(report.failures)}"
        )

        if self.on_refresh:
            try:
                self.on_refresh(report)
            except Exception as e:
                logger.error(f"Ошибка обработчика обновления: {e}", exc_info=True)

        return report

    async def _reconcile(self) -> ReconcileReport:
        # 2. Конфигурация
        try:
            self.config_manager.load()
        except ConfigIoError as e:
            logger.error(f"❌ Конфиг не загружен, сервера не запускаются: {e}")
            return ReconcileReport(state=CycleState.UNCONFIGURED, config_error=str(e))

        url = self.config_manager.subscription_url
        binary_path = self.config_manager.engine_binary_path
        if not url or not binary_path:
            logger.info("⚠️ Не указан URL подписки или путь к движку, запуск пропущен")
            return ReconcileReport(state=CycleState.UNCONFIGURED)

        saved_settings = self.config_manager.server_settings()

        # 3. Одна загрузка даёт и метаданные, и исходные URI
        try:
            fetch_result = await self.fetcher(url, self.decoder)
        except Exception as e:
            logger.error(f"❌ Ошибка загрузки подписки: {e}", exc_info=True)
            fetch_result = FetchResult(error=str(e))
        uris = fetch_result.uris()
        servers = fetch_result.servers

        report = ReconcileReport(
            state=CycleState.COMPLETED,
            skipped_lines=len(fetch_result.skipped),
            fetch_error=fetch_result.error,
        )

        # 4. Слияние с сохранёнными настройками
        try:
            assign_local_ports(servers, saved_settings)
        except PortAllocationError as e:
            logger.error(f"❌ {e}")
            report.fetch_error = str(e)
            return report

        self.registry.publish(servers)

        # 5. Запуск включённых серверов
        for server in servers:
            if not server.enabled:
                continue

            key = server.key
            settings = saved_settings.get(key)
            uri = uris.get(key)
            if settings is None or uri is None:
                logger.debug(f"Нет сохранённых настроек или URI для {key}, пропуск")
                continue

            try:
                await self._blocking(
                    self.tunnels.start, key, uri, settings.local_port,
                    settings.proxy_kind, binary_path,
                )
            except ProcessStartError as e:
                logger.error(f"❌ Не удалось запустить {server.name}: {e.message}")
                report.failures[key] = e.message
                continue
            except Exception as e:
                logger.error(f"❌ Непредвиденная ошибка запуска {server.name}: {e}", exc_info=True)
                report.failures[key] = str(e)
                continue

            logger.info(f"✅ Запущен сервер: {server.name}")
            report.started.append(key)

        return report
