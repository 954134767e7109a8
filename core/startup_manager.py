# core/startup_manager.py
import logging
from PySide6.QtCore import QThread, Signal

logger = logging.getLogger(__name__)


class StartupThread(QThread):
    """Поток для первого цикла согласования при запуске"""
    finished_signal = Signal(object)  # ReconcileReport или None

    def __init__(self, controller):
        super().__init__()
        self.controller = controller
        self.report = None

    def run(self):
        """Выполняет согласование в фоновом потоке, не блокируя GUI"""
        try:
            logger.info("📋 Первый цикл согласования")
            self.report = self.controller.reconcile()
        except Exception as e:
            logger.error(f"Ошибка стартового согласования: {e}", exc_info=True)
            self.report = None
        self.finished_signal.emit(self.report)
