# main.py
import sys
import logging
from PySide6.QtWidgets import QApplication, QMessageBox


def setup_logging():
    """Настраивает логирование ДО всех операций с ротацией"""
    from core.config_manager import get_app_data_dir
    from logging.handlers import RotatingFileHandler

    logs_dir = get_app_data_dir() / "logs"
    logs_dir.mkdir(exist_ok=True)

    # Ротирующий обработчик: макс 5MB, 5 резервных копий
    file_handler = RotatingFileHandler(
        logs_dir / "xray_tray.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=logging.INFO,
        handlers=[console_handler, file_handler]
    )


# НАСТРАИВАЕМ ЛОГИРОВАНИЕ САМЫМ ПЕРВЫМ ДЕЛОМ
setup_logging()
logger = logging.getLogger(__name__)


def setup_exception_handler():
    """Настраивает глобальный обработчик исключений"""

    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Необработанное исключение:",
                        exc_info=(exc_type, exc_value, exc_traceback))

        if QApplication.instance():
            QMessageBox.critical(
                None,
                "Критическая ошибка",
                f"Произошла критическая ошибка:\n{exc_value}\n\n"
                "Подробности в лог-файле."
            )

    sys.excepthook = exception_handler


def main():
    """Основная функция приложения"""
    app = QApplication(sys.argv)
    app.setApplicationName("Xray Tray")
    app.setApplicationVersion("1.0.0")
    app.setQuitOnLastWindowClosed(False)

    setup_exception_handler()

    logger.info("🚀 Запуск Xray Tray")

    from core.app_controller import AppController
    controller = AppController()

    try:
        controller.start()
    except Exception as e:
        logger.critical(f"Критическая ошибка при запуске: {e}")
        QMessageBox.critical(None, "Ошибка запуска", f"Не удалось запустить приложение:\n{e}")
        return 1

    from ui.tray_icon import TrayIcon
    tray_icon = TrayIcon(app, controller)
    tray_icon.show()

    # Первый цикл согласования в фоне, меню обновится по сигналу
    from core.startup_manager import StartupThread
    from core.models import CycleState
    startup_thread = StartupThread(controller)

    def on_startup_finished(report):
        if report is not None and report.state is CycleState.UNCONFIGURED:
            logger.info("⚙️ Приложение не настроено, открываем окно настроек")
            tray_icon.show_settings_window()

    startup_thread.finished_signal.connect(on_startup_finished)
    startup_thread.start()

    def cleanup():
        logger.info("🛑 Завершение работы приложения")
        startup_thread.wait()
        controller.shutdown()

    app.aboutToQuit.connect(cleanup)

    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
