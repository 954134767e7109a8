# ui/tray_icon.py
import logging
from PySide6.QtWidgets import QSystemTrayIcon, QMenu, QMessageBox
from PySide6.QtGui import QAction
from PySide6.QtCore import Signal
from ui.icons import get_icon_manager

logger = logging.getLogger(__name__)


class TrayIcon(QSystemTrayIcon):
    # Сигнал для обновления меню из фонового потока
    refresh_requested = Signal(object)

    def __init__(self, app, controller):
        super().__init__()
        self.app = app
        self.controller = controller
        self.settings_window = None

        self.refresh_requested.connect(self.rebuild_menu)
        self.controller.add_refresh_listener(lambda report: self.refresh_requested.emit(report))

        self.setToolTip("Xray Tray")
        self.rebuild_menu()
        self.activated.connect(self.on_tray_activated)

    def rebuild_menu(self, report=None):
        """Пересобирает меню со списком запущенных серверов"""
        icon_manager = get_icon_manager()
        running = self.controller.running_servers()

        menu = QMenu()

        for server in running:
            item = QAction(f"✓ {server.name} ({server.proxy_kind.value}:{server.local_port})", menu)
            item.setEnabled(False)
            menu.addAction(item)
        if running:
            menu.addSeparator()

        settings_action = QAction("Настройки", menu)
        settings_action.triggered.connect(self.show_settings_window)
        menu.addAction(settings_action)
        menu.addSeparator()

        exit_action = QAction("Выход", menu)
        exit_action.triggered.connect(self.exit_app)
        menu.addAction(exit_action)

        # Старое меню удаляется вместе со ссылкой
        self._menu = menu
        self.setContextMenu(menu)

        if running:
            self.setIcon(icon_manager.get_icon("tray_active.png"))
            self.setToolTip(f"Xray Tray - запущено серверов: {len(running)}")
        else:
            self.setIcon(icon_manager.get_icon("tray_idle.png"))
            self.setToolTip("Xray Tray - нет запущенных серверов")

        if report is not None and report.failures:
            self.showMessage(
                "Xray Tray",
                f"Не удалось запустить серверов: {len(report.failures)}",
                QSystemTrayIcon.Warning,
                3000
            )

    def show_settings_window(self):
        """Показывает окно настроек"""
        if not self.settings_window:
            from ui.settings_window import SettingsWindow
            self.settings_window = SettingsWindow(self.controller)
        self.settings_window.show()
        self.settings_window.raise_()
        self.settings_window.activateWindow()

    def on_tray_activated(self, reason):
        """Обрабатывает активацию иконки в трее"""
        if reason == QSystemTrayIcon.DoubleClick:
            self.show_settings_window()

    def exit_app(self):
        """Выход из приложения"""
        reply = QMessageBox.question(
            None,
            'Подтверждение выхода',
            'Вы уверены, что хотите выйти? Все туннели будут остановлены.',
            QMessageBox.Yes | QMessageBox.No,
            QMessageBox.No
        )

        if reply == QMessageBox.Yes:
            self.app.quit()
