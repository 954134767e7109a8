# ui/settings_window.py

from PySide6.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QPushButton, QLabel, QLineEdit,
    QGroupBox, QFormLayout, QMessageBox, QCheckBox, QTableWidget,
    QHeaderView, QSpinBox, QComboBox, QFileDialog
)
from PySide6.QtCore import Qt, Signal
import logging

from core.exceptions import ConfigIoError
from core.models import ProxyKind

logger = logging.getLogger(__name__)

# Колонки таблицы серверов
COL_ENABLED, COL_NAME, COL_KEY, COL_PORT, COL_KIND = range(5)


class SettingsWindow(QWidget):
    """Окно настроек: подписка, путь к движку, автозапуск и список серверов"""

    servers_refreshed = Signal()

    def __init__(self, controller):
        super().__init__()
        self.controller = controller
        self.servers_refreshed.connect(self._populate_servers)
        self.controller.add_refresh_listener(lambda report: self.servers_refreshed.emit())
        self._init_ui()
        self._load_values()

    def _init_ui(self):
        """Инициализация UI"""
        self.setWindowTitle("Xray Tray - Настройки")
        self.setMinimumSize(720, 480)
        try:
            from ui.icons import get_icon_manager
            self.setWindowIcon(get_icon_manager().get_icon("tray_active.png"))
        except Exception as e:
            logger.warning(f"Не удалось загрузить иконку окна: {e}")

        layout = QVBoxLayout()

        # ========== СЕКЦИЯ 1: Подписка и движок ==========
        config_group = QGroupBox("Конфигурация")
        config_layout = QFormLayout()

        url_row = QHBoxLayout()
        self.url_input = QLineEdit()
        self.url_input.setPlaceholderText("https://example.com/subscription")
        self.update_btn = QPushButton("Обновить")
        self.update_btn.clicked.connect(self.on_update_subscription)
        url_row.addWidget(self.url_input)
        url_row.addWidget(self.update_btn)
        config_layout.addRow("URL подписки:", url_row)

        engine_row = QHBoxLayout()
        self.engine_input = QLineEdit()
        self.engine_input.setPlaceholderText("Путь к xray")
        browse_btn = QPushButton("Обзор...")
        browse_btn.clicked.connect(self.on_browse_engine)
        engine_row.addWidget(self.engine_input)
        engine_row.addWidget(browse_btn)
        config_layout.addRow("Движок:", engine_row)

        self.autostart_checkbox = QCheckBox("Запускать вместе с системой")
        config_layout.addRow("", self.autostart_checkbox)

        config_group.setLayout(config_layout)
        layout.addWidget(config_group)

        # ========== СЕКЦИЯ 2: Серверы ==========
        servers_group = QGroupBox("Серверы")
        servers_layout = QVBoxLayout()

        self.servers_table = QTableWidget(0, 5)
        self.servers_table.setHorizontalHeaderLabels(["", "Имя", "Сервер", "Локальный порт", "Тип"])
        header = self.servers_table.horizontalHeader()
        header.setSectionResizeMode(COL_NAME, QHeaderView.Stretch)
        header.setSectionResizeMode(COL_KEY, QHeaderView.Stretch)
        self.servers_table.verticalHeader().setVisible(False)
        servers_layout.addWidget(self.servers_table)

        self.summary_label = QLabel("")
        servers_layout.addWidget(self.summary_label)

        servers_group.setLayout(servers_layout)
        layout.addWidget(servers_group)

        # ========== СЕКЦИЯ 3: Кнопки ==========
        controls_layout = QHBoxLayout()
        controls_layout.addStretch()

        self.save_btn = QPushButton("Сохранить")
        self.save_btn.setMinimumHeight(32)
        self.save_btn.clicked.connect(self.on_save)
        controls_layout.addWidget(self.save_btn)

        cancel_btn = QPushButton("Отмена")
        cancel_btn.setMinimumHeight(32)
        cancel_btn.clicked.connect(self.close)
        controls_layout.addWidget(cancel_btn)

        layout.addLayout(controls_layout)
        self.setLayout(layout)

    def _load_values(self):
        """Заполняет поля из текущего конфига"""
        config = self.controller.config_manager
        self.url_input.setText(config.subscription_url)
        self.engine_input.setText(config.engine_binary_path)
        self.autostart_checkbox.setChecked(config.autostart)
        self._populate_servers()

    def _populate_servers(self):
        """Перестраивает таблицу из снимка реестра"""
        servers = self.controller.snapshot()
        running = set(self.controller.running_keys())

        self.servers_table.setRowCount(len(servers))
        for row, server in enumerate(servers):
            key = server.key

            enabled = QCheckBox()
            enabled.setChecked(server.enabled)
            enabled.toggled.connect(lambda checked, k=key: self._edit(k, enabled=checked))
            self.servers_table.setCellWidget(row, COL_ENABLED, enabled)

            name = QLabel(f"{'● ' if key in running else ''}{server.name}")
            self.servers_table.setCellWidget(row, COL_NAME, name)

            key_label = QLabel(key)
            key_label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
            self.servers_table.setCellWidget(row, COL_KEY, key_label)

            port = QSpinBox()
            port.setRange(1, 65535)
            port.setValue(server.local_port)
            port.valueChanged.connect(lambda value, k=key: self._edit(k, local_port=value))
            self.servers_table.setCellWidget(row, COL_PORT, port)

            kind = QComboBox()
            kind.addItems([ProxyKind.SOCKS.value, ProxyKind.HTTP.value])
            kind.setCurrentText(server.proxy_kind.value)
            kind.currentTextChanged.connect(lambda text, k=key: self._edit(k, proxy_kind=ProxyKind(text)))
            self.servers_table.setCellWidget(row, COL_KIND, kind)

        self.summary_label.setText(f"Серверов: {len(servers)}, запущено: {len(running)}")

    def _edit(self, key, **changes):
        """Правка сервера до сохранения"""
        try:
            self.controller.edit_server(key, **changes)
        except ValueError as e:
            logger.warning(f"⚠️ Некорректное значение для {key}: {e}")

    def on_update_subscription(self):
        """Загружает подписку в фоне, таблица обновится по сигналу"""
        url = self.url_input.text().strip()
        if not url:
            QMessageBox.warning(self, "Ошибка", "Введите URL подписки.")
            self.url_input.setFocus()
            return

        logger.info(f"Обновление подписки: {url}")
        self.controller.preview_subscription(url)

    def on_browse_engine(self):
        path, _ = QFileDialog.getOpenFileName(
            self,
            "Выберите исполняемый файл движка",
            self.engine_input.text(),
            "Executable Files (*.exe);;All Files (*)"
        )
        if path:
            self.engine_input.setText(path)

    def on_save(self):
        """Сохраняет конфиг и перезапускает туннели"""
        try:
            report = self.controller.save_and_reconcile(
                self.url_input.text(),
                self.engine_input.text(),
                self.autostart_checkbox.isChecked(),
            )
        except ConfigIoError as e:
            QMessageBox.critical(self, "Ошибка", f"Не удалось сохранить конфигурацию:\n{e}")
            return

        if report.failures:
            details = "\n".join(f"• {key}: {message}" for key, message in report.failures.items())
            QMessageBox.warning(self, "Запуск серверов", f"Часть серверов не запущена:\n\n{details}")

        self.close()
