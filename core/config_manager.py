import json
import sys
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
import os

from core.exceptions import ConfigIoError
from core.models import ServerSettings

logger = logging.getLogger(__name__)


def get_app_data_dir():
    """Возвращает путь для хранения данных приложения"""
    if getattr(sys, 'frozen', False):
        if os.name == 'nt':  # Windows
            appdata_dir = Path(os.getenv('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
            app_data_dir = appdata_dir / 'XrayTray'
        else:  # Linux/Mac
            app_data_dir = Path.home() / '.config' / 'xray-tray'
    else:
        # Dev режим
        app_data_dir = Path(__file__).parent.parent / 'app_data'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else self._get_config_path()
        self.config = self._get_default_config()

    def _get_config_path(self) -> Path:
        """Возвращает путь к файлу конфигурации"""
        return get_app_data_dir() / 'config.json'

    def _get_default_config(self) -> dict:
        """Возвращает конфигурацию по умолчанию"""
        return {
            'subscription_url': '',
            'engine_binary_path': '',
            'server_settings': {},
            'autostart': False,
            'decoder_command': ['v2parser'],
        }

    def load(self) -> Dict[str, Any]:
        """
        Загружает конфигурацию из файла.

        Отсутствующий файл даёт конфигурацию по умолчанию, а битый файл
        приводит к ConfigIoError: вызывающий сам решает, откатываться ли
        к значениям по умолчанию.
        """
        default_config = self._get_default_config()

        if not self.config_path.exists():
            logger.info(f"Конфиг не найден, используются значения по умолчанию: {self.config_path}")
            self.config = default_config
            return self.config

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"❌ Ошибка загрузки конфига: {e}")
            raise ConfigIoError(f"Failed to read config {self.config_path}: {e}") from e

        if not isinstance(loaded_config, dict):
            raise ConfigIoError(f"Config root must be an object: {self.config_path}")

        self.config = self._deep_merge(default_config, loaded_config)
        # Проверяем настройки серверов сразу, чтобы ошибка всплыла при загрузке
        self.server_settings()
        return self.config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Рекурсивное объединение словарей"""
        result = base.copy()

        for key, value in update.items():
            if (key in result and
                    isinstance(result[key], dict) and
                    isinstance(value, dict)):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save(self):
        """Сохраняет конфигурацию в файл"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError) as e:
            logger.error(f"❌ Ошибка сохранения конфига: {e}")
            raise ConfigIoError(f"Failed to write config {self.config_path}: {e}") from e
        logger.info("Конфигурация сохранена")

    def get(self, key: str, default: Any = None) -> Any:
        """Получает значение по ключу (dot notation)"""
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = False):
        """Устанавливает значение по ключу (dot notation)"""
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref or not isinstance(config_ref[k], dict):
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value

        if save:
            self.save()

    @property
    def subscription_url(self) -> str:
        return (self.get('subscription_url') or '').strip()

    @property
    def engine_binary_path(self) -> str:
        return (self.get('engine_binary_path') or '').strip()

    @property
    def autostart(self) -> bool:
        return bool(self.get('autostart', False))

    @property
    def decoder_command(self) -> List[str]:
        command = self.get('decoder_command') or ['v2parser']
        if isinstance(command, str):
            return [command]
        return [str(part) for part in command]

    def server_settings(self) -> Dict[str, ServerSettings]:
        """Возвращает сохранённые настройки серверов по ключу"""
        raw = self.get('server_settings', {}) or {}
        if not isinstance(raw, dict):
            raise ConfigIoError("'server_settings' must be an object")

        try:
            return {key: ServerSettings.from_dict(value) for key, value in raw.items()}
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigIoError(f"Invalid server settings: {e}") from e

    def set_server_settings(self, settings: Dict[str, ServerSettings]):
        self.set('server_settings', {key: value.to_dict() for key, value in settings.items()})

