# core/autostart.py
import logging
import os
import sys

logger = logging.getLogger(__name__)

RUN_KEY = r"Software\Microsoft\Windows\CurrentVersion\Run"
VALUE_NAME = "XrayTray"


def get_launch_command() -> str:
    """Команда запуска текущего приложения"""
    if getattr(sys, 'frozen', False):
        return f'"{sys.executable}"'
    main_script = os.path.abspath(sys.argv[0])
    return f'"{sys.executable}" "{main_script}"'


def is_supported() -> bool:
    return os.name == 'nt'


def set_autostart(enabled: bool) -> bool:
    """
    Добавляет или удаляет приложение из автозагрузки Windows (HKCU\\...\\Run).

    Returns:
        bool: True если изменение применено
    """
    if not is_supported():
        logger.warning("⚠️ Автозапуск поддерживается только в Windows")
        return False

    import winreg

    try:
        with winreg.OpenKey(winreg.HKEY_CURRENT_USER, RUN_KEY, 0, winreg.KEY_SET_VALUE) as key:
            if enabled:
                winreg.SetValueEx(key, VALUE_NAME, 0, winreg.REG_SZ, get_launch_command())
                logger.info("✅ Автозапуск включен")
            else:
                try:
                    winreg.DeleteValue(key, VALUE_NAME)
                except FileNotFoundError:
                    pass
                logger.info("Автозапуск выключен")
        return True
    except OSError as e:
        logger.error(f"❌ Ошибка изменения автозапуска: {e}")
        return False
