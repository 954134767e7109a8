# core/exceptions.py
"""
Иерархия исключений Xray Tray
"""


class XrayTrayError(Exception):
    """Базовое исключение приложения"""
    pass


class TransportError(XrayTrayError):
    """Подписка недоступна (сеть, HTTP статус)"""
    pass


class DecodeError(XrayTrayError):
    """Некорректный base64/UTF-8 в теле подписки"""
    pass


class UriDecodeError(XrayTrayError):
    """Внешний декодер не смог разобрать URI или построить конфиг"""
    pass


class ConfigIoError(XrayTrayError):
    """Ошибка чтения, разбора или записи конфигурации"""
    pass


class PortAllocationError(XrayTrayError):
    """Закончились свободные локальные порты"""
    pass


class ProcessStartError(XrayTrayError):
    """Не удалось запустить процесс туннеля"""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key
        self.message = message


class ProcessStopError(XrayTrayError):
    """Не удалось остановить процесс туннеля"""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key
        self.message = message
