# core/proxy/exceptions.py
"""Исключения relay-прокси"""


class RelayError(Exception):
    """Базовое исключение relay"""


class InvalidTargetError(RelayError, ValueError):
    """Целевой URL из пути запроса не разбирается как http(s) URL"""

    def __init__(self, target: str, reason: str = ""):
        self.target = target
        self.reason = reason
        message = f"Invalid target URL: {target!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class UpstreamFetchError(RelayError):
    """Не удалось выполнить запрос к origin (DNS, соединение, таймаут, TLS)"""

    def __init__(self, url: str, cause: Exception):
        self.url = url
        self.cause = cause
        super().__init__(f"Failed to fetch {url}: {cause}")
