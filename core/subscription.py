# core/subscription.py
import asyncio
import base64
import binascii
import logging
from typing import Optional

from aiohttp import ClientSession, ClientError

from core.exceptions import DecodeError, TransportError, UriDecodeError
from core.models import FetchResult, Server, SubscriptionEntry
from core.uri_decoder import UriDecoder, parse_metadata

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = (
    "vless://",
    "vmess://",
    "trojan://",
    "ss://",
    "shadowsocks://",
    "socks://",
)


def is_supported_uri(line: str) -> bool:
    return line.startswith(SUPPORTED_SCHEMES)


def decode_payload(body: str) -> str:
    """base64 (стандартный алфавит) -> UTF-8 текст"""
    try:
        raw = base64.b64decode(body.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 payload: {e}") from e

    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecodeError(f"Payload is not valid UTF-8: {e}") from e


def decode_subscription_body(body: str, decoder: UriDecoder) -> FetchResult:
    """
    Разбирает тело подписки в список серверов.

    Ошибка base64/UTF-8 даёт пустой результат, ошибка отдельной строки
    только пропускает эту строку.
    """
    result = FetchResult()

    try:
        text = decode_payload(body)
    except DecodeError as e:
        logger.warning(f"⚠️ Не удалось декодировать подписку: {e}")
        result.error = str(e)
        return result

    seen_keys = set()
    for line in text.splitlines():
        uri = line.strip()
        if not uri:
            continue

        if not is_supported_uri(uri):
            result.skipped.append((uri, "unsupported scheme"))
            continue

        try:
            metadata = parse_metadata(decoder.decode(uri))
        except UriDecodeError as e:
            logger.debug(f"Пропущена строка подписки: {e}")
            result.skipped.append((uri, str(e)))
            continue
        except Exception as e:
            logger.warning(f"⚠️ Ошибка декодера на строке подписки: {e}", exc_info=True)
            result.skipped.append((uri, f"decoder error: {e}"))
            continue

        if metadata is None:
            result.skipped.append((uri, "incomplete metadata"))
            continue

        server = Server(**metadata)
        if server.key in seen_keys:
            result.skipped.append((uri, f"duplicate key {server.key}"))
            continue

        seen_keys.add(server.key)
        result.entries.append(SubscriptionEntry(server=server, uri=uri))

    if result.skipped:
        logger.info(f"📋 Подписка: {len(result.entries)} серверов, пропущено строк: {len(result.skipped)}")
    else:
        logger.info(f"📋 Подписка: {len(result.entries)} серверов")

    return result


async def fetch_body(url: str, session: Optional[ClientSession] = None) -> str:
    """GET тела подписки, таймаут только транспортный по умолчанию"""
    own_session = session is None
    if own_session:
        session = ClientSession()

    try:
        async with session.get(url) as response:
            if response.status < 200 or response.status >= 300:
                raise TransportError(f"Subscription HTTP status: {response.status}")
            return await response.text(encoding='utf-8', errors='replace')
    except ClientError as e:
        raise TransportError(f"Subscription network error: {e}") from e
    except asyncio.TimeoutError as e:
        raise TransportError("Subscription request timed out") from e
    finally:
        if own_session:
            await session.close()


async def fetch_subscription(url: str, decoder: UriDecoder,
                             session: Optional[ClientSession] = None) -> FetchResult:
    """Скачивает и разбирает подписку. Никогда не бросает исключений."""
    logger.info(f"🌐 Загрузка подписки: {url}")

    try:
        body = await fetch_body(url, session)
    except TransportError as e:
        logger.warning(f"⚠️ {e}")
        return FetchResult(error=str(e))
    except ValueError as e:
        # Невалидный URL
        logger.warning(f"⚠️ Invalid subscription URL {url!r}: {e}")
        return FetchResult(error=str(e))

    return decode_subscription_body(body, decoder)
