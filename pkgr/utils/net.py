"""网络工具 — URL 安全校验 + 带重试的 HTTP 拉取

仅超时、连接重置、5xx 这类临时故障会重试（固定次数 + 指数退避），
4xx 与校验失败不重试，直接向上抛出。
"""

from __future__ import annotations

import http.client
import logging
import socket
import urllib.error
import urllib.request
from urllib.parse import urlparse

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pkgr import __version__
from pkgr.core.exceptions import NetworkError, ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))

DEFAULT_TIMEOUT = 30.0
DEFAULT_ATTEMPTS = 3


def validate_url_scheme(
    url: str, *, context: str = "", require_https: bool = False,
) -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内，或要求 HTTPS 但不是 https
    """
    parsed = urlparse(url)
    label = f" ({context})" if context else ""
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )
    if require_https and parsed.scheme != "https":
        raise ValidationError(f"要求使用 HTTPS{label}: {url}")


def is_remote(location: str) -> bool:
    """判断位置是否为 http(s) URL（否则视为本地路径）"""
    return urlparse(location).scheme in _ALLOWED_SCHEMES


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, NetworkError) and exc.transient


def _get_once(url: str, timeout: float) -> bytes:
    req = urllib.request.Request(
        url, headers={"User-Agent": f"pageos-pkgr/{__version__}"},
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec B310
            return resp.read()
    except urllib.error.HTTPError as e:
        raise NetworkError(
            f"HTTP 请求失败: {url} - {e.code}", transient=e.code >= 500,
        ) from e
    except urllib.error.URLError as e:
        transient = isinstance(e.reason, (socket.timeout, TimeoutError, ConnectionError))
        raise NetworkError(f"请求失败: {url} - {e.reason}", transient=transient) from e
    except (TimeoutError, ConnectionError, http.client.IncompleteRead) as e:
        raise NetworkError(f"连接中断: {url} - {e}", transient=True) from e


def http_get(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    attempts: int = DEFAULT_ATTEMPTS,
    require_https: bool = False,
) -> bytes:
    """GET 一个 URL 并返回响应体，临时故障按指数退避重试

    Raises:
        ValidationError: URL 协议不合法
        NetworkError: 重试耗尽或不可重试的失败
    """
    validate_url_scheme(url, context="fetch", require_https=require_https)
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.5, max=8),
        retry=retry_if_exception(_is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            return _get_once(url, timeout)
    raise NetworkError(f"请求失败: {url}")  # pragma: no cover
