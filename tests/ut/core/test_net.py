"""URL 校验与带重试的 HTTP 拉取测试"""

from __future__ import annotations

import io
import urllib.error
from collections.abc import Iterator
from unittest import mock

import pytest

from pkgr.core.exceptions import NetworkError, ValidationError
from pkgr.utils import net
from pkgr.utils.net import http_get, is_remote, validate_url_scheme


class TestValidateUrlScheme:
    def test_http_ok(self) -> None:
        validate_url_scheme("http://example.com/api")

    def test_https_ok(self) -> None:
        validate_url_scheme("https://example.com/api", require_https=True)

    def test_file_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("file:///etc/passwd")

    def test_empty_scheme_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("/local/path")

    def test_https_required(self) -> None:
        with pytest.raises(ValidationError, match="HTTPS"):
            validate_url_scheme("http://example.com/", require_https=True)

    def test_context_in_error(self) -> None:
        with pytest.raises(ValidationError, match="fetch"):
            validate_url_scheme("ftp://x", context="fetch")

    def test_is_remote(self) -> None:
        assert is_remote("https://repo.example.com/index.json")
        assert not is_remote("/home/user/repo/index.json")


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("https://x/", code, "err", {}, io.BytesIO(b""))


class TestHttpGet:
    @pytest.fixture(autouse=True)
    def _no_sleep(self) -> Iterator[None]:
        with mock.patch("tenacity.nap.time.sleep"):
            yield

    def test_success(self) -> None:
        with mock.patch.object(net.urllib.request, "urlopen", return_value=io.BytesIO(b"ok")):
            assert http_get("https://repo.example.com/index.json") == b"ok"

    def test_retries_transient_then_succeeds(self) -> None:
        side_effect = [_http_error(503), _http_error(502), io.BytesIO(b"ok")]
        with mock.patch.object(net.urllib.request, "urlopen", side_effect=side_effect) as urlopen:
            assert http_get("https://x/", attempts=3) == b"ok"
        assert urlopen.call_count == 3

    def test_gives_up_after_attempts(self) -> None:
        with mock.patch.object(net.urllib.request, "urlopen", side_effect=_http_error(500)) as urlopen:
            with pytest.raises(NetworkError) as exc_info:
                http_get("https://x/", attempts=2)
        assert urlopen.call_count == 2
        assert exc_info.value.transient

    def test_client_error_not_retried(self) -> None:
        with mock.patch.object(net.urllib.request, "urlopen", side_effect=_http_error(404)) as urlopen:
            with pytest.raises(NetworkError, match="404"):
                http_get("https://x/", attempts=3)
        assert urlopen.call_count == 1

    def test_timeout_is_transient(self) -> None:
        err = urllib.error.URLError(TimeoutError("timed out"))
        with mock.patch.object(net.urllib.request, "urlopen", side_effect=err) as urlopen:
            with pytest.raises(NetworkError):
                http_get("https://x/", attempts=2)
        assert urlopen.call_count == 2

    def test_scheme_checked_before_request(self) -> None:
        with mock.patch.object(net.urllib.request, "urlopen") as urlopen:
            with pytest.raises(ValidationError):
                http_get("http://x/", require_https=True)
        urlopen.assert_not_called()
