"""Circuit-isolated fetcher: validation, circuit retries, redirects, rate limits."""

import pytest

from recon_graph.config import FetchConfig, RetryConfig
from recon_graph.fetcher import (
    CircuitHandle,
    CollectionRequest,
    CollectionResult,
    Fetcher,
    parse_header,
    save_result,
    suggest_filename,
    validate_request,
)
from recon_graph.result import ErrorCategory, ErrorKind, Fail


def _fetcher(transport, **fetch) -> Fetcher:
    fetch.setdefault("rate_limit_delay", 0)
    return Fetcher(transport, FetchConfig(**fetch), RetryConfig())


def _response(url="https://example.org/", headers=(), body=b"") -> CollectionResult:
    return CollectionResult(status=200, headers=headers, body=body, circuit_id="c", url=url)


class TestValidation:
    @pytest.mark.unit
    @pytest.mark.parametrize("method", ["GET", "HEAD", "TRACE", "get"])
    def test_body_on_bodyless_method_is_config_error(self, transport, method):
        fetcher = _fetcher(transport)
        handle = fetcher.open_circuit().data

        result = fetcher.fetch(handle, CollectionRequest(
            url="https://example.org/", method=method, body="x=1",
        ))

        assert not result.ok
        assert result.kind is ErrorKind.INVALID_REQUEST
        assert result.category is ErrorCategory.CONFIGURATION
        assert transport.sent == []

    @pytest.mark.unit
    def test_post_with_body_is_valid(self):
        result = validate_request(CollectionRequest(url="https://example.org/", method="post", body="a=1"))
        assert result.ok
        assert result.data.method == "POST"

    @pytest.mark.unit
    @pytest.mark.parametrize("url", ["example.org/page", "ftp://example.org/", "https:///path"])
    def test_bad_urls(self, url):
        result = validate_request(CollectionRequest(url=url))
        assert not result.ok
        assert result.kind is ErrorKind.INVALID_REQUEST

    @pytest.mark.unit
    def test_plain_http_needs_opt_in(self):
        request = CollectionRequest(url="http://example.org/")
        assert not validate_request(request).ok
        assert validate_request(request, allow_plain_http=True).ok

    @pytest.mark.unit
    def test_parse_header(self):
        assert parse_header("Accept: text/csv").data == ("Accept", "text/csv")
        assert parse_header("X-Empty:").data == ("X-Empty", "")
        assert not parse_header("no colon here").ok


class TestCircuit:
    @pytest.mark.unit
    def test_transient_failures_are_retried_with_backoff(self, transport, sleeps):
        transport.open_results = [
            Fail("timed out", ErrorKind.CIRCUIT_BUILD_TIMEOUT),
            Fail("guard refused", ErrorKind.GUARD_CONNECTION_FAILED),
        ]
        fetcher = Fetcher(transport, FetchConfig(), RetryConfig(attempts=3, delay_seconds=5, backoff=2.0))

        result = fetcher.open_circuit()

        assert result.ok
        assert transport.attempts == 3
        assert sleeps == [5, 10]

    @pytest.mark.unit
    def test_non_transient_failure_is_not_retried(self, transport, sleeps):
        transport.open_results = [Fail("no route", ErrorKind.NETWORK_UNREACHABLE)]
        fetcher = _fetcher(transport)

        result = fetcher.open_circuit()

        assert not result.ok
        assert result.kind is ErrorKind.NETWORK_UNREACHABLE
        assert transport.attempts == 1
        assert sleeps == []

    @pytest.mark.unit
    def test_gives_up_after_configured_attempts(self, transport):
        transport.open_results = [Fail("timed out", ErrorKind.CIRCUIT_BUILD_TIMEOUT)] * 3
        fetcher = _fetcher(transport)

        result = fetcher.open_circuit()

        assert not result.ok
        assert result.kind is ErrorKind.CIRCUIT_BUILD_TIMEOUT
        assert "All 3 circuit build attempts failed" in result.error
        assert transport.opened == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("attempts", [0, -2])
    def test_non_positive_attempts_still_try_once(self, transport, sleeps, attempts):
        transport.open_results = [Fail("timed out", ErrorKind.CIRCUIT_BUILD_TIMEOUT)]
        fetcher = Fetcher(transport, FetchConfig(), RetryConfig(attempts=attempts))

        result = fetcher.open_circuit()

        assert not result.ok
        assert result.kind is ErrorKind.CIRCUIT_BUILD_TIMEOUT
        assert "All 1 circuit build attempts failed: timed out" in result.error
        assert transport.attempts == 1
        assert sleeps == []

    @pytest.mark.unit
    def test_two_fetches_share_one_circuit(self, transport):
        transport.responses = [(200, (), "a"), (200, (), "b")]
        fetcher = _fetcher(transport)
        handle = fetcher.open_circuit().data

        first = fetcher.fetch(handle, CollectionRequest(url="https://example.org/a"))
        second = fetcher.fetch(handle, CollectionRequest(url="https://example.org/b"))

        assert first.data.circuit_id == second.data.circuit_id == handle.circuit_id
        assert transport.opened == 1

    @pytest.mark.unit
    def test_handle_releases_on_exit(self, transport):
        fetcher = _fetcher(transport)
        with fetcher.open_circuit().data as handle:
            assert transport.released == []
        assert transport.released == [handle.circuit_id]

    @pytest.mark.unit
    def test_handle_releases_on_exception(self):
        released = []
        with pytest.raises(RuntimeError):
            with CircuitHandle(circuit_id="c1", release=lambda: released.append("c1")):
                raise RuntimeError("boom")
        assert released == ["c1"]


class TestFetch:
    @pytest.mark.unit
    def test_default_headers_and_rate_limit_delay(self, transport, sleeps):
        transport.responses = [(200, (), "ok")]
        fetcher = Fetcher(transport, FetchConfig(rate_limit_delay=1, user_agent="UA/1.0"))
        handle = fetcher.open_circuit().data

        fetcher.fetch(handle, CollectionRequest(url="https://example.org/"))

        _, sent, verify = transport.sent[0]
        assert sent.header("User-Agent") == "UA/1.0"
        assert sent.header("Accept-Language") == "en-US,en;q=0.9"
        assert sleeps == [1]
        assert isinstance(verify, str)

    @pytest.mark.unit
    def test_explicit_user_agent_wins_and_insecure_disables_verify(self, transport):
        transport.responses = [(200, (), "ok")]
        fetcher = _fetcher(transport, insecure=True)
        handle = fetcher.open_circuit().data

        fetcher.fetch(handle, CollectionRequest(
            url="https://example.org/", headers=(("user-agent", "curl/8"),),
        ))

        _, sent, verify = transport.sent[0]
        assert [v for k, v in sent.headers if k.lower() == "user-agent"] == ["curl/8"]
        assert verify is False

    @pytest.mark.unit
    def test_transport_failure_propagates(self, transport):
        transport.responses = [Fail("handshake failed", ErrorKind.TLS_ERROR)]
        fetcher = _fetcher(transport)
        handle = fetcher.open_circuit().data

        result = fetcher.fetch(handle, CollectionRequest(url="https://example.org/"))

        assert result.kind is ErrorKind.TLS_ERROR
        assert result.category is ErrorCategory.NETWORK


class TestCollect:
    @pytest.mark.unit
    def test_relative_redirect_followed_on_same_circuit(self, transport):
        transport.responses = [
            (301, (("Location", "/talks/"),), ""),
            (200, (("Content-Type", "text/html"),), "<html></html>"),
        ]
        fetcher = _fetcher(transport)
        handle = fetcher.open_circuit().data

        result = fetcher.collect(handle, CollectionRequest(url="https://example.org/talks"))

        assert result.ok
        assert result.data.url == "https://example.org/talks/"
        assert {circuit for circuit, _, _ in transport.sent} == {handle.circuit_id}
        assert transport.opened == 1

    @pytest.mark.unit
    def test_303_turns_post_into_bodyless_get(self, transport):
        transport.responses = [
            (303, (("Location", "https://example.org/done"),), ""),
            (200, (), "ok"),
        ]
        fetcher = _fetcher(transport)
        handle = fetcher.open_circuit().data

        result = fetcher.collect(handle, CollectionRequest(
            url="https://example.org/form",
            method="POST",
            headers=(("Content-Type", "application/x-www-form-urlencoded"),),
            body="a=1",
        ))

        assert result.ok
        follow = transport.sent[1][1]
        assert follow.method == "GET"
        assert follow.body is None
        assert follow.header("Content-Type") is None

    @pytest.mark.unit
    def test_too_many_redirects(self, transport):
        transport.responses = [(302, (("Location", "/loop"),), "")] * 3
        fetcher = _fetcher(transport, max_redirects=2)
        handle = fetcher.open_circuit().data

        result = fetcher.collect(handle, CollectionRequest(url="https://example.org/loop"))

        assert not result.ok
        assert result.kind is ErrorKind.HTTP_PROTOCOL_ERROR
        assert "Too many redirects" in result.error

    @pytest.mark.unit
    def test_retry_after_is_honoured(self, transport, sleeps):
        transport.responses = [
            (429, (("Retry-After", "7"),), ""),
            (429, (), ""),
            (200, (), "ok"),
        ]
        fetcher = _fetcher(transport, default_retry_after=60)
        handle = fetcher.open_circuit().data

        result = fetcher.collect(handle, CollectionRequest(url="https://example.org/"))

        assert result.ok
        assert sleeps == [7, 60]
        assert len({circuit for circuit, _, _ in transport.sent}) == 1

    @pytest.mark.unit
    def test_rate_limit_retries_are_bounded(self, transport):
        transport.responses = [(429, (("Retry-After", "1"),), "")] * 3
        fetcher = _fetcher(transport, max_rate_limit_retries=2)
        handle = fetcher.open_circuit().data

        result = fetcher.collect(handle, CollectionRequest(url="https://example.org/"))

        assert result.kind is ErrorKind.HTTP_STATUS

    @pytest.mark.unit
    def test_error_status_is_endpoint_failure_with_snippet(self, transport):
        transport.responses = [(503, (), "maintenance " * 100)]
        fetcher = _fetcher(transport)
        handle = fetcher.open_circuit().data

        result = fetcher.collect(handle, CollectionRequest(url="https://example.org/"))

        assert result.kind is ErrorKind.HTTP_STATUS
        assert result.category is ErrorCategory.ENDPOINT
        assert "503" in result.error
        assert len(result.context) == 500


class TestOutput:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("url", "headers", "expected"),
        [
            ("https://e.org/x", (("Content-Disposition", 'attachment; filename="report.pdf"'),), "report.pdf"),
            ("https://e.org/x", (("Content-Disposition", "attachment; filename=../../etc/passwd"),), "passwd"),
            ("https://e.org/files/data.csv?x=1", (), "data.csv"),
            ("https://e.org/sparql/", (("Content-Type", "application/json; charset=utf-8"),), "response.json"),
            ("https://e.org/", (("Content-Type", "text/csv"),), "response.csv"),
            ("https://e.org/", (("Content-Type", "text/html"),), "index.html"),
        ],
    )
    def test_suggest_filename(self, url, headers, expected):
        assert suggest_filename(_response(url=url, headers=headers)) == expected

    @pytest.mark.unit
    def test_save_result_writes_bytes_verbatim(self, tmp_path):
        body = b"\x00\xffraw"
        response = _response(url="https://e.org/blob.bin", body=body)

        explicit = save_result(response, output=tmp_path / "out" / "x.bin")
        derived = save_result(response, directory=tmp_path)

        assert explicit.data.read_bytes() == body
        assert derived.data == tmp_path / "blob.bin"
        assert derived.data.read_bytes() == body
