"""Tests for request signing, dispatch, caching and batching."""

import base64
import hashlib
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs

import httpx
import pytest

from cloudfusion import BatchRequest, BatchRequestError, ConfigurationError, __version__
from cloudfusion.cache import FileCache, MemoryCache
from cloudfusion.cache.sql import dispose_engines
from cloudfusion.config.settings import Settings
from cloudfusion.runtime import normalize_proxy, parse_expiry
from cloudfusion.utils.http import PreparedRequest, ResponseEnvelope
from cloudfusion.utils.parser import XMLDocument
from cloudfusion.utils.signing import sign

FIXED_NONCE = "0A1B2C3D-4E5F-4A6B-8C7D-8E9F0A1B2C3D"

SECRET = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"

LIST_DOMAINS = (
    '<?xml version="1.0"?>\n'
    '<ListDomainsResponse xmlns="http://sdb.amazonaws.com/doc/2009-04-15/">'
    "<ListDomainsResult><DomainName>alpha</DomainName></ListDomainsResult>"
    "</ListDomainsResponse>"
)


def _form(request: httpx.Request):
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class Recorder:
    """MockTransport handler that records requests and answers with XML."""

    def __init__(self, status=200, body=LIST_DOMAINS):
        self.status = status
        self.body = body
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status, text=self.body)


class TestConstruction:
    def test_missing_credentials(self, service_class):
        with pytest.raises(ConfigurationError) as excinfo:
            service_class(key="AKID")
        assert "No valid credentials" in excinfo.value.message

    def test_from_settings(self, service_class, tmp_path):
        settings = Settings(
            AWS_KEY="AKIDSETTINGS",
            AWS_SECRET_KEY="secret",
            AWS_MAX_RETRIES=5,
            AWS_CACHE_LOCATION=str(tmp_path),
            AWS_USE_SSL=False,
            AWS_VERIFY_SSL=False,
        )
        runtime = service_class.from_settings(settings)
        assert runtime.key == "AKIDSETTINGS"
        assert runtime.max_retries == 5
        assert runtime.cache_class is FileCache
        assert runtime.use_ssl is False
        assert runtime.ssl_verification is False
        assert runtime.transport.verify is False

    def test_from_environment(self, service_class):
        runtime = service_class.from_settings()
        assert runtime.key == "AKIDEXAMPLE"

    def test_setters_chain(self, make_runtime):
        runtime = make_runtime()
        assert runtime.set_max_retries(1).disable_ssl().adjust_offset(5) is runtime
        assert runtime.max_retries == 1
        assert runtime.use_ssl is False
        assert runtime.time_offset == 5
        assert runtime.transport.verify is True
        assert runtime.disable_ssl_verification() is runtime
        assert runtime.transport.verify is False

    def test_invoke(self, make_runtime):
        runtime = make_runtime()
        assert runtime.invoke("setMaxRetries", 7) is runtime
        assert runtime.max_retries == 7
        with pytest.raises(ConfigurationError):
            runtime.invoke("drop_everything")


class TestSignatureV2:
    def test_string_to_sign(self, make_runtime):
        runtime = make_runtime()
        descriptor, _ = runtime.build_descriptor("ListDomains", {"a": "1", "B": "2"})
        request = runtime.prepare_request(descriptor)
        assert request.string_to_sign == (
            "POST\nsdb.amazonaws.com\n/\n"
            "AWSAccessKeyId=AKIDEXAMPLE&Action=ListDomains&B=2"
            "&SignatureMethod=HmacSHA256&SignatureVersion=2"
            "&Timestamp=2011-03-13T07%3A06%3A40Z&Version=2009-04-15&a=1"
        )

    def test_signature_is_last_body_parameter(self, make_runtime):
        runtime = make_runtime()
        descriptor, _ = runtime.build_descriptor("ListDomains", {"a": "1"})
        request = runtime.prepare_request(descriptor)
        assert request.body.rsplit("&", 1)[1].startswith("Signature=")
        assert parse_qs(request.body)["Signature"][0] == sign(
            SECRET, request.string_to_sign
        )
        assert request.method == "POST"
        assert request.url == "https://sdb.amazonaws.com/"
        assert request.headers["User-Agent"].startswith(f"cloudfusion/{__version__} Python/")

    def test_clock_offset(self, make_runtime):
        runtime = make_runtime().adjust_offset(60)
        descriptor, _ = runtime.build_descriptor("ListDomains")
        request = runtime.prepare_request(descriptor)
        assert "Timestamp=2011-03-13T07%3A07%3A40Z" in request.body

    def test_unsupported_signature_version(self, make_runtime):
        with pytest.raises(ConfigurationError):
            make_runtime().build_descriptor("ListDomains", signature_version=4)


class TestSignatureV3:
    def test_headers(self, make_runtime):
        runtime = make_runtime()
        descriptor, _ = runtime.build_descriptor(
            "Send", {"Value": "x"}, domain="email.us-east-1.amazonaws.com", signature_version=3
        )
        request = runtime.prepare_request(descriptor)
        headers = request.headers

        assert headers["Date"] == "Sun, 13 Mar 2011 07:06:40 GMT"
        assert headers["x-amz-nonce"] == FIXED_NONCE
        assert request.string_to_sign == headers["Date"] + FIXED_NONCE
        assert headers["X-Amzn-Authorization"] == (
            "AWS3-HTTPS AWSAccessKeyId=AKIDEXAMPLE,Algorithm=HmacSHA256,"
            f"Signature={sign(SECRET, request.string_to_sign)}"
        )
        body = request.body.encode()
        assert headers["Content-Length"] == str(len(body))
        assert headers["Content-MD5"] == base64.b64encode(hashlib.md5(body).digest()).decode()
        assert "Signature" not in parse_qs(request.body)
        assert "Timestamp" not in parse_qs(request.body)


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_sends_and_parses(self, make_runtime):
        recorder = Recorder()
        response = await make_runtime(recorder).list_domains()

        assert isinstance(response.body, XMLDocument)
        assert response.body.find_text("DomainName") == "alpha"
        assert response.header["x-aws-stringtosign"].startswith("POST\n")
        assert response.header["x-aws-body"] == recorder.requests[0].content.decode()
        assert _form(recorder.requests[0])["Action"] == "ListDomains"

    @pytest.mark.asyncio
    async def test_return_request(self, make_runtime):
        recorder = Recorder()
        request = await make_runtime(recorder).list_domains({"return_request": True})
        assert isinstance(request, PreparedRequest)
        assert "return_request" not in request.body
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_transport_options_are_not_signed(self, make_runtime):
        recorder = Recorder()
        await make_runtime(recorder).list_domains(
            {"MaxNumberOfDomains": 5, "curlopts": {"headers": {"X-Trace": "1"}}}
        )
        sent = recorder.requests[0]
        assert "curlopts" not in _form(sent)
        assert _form(sent)["MaxNumberOfDomains"] == "5"
        assert sent.headers["X-Trace"] == "1"

    @pytest.mark.asyncio
    async def test_http_errors_are_returned(self, make_runtime):
        recorder = Recorder(403, "<Error><Code>AccessDenied</Code></Error>")
        response = await make_runtime(recorder).list_domains()
        assert response.status == 403
        assert response.body.find_text("Code") == "AccessDenied"

    @pytest.mark.asyncio
    async def test_server_errors_are_retried_and_resigned(self, make_runtime):
        statuses = iter([503, 500, 200])
        bodies = []

        def handler(request):
            bodies.append(request.content)
            return httpx.Response(next(statuses), text=LIST_DOMAINS)

        clock = iter([1300000000, 1300000001, 1300000002])
        runtime = make_runtime(handler)
        runtime.clock = lambda: next(clock)
        with patch(
            "cloudfusion.utils.http.retry.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            response = await runtime.list_domains()

        assert response.status == 200
        assert len(bodies) == 3
        assert len(set(bodies)) == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_resource_prefix_and_plain_http(self, make_runtime):
        recorder = Recorder()
        runtime = make_runtime(recorder).set_resource_prefix("/mybucket").disable_ssl()
        await runtime.list_domains()
        assert str(recorder.requests[0].url) == "http://sdb.amazonaws.com/mybucket"

    @pytest.mark.asyncio
    async def test_hostname_override(self, make_runtime):
        recorder = Recorder()
        runtime = make_runtime(recorder).set_hostname("localhost", 8773)
        await runtime.list_domains()
        assert str(recorder.requests[0].url) == "https://localhost:8773/"

    def test_hostname_override_can_be_disabled(self, make_runtime):
        runtime = make_runtime().allow_hostname_override(False)
        runtime.set_hostname("localhost")
        assert runtime.hostname == "sdb.amazonaws.com"

    def test_proxy_scheme(self, make_runtime):
        runtime = make_runtime().set_proxy("proxy://user:pw@proxy.local:8080")
        assert runtime.proxy == "http://user:pw@proxy.local:8080"
        assert normalize_proxy("https://p.local") == "https://p.local"
        assert normalize_proxy(None) is None


class TestBatch:
    @pytest.mark.asyncio
    async def test_batch_returns_handles_then_results_in_order(self, make_runtime):
        def handler(request):
            form = _form(request)
            return httpx.Response(200, text=f"<r>{form['MaxNumberOfDomains']}</r>")

        runtime = make_runtime(handler)
        handles = []
        for n in range(3):
            handle = await runtime.batch().list_domains({"MaxNumberOfDomains": n})
            assert isinstance(handle, PreparedRequest)
            handles.append(handle)

        responses = await runtime.batch().send()
        assert [r.body for r in responses] == ["<r>0</r>", "<r>1</r>", "<r>2</r>"]
        assert len(runtime.batch_object) == 0

    @pytest.mark.asyncio
    async def test_batch_flag_is_single_use(self, make_runtime):
        recorder = Recorder()
        runtime = make_runtime(recorder)
        await runtime.batch().list_domains()
        response = await runtime.list_domains()
        assert isinstance(response, ResponseEnvelope)
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_send_requires_batch(self, make_runtime):
        with pytest.raises(BatchRequestError):
            await make_runtime(Recorder()).send()

    @pytest.mark.asyncio
    async def test_caller_supplied_queue(self, make_runtime):
        recorder = Recorder()
        runtime = make_runtime(recorder)
        queue = BatchRequest(limit=1)
        await runtime.batch(queue).list_domains()
        await runtime.batch(queue).list_domains()
        assert len(queue) == 2

        responses = await runtime.batch(queue).send(clear_after_send=False)
        assert len(responses) == 2
        assert len(queue) == 2


class TestCacheFlow:
    def test_cache_requires_config(self, make_runtime):
        with pytest.raises(ConfigurationError):
            make_runtime().cache(60)

    @pytest.mark.asyncio
    async def test_file_cache_serves_second_call(self, make_runtime, tmp_path):
        recorder = Recorder()
        runtime = make_runtime(recorder).set_cache_config(str(tmp_path))

        first = await runtime.cache("1 hour").list_domains()
        second = await runtime.cache("1 hour").list_domains()

        assert len(recorder.requests) == 1
        assert isinstance(first.body, XMLDocument)
        assert isinstance(second.body, XMLDocument)
        assert second.body == first.body
        assert second.body.find_text("DomainName") == "alpha"
        assert len(list(tmp_path.glob("*.cache"))) == 1

    @pytest.mark.asyncio
    async def test_sql_cache_hit_is_parsed(self, make_runtime, tmp_path):
        recorder = Recorder()
        runtime = make_runtime(recorder).set_cache_config(
            f"pdo.sqlite:{tmp_path / 'cache.db'}"
        )
        try:
            await runtime.cache(60).list_domains()
            hit = await runtime.cache(60).list_domains()
        finally:
            dispose_engines()

        assert len(recorder.requests) == 1
        assert isinstance(hit.body, XMLDocument)
        assert hit.body.find_text("DomainName") == "alpha"

    @pytest.mark.asyncio
    async def test_unusable_cache_database_falls_through(self, make_runtime, tmp_path):
        recorder = Recorder()
        runtime = make_runtime(recorder).set_cache_config(
            f"pdo.sqlite:{tmp_path / 'missing' / 'cache.db'}"
        )
        try:
            first = await runtime.cache(60).list_domains()
            second = await runtime.cache(60).list_domains()
        finally:
            dispose_engines()

        assert first.status == second.status == 200
        assert isinstance(second.body, XMLDocument)
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_cache_flag_is_single_use(self, make_runtime):
        recorder = Recorder()
        runtime = make_runtime(recorder).set_cache_config("apc")
        await runtime.cache(60).list_domains()
        await runtime.list_domains()
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_different_parameters_use_different_entries(self, make_runtime):
        recorder = Recorder()
        runtime = make_runtime(recorder).set_cache_config("memory")
        await runtime.cache(60).list_domains({"MaxNumberOfDomains": 1})
        await runtime.cache(60).list_domains({"MaxNumberOfDomains": 2})
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_delete_cache(self, make_runtime):
        recorder = Recorder()
        runtime = make_runtime(recorder).set_cache_config("memory")
        await runtime.cache(60).list_domains()
        assert await runtime.delete_cache().list_domains() is True
        assert await runtime.delete_cache().list_domains() is False

        await runtime.cache(60).list_domains()
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_cached_batch(self, make_runtime):
        recorder = Recorder()
        runtime = make_runtime(recorder).set_cache_config("memory")

        for _ in range(2):
            await runtime.batch().list_domains()
            await runtime.batch().list_domains({"NextToken": "t"})
            responses = await runtime.cache(60).batch().send()
            assert len(responses) == 2
            assert all(isinstance(r.body, XMLDocument) for r in responses)

        assert len(recorder.requests) == 2
        assert any(
            key.startswith("AKIDEXAMPLE_SimpleDB_") for key in MemoryCache._entries
        )


class TestParseExpiry:
    def test_numbers_and_timedeltas(self):
        assert parse_expiry(30) == 30.0
        assert parse_expiry(timedelta(minutes=2)) == 120.0

    def test_relative_strings(self):
        assert parse_expiry("1 hour") == 3600.0
        assert parse_expiry("+30 minutes") == 1800.0
        assert parse_expiry("2 days") == 172800.0

    def test_invalid(self):
        for value in ("soon", "3 fortnights", True, None):
            with pytest.raises(ConfigurationError):
                parse_expiry(value)
