"""Request authentication, dispatch, caching and batching for AWS query APIs.

:class:`Runtime` turns an operation name and a parameter map into a
signed ``POST`` request (Signature Version 2 or 3) and either sends it,
queues it for a batch, or routes it through the response cache.

Service clients subclass :class:`Runtime`, set :attr:`Runtime.api_version`
and :attr:`Runtime.hostname`, and call :meth:`Runtime.authenticate`:

.. code-block:: python

   class SimpleQueue(Runtime):
       api_version = "2009-02-01"
       hostname = "queue.amazonaws.com"

       async def list_queues(self, opt=None):
           return await self.authenticate("ListQueues", opt)

   sqs = SimpleQueue.from_settings()
   response = await sqs.cache("1 hour").list_queues()

:meth:`cache`, :meth:`batch` and :meth:`delete_cache` only change the
next call and reset themselves once it has run.
"""

import hashlib
import json
import logging
import platform
import re
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, Union

from . import __version__
from .batch import BatchRequest
from .cache import CacheBackendRegistry, CacheStore
from .config.settings import Settings
from .exceptions import BatchRequestError, ConfigurationError
from .utils.http import (
    PreparedRequest,
    RequestDescriptor,
    ResponseEnvelope,
    Transport,
    retry_on_status,
)
from .utils.parser import XMLDocument, parse_body
from .utils.security import setup_secure_logging
from .utils.signing import (
    SIGNATURE_METHOD,
    authorization_header_v3,
    flatten_params,
    format_iso8601,
    format_rfc2616,
    generate_nonce,
    hex_to_base64,
    sign,
    sort_params,
    split_domain,
    string_to_sign_v2,
    string_to_sign_v3,
    to_query_string,
    to_signable_string,
)

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/x-www-form-urlencoded; charset=utf-8"

USER_AGENT = (
    f"cloudfusion/{__version__} Python/{platform.python_version()} "
    f"{platform.system()}/{platform.release()} Arch/{platform.machine()}"
)

# Control options, removed from the parameters before signing
RETURN_REQUEST_KEYS = ("return_request", "returnCurlHandle")
TRANSPORT_OPTION_KEYS = ("transport_options", "curlopts")

SUPPORTED_SIGNATURE_VERSIONS = (2, 3)

_UNIT_SECONDS = {
    "second": 1,
    "sec": 1,
    "minute": 60,
    "min": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
    "month": 2592000,
    "year": 31536000,
}
_RELATIVE_TIME_RE = re.compile(r"^\+?\s*(\d+(?:\.\d+)?)\s*([a-z]+?)s?$", re.IGNORECASE)


def parse_expiry(expires: Union[int, float, str, timedelta]) -> float:
    """Convert an expiry value into seconds.

    Accepts a number of seconds, a :class:`~datetime.timedelta`, or a
    relative time such as ``"1 hour"``, ``"+30 minutes"`` or ``"2 days"``.

    :param expires: Expiry value
    :type expires: Union[int, float, str, timedelta]
    :return: Lifetime in seconds
    :rtype: float
    :raises ConfigurationError: If the value is not understood
    """
    if isinstance(expires, bool):
        raise ConfigurationError(f"Invalid cache expiry: {expires!r}", setting="expires")
    if isinstance(expires, (int, float)):
        return float(expires)
    if isinstance(expires, timedelta):
        return expires.total_seconds()
    if isinstance(expires, str):
        match = _RELATIVE_TIME_RE.match(expires.strip())
        if match:
            amount, unit = match.groups()
            unit = unit.lower()
            if unit in _UNIT_SECONDS:
                return float(amount) * _UNIT_SECONDS[unit]
    raise ConfigurationError(f"Invalid cache expiry: {expires!r}", setting="expires")


def normalize_proxy(proxy: Optional[str]) -> Optional[str]:
    """Rewrite ``proxy://`` URLs to ``http://``; other URLs pass through."""
    if not proxy:
        return None
    if proxy.lower().startswith("proxy://"):
        return "http://" + proxy[len("proxy://"):]
    return proxy


class Runtime:
    """Signs and dispatches requests for one set of AWS credentials.

    :param key: AWS access key identifier
    :type key: Optional[str]
    :param secret_key: AWS secret access key
    :type secret_key: Optional[str]
    :param account_id: Optional AWS account identifier
    :type account_id: Optional[str]
    :param assoc_id: Optional Amazon associate identifier
    :type assoc_id: Optional[str]
    :param api_version: API version sent as the ``Version`` parameter
    :type api_version: Optional[str]
    :param transport: Transport to send requests through
    :type transport: Optional[Transport]
    :param clock: Returns the current POSIX time
    :type clock: Callable[[], float]
    :param nonce_factory: Returns a fresh Signature Version 3 nonce
    :type nonce_factory: Callable[[], str]
    :raises ConfigurationError: If the credential pair is incomplete
    """

    api_version: Optional[str] = None
    hostname: Optional[str] = None

    # Public operation name -> method name. Subclasses extend this mapping
    # with their service operations.
    operations: Dict[str, str] = {
        "authenticate": "authenticate",
        "batch": "batch",
        "send": "send",
        "cache": "cache",
        "delete_cache": "delete_cache",
        "deleteCache": "delete_cache",
        "adjust_offset": "adjust_offset",
        "adjustOffset": "adjust_offset",
        "set_proxy": "set_proxy",
        "setProxy": "set_proxy",
        "set_hostname": "set_hostname",
        "setHostname": "set_hostname",
        "set_resource_prefix": "set_resource_prefix",
        "setResourcePrefix": "set_resource_prefix",
        "allow_hostname_override": "allow_hostname_override",
        "allowHostnameOverride": "allow_hostname_override",
        "disable_ssl": "disable_ssl",
        "disableSsl": "disable_ssl",
        "disable_ssl_verification": "disable_ssl_verification",
        "disableSslVerification": "disable_ssl_verification",
        "enable_debug_mode": "enable_debug_mode",
        "enableDebugMode": "enable_debug_mode",
        "set_max_retries": "set_max_retries",
        "setMaxRetries": "set_max_retries",
        "set_cache_config": "set_cache_config",
        "setCacheConfig": "set_cache_config",
        "parse_callback": "parse_callback",
    }

    def __init__(
        self,
        key: Optional[str] = None,
        secret_key: Optional[str] = None,
        account_id: Optional[str] = None,
        assoc_id: Optional[str] = None,
        api_version: Optional[str] = None,
        transport: Optional[Transport] = None,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], str] = generate_nonce,
    ):
        if not (key and secret_key):
            raise ConfigurationError(
                "No valid credentials were used to authenticate with AWS.",
                setting="key",
            )
        self.key = key
        self.secret_key = secret_key
        self.account_id = account_id
        self.assoc_id = assoc_id
        if api_version:
            self.api_version = api_version

        self.service = self.__class__.__name__
        self.clock = clock
        self.nonce_factory = nonce_factory
        self._transport = transport

        self.time_offset = 0.0
        self.proxy: Optional[str] = None
        self.port_number: Optional[int] = None
        self.resource_prefix: Optional[str] = None
        self.override_hostname = True
        self.use_ssl = True
        self.ssl_verification = True
        self.debug_mode = False
        self.max_retries = 3
        self.connect_timeout = 120.0
        self.request_timeout = 5184000.0

        self.cache_class: Optional[Type[CacheStore]] = None
        self.cache_location: Any = None
        self.cache_compress = True
        self.cache_expires: float = 0.0
        self.cache_object: Optional[CacheStore] = None

        self.use_cache_flow = False
        self.delete_cache_flow = False
        self.use_batch_flow = False
        self.batch_object: Optional[BatchRequest] = None
        self.internal_batch_object: Optional[BatchRequest] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> "Runtime":
        """Build a runtime from :class:`~cloudfusion.config.settings.Settings`.

        :param settings: Loaded settings; read from the environment if omitted
        :type settings: Optional[Settings]
        :param kwargs: Extra constructor arguments
        :return: Configured runtime
        :rtype: Runtime
        :raises ConfigurationError: If the settings lack credentials
        """
        settings = settings or Settings()
        setup_secure_logging(settings.log_level)
        runtime = cls(
            key=settings.key,
            secret_key=settings.secret_key,
            account_id=settings.account_id,
            assoc_id=settings.assoc_id,
            **kwargs,
        )
        runtime.set_max_retries(settings.max_retries)
        runtime.connect_timeout = settings.connect_timeout
        runtime.request_timeout = settings.request_timeout
        if settings.proxy:
            runtime.set_proxy(settings.proxy)
        if settings.hostname:
            runtime.set_hostname(settings.hostname, settings.port)
        if not settings.use_ssl:
            runtime.disable_ssl()
        if not settings.verify_ssl:
            runtime.disable_ssl_verification()
        if settings.log_level == "DEBUG":
            runtime.enable_debug_mode()
        if settings.cache_location:
            runtime.set_cache_config(settings.cache_location, settings.cache_gzip)
        return runtime

    # -- operation table ---------------------------------------------------

    def invoke(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """Call an operation by its public name.

        :param name: Name registered in :attr:`operations`
        :type name: str
        :return: Whatever the operation returns (a coroutine for async ones)
        :raises ConfigurationError: If the name is not registered
        """
        method_name = self.operations.get(name)
        if method_name is None:
            raise ConfigurationError(
                f"Unknown operation '{name}' for {self.service}", setting="operation"
            )
        return getattr(self, method_name)(*args, **kwargs)

    # -- configuration -----------------------------------------------------

    def adjust_offset(self, seconds: float) -> "Runtime":
        """Shift request timestamps by ``seconds`` to correct clock skew."""
        self.time_offset = seconds
        return self

    def set_proxy(self, proxy: Optional[str]) -> "Runtime":
        """Send requests through ``proxy`` (``proxy://`` is read as ``http://``)."""
        self.proxy = normalize_proxy(proxy)
        return self

    def set_hostname(self, hostname: str, port_number: Optional[int] = None) -> "Runtime":
        """Use an alternate hostname as the default domain.

        Ignored unless hostname overrides are allowed.

        :param hostname: Hostname, optionally with scheme and path
        :type hostname: str
        :param port_number: Optional port appended to the hostname
        :type port_number: Optional[int]
        :return: This runtime
        :rtype: Runtime
        """
        if self.override_hostname:
            self.hostname = hostname
            if port_number:
                self.port_number = port_number
                self.hostname = f"{hostname}:{port_number}"
        return self

    def set_resource_prefix(self, prefix: Optional[str]) -> "Runtime":
        """Append ``prefix`` to the domain of every request."""
        self.resource_prefix = prefix
        return self

    def allow_hostname_override(self, override: bool = True) -> "Runtime":
        self.override_hostname = override
        return self

    def disable_ssl(self) -> "Runtime":
        self.use_ssl = False
        return self

    def disable_ssl_verification(self, ssl_verification: bool = False) -> "Runtime":
        """Turn TLS certificate verification off (or back on)."""
        self.ssl_verification = ssl_verification
        return self

    def enable_debug_mode(self, enabled: bool = True) -> "Runtime":
        """Log full requests and responses at DEBUG level."""
        self.debug_mode = enabled
        return self

    def set_max_retries(self, retries: int = 3) -> "Runtime":
        """Set how many times an HTTP 500/503 response is retried."""
        self.max_retries = retries
        return self

    def set_cache_config(self, location: Any, gzip: bool = True) -> "Runtime":
        """Select the cache backend for :meth:`cache`.

        :param location: Directory, ``apc``/``memory``, ``pdo.`` DSN, or a
            list of ``{"host", "port"}`` servers
        :type location: Any
        :param gzip: Compress cached payloads
        :type gzip: bool
        :return: This runtime
        :rtype: Runtime
        :raises ConfigurationError: If no backend serves ``location``
        """
        self.cache_class = CacheBackendRegistry.for_location(location)
        self.cache_location = location
        self.cache_compress = gzip
        logger.debug(f"Cache backend for {self.service}: {self.cache_class.__name__}")
        return self

    @property
    def transport(self) -> Transport:
        if self._transport is not None:
            return self._transport
        return Transport(
            proxy=self.proxy,
            connect_timeout=self.connect_timeout,
            request_timeout=self.request_timeout,
            debug=self.debug_mode,
            verify=self.ssl_verification,
        )

    # -- request construction ----------------------------------------------

    def build_descriptor(
        self,
        action: str,
        opt: Optional[Mapping[str, Any]] = None,
        domain: Optional[str] = None,
        signature_version: int = 2,
    ) -> Tuple[RequestDescriptor, bool]:
        """Split control options from parameters and resolve the domain.

        :return: The descriptor and whether the caller asked for the
            prepared request instead of a response
        :rtype: Tuple[RequestDescriptor, bool]
        :raises ConfigurationError: For an unknown signature version or a
            missing domain
        """
        if signature_version not in SUPPORTED_SIGNATURE_VERSIONS:
            raise ConfigurationError(
                f"Unsupported signature version: {signature_version}",
                setting="signature_version",
            )

        params = dict(opt or {})
        return_request = False
        for name in RETURN_REQUEST_KEYS:
            return_request = bool(params.pop(name, False)) or return_request
        transport_options: Dict[str, Any] = {}
        for name in TRANSPORT_OPTION_KEYS:
            transport_options.update(params.pop(name, None) or {})

        domain = domain or self.hostname
        if not domain:
            raise ConfigurationError(
                f"No domain given for {action} and no default hostname set",
                setting="hostname",
            )
        if self.resource_prefix:
            domain += self.resource_prefix

        descriptor = RequestDescriptor(
            operation=action,
            params=params,
            domain=domain,
            signature_version=signature_version,
            transport_options=transport_options,
        )
        return descriptor, return_request

    def prepare_request(self, descriptor: RequestDescriptor) -> PreparedRequest:
        """Sign a request using the current time and a fresh nonce.

        :param descriptor: Call to sign
        :type descriptor: RequestDescriptor
        :return: Signed request ready to send
        :rtype: PreparedRequest
        """
        now = self.clock() + self.time_offset
        date = format_rfc2616(now)
        nonce = self.nonce_factory()

        query: Dict[str, str] = {"Action": descriptor.operation}
        if self.api_version:
            query["Version"] = self.api_version
        if descriptor.signature_version == 2:
            query["AWSAccessKeyId"] = self.key
            query["SignatureMethod"] = SIGNATURE_METHOD
            query["SignatureVersion"] = "2"
            query["Timestamp"] = format_iso8601(now)
        query.update(flatten_params(descriptor.params))

        pairs = sort_params(query)
        host_header, request_uri = split_domain(descriptor.domain)

        if descriptor.signature_version == 3:
            string_to_sign = string_to_sign_v3(date, nonce)
            signature = sign(self.secret_key, string_to_sign)
        else:
            string_to_sign = string_to_sign_v2(
                host_header, request_uri, to_signable_string(pairs)
            )
            pairs.append(("Signature", sign(self.secret_key, string_to_sign)))

        body = to_query_string(pairs)
        bare_domain = re.sub(r"^https?://", "", descriptor.domain, flags=re.IGNORECASE)
        url = ("https://" if self.use_ssl else "http://") + bare_domain
        if "/" not in bare_domain:
            url += "/"

        headers = {"Content-Type": CONTENT_TYPE, "User-Agent": USER_AGENT}
        if descriptor.signature_version == 3:
            body_bytes = body.encode("utf-8")
            headers.update(
                {
                    "Date": date,
                    "Content-Length": str(len(body_bytes)),
                    "Content-MD5": hex_to_base64(hashlib.md5(body_bytes).hexdigest()),
                    "x-amz-nonce": nonce,
                    "X-Amzn-Authorization": authorization_header_v3(self.key, signature),
                }
            )

        return PreparedRequest(
            method="POST",
            url=url,
            headers=headers,
            body=body,
            descriptor=descriptor,
            string_to_sign=string_to_sign,
            transport_options=dict(descriptor.transport_options),
        )

    # -- dispatch ----------------------------------------------------------

    async def authenticate(
        self,
        action: str,
        opt: Optional[Mapping[str, Any]] = None,
        domain: Optional[str] = None,
        signature_version: Optional[int] = 2,
    ) -> Union[ResponseEnvelope, PreparedRequest, bool, Any]:
        """Sign and dispatch one operation.

        Depending on the active flow this returns a response, the prepared
        request queued for a batch, the prepared request itself (when
        ``opt`` contains ``return_request``), or, for :meth:`delete_cache`,
        whether the cache entry was deleted.

        HTTP 500 and 503 responses are retried up to :attr:`max_retries`
        times with a backoff of ``4**n * 100ms``, re-signing every attempt.
        Other HTTP errors are returned, not raised.

        :param action: API action name
        :type action: str
        :param opt: Request parameters, possibly nested, plus control options
        :type opt: Optional[Mapping[str, Any]]
        :param domain: Endpoint; defaults to :attr:`hostname`
        :type domain: Optional[str]
        :param signature_version: 2 or 3
        :type signature_version: Optional[int]
        :raises ConfigurationError: For a missing domain or bad signature version
        :raises TransportError: If the request fails below the HTTP layer
        """
        if signature_version is None:
            signature_version = 2

        if self.use_cache_flow and not self.use_batch_flow:
            return await self._authenticate_cached(action, opt, domain, signature_version)

        descriptor, return_request = self.build_descriptor(
            action, opt, domain, signature_version
        )

        if self.use_batch_flow:
            handle = self.prepare_request(descriptor)
            self._batch().add(handle)
            self.use_batch_flow = False
            return handle

        if return_request:
            return self.prepare_request(descriptor)

        transport = self.transport

        @retry_on_status(max_retries=self.max_retries)
        async def attempt(retry_count: int) -> ResponseEnvelope:
            request = self.prepare_request(descriptor)
            if retry_count:
                logger.debug(f"Retry {retry_count} of {action}")
            response = await transport.send_request(request)
            response.header["x-aws-stringtosign"] = request.string_to_sign
            response.header["x-aws-body"] = request.body
            return response

        response = await attempt()
        return self.parse_callback(response)

    async def _authenticate_cached(
        self,
        action: str,
        opt: Optional[Mapping[str, Any]],
        domain: Optional[str],
        signature_version: int,
    ) -> Any:
        self.use_cache_flow = False
        arguments = [action, opt, domain, signature_version]
        cache_id = f"{self.key}_{self.service}_{action}_{_fingerprint(arguments)}"
        self.cache_object = self._cache_store(cache_id)

        if self.delete_cache_flow:
            self.delete_cache_flow = False
            logger.debug(f"Deleting cache entry for {action}")
            return await self.cache_object.delete()

        data = await self.cache_object.response_manager(self.cache_callback, arguments)
        return self.parse_callback(data)

    def _cache_store(self, cache_id: str) -> CacheStore:
        if self.cache_class is None:
            raise ConfigurationError(
                "Must call set_cache_config() before using cache()",
                setting="cache_location",
            )
        return self.cache_class(
            cache_id, self.cache_location, self.cache_expires, self.cache_compress
        )

    def _batch(self) -> BatchRequest:
        if self.batch_object is None:
            self.batch_object = self.internal_batch_object = BatchRequest()
        return self.batch_object

    # -- batching ----------------------------------------------------------

    def batch(self, queue: Optional[BatchRequest] = None) -> "Runtime":
        """Queue the next call (or run the queue with :meth:`send`).

        :param queue: Queue to use; an internal queue is kept otherwise
        :type queue: Optional[BatchRequest]
        :return: This runtime
        :rtype: Runtime
        """
        if queue is not None:
            self.batch_object = queue
        else:
            if self.internal_batch_object is None:
                self.internal_batch_object = BatchRequest()
            self.batch_object = self.internal_batch_object
        self.use_batch_flow = True
        return self

    async def send(self, clear_after_send: bool = True) -> Union[List[Any], bool]:
        """Send the active batch queue.

        Must directly follow :meth:`batch`, as in ``runtime.batch().send()``.
        Honours a preceding :meth:`cache` or :meth:`delete_cache`.

        :param clear_after_send: Empty the queue afterwards
        :type clear_after_send: bool
        :return: Parsed responses in queue order, or the delete result
        :rtype: Union[List[Any], bool]
        :raises BatchRequestError: If :meth:`batch` was not called first
        :raises TransportError: If any request fails at the transport level
        """
        if not self.use_batch_flow:
            raise BatchRequestError("You must use runtime.batch().send()")
        self.use_batch_flow = False
        batch = self._batch()

        if not self.use_cache_flow:
            responses = await batch.send(self.transport)
        else:
            self.use_cache_flow = False
            fingerprint = _fingerprint(
                [handle.descriptor.cache_fingerprint() for handle in batch.queue if handle.descriptor]
            )
            self.cache_object = self._cache_store(f"{self.key}_{self.service}_{fingerprint}")
            if self.delete_cache_flow:
                self.delete_cache_flow = False
                return await self.cache_object.delete()
            responses = await self.cache_object.response_manager(
                self.cache_callback_batch, [batch]
            )

        parsed = [self.parse_callback(response) for response in responses or []]
        if clear_after_send:
            batch.clear()
        return parsed

    # -- caching -----------------------------------------------------------

    def cache(self, expires: Union[int, float, str, timedelta]) -> "Runtime":
        """Serve the next call from the cache, keeping results for ``expires``.

        :param expires: Seconds, a timedelta, or a relative time like ``"1 hour"``
        :type expires: Union[int, float, str, timedelta]
        :return: This runtime
        :rtype: Runtime
        :raises ConfigurationError: If no cache backend is configured
        """
        if self.cache_class is None:
            raise ConfigurationError(
                "Must call set_cache_config() before using cache()",
                setting="cache_location",
            )
        self.cache_expires = parse_expiry(expires)
        self.use_cache_flow = True
        return self

    def delete_cache(self) -> "Runtime":
        """Delete the cache entry of the next call instead of fetching it."""
        self.use_cache_flow = True
        self.delete_cache_flow = True
        return self

    async def cache_callback(
        self,
        action: str,
        opt: Optional[Mapping[str, Any]] = None,
        domain: Optional[str] = None,
        signature_version: int = 2,
    ) -> Any:
        """Fetch a fresh response for the cache.

        Parsed XML bodies are stored as text and re-parsed on the way out.
        """
        self.use_cache_flow = False
        response = await self.authenticate(action, opt, domain, signature_version)
        if isinstance(response, ResponseEnvelope) and isinstance(response.body, XMLDocument):
            response.body = response.body.to_xml()
        return response

    async def cache_callback_batch(self, batch: BatchRequest) -> List[ResponseEnvelope]:
        """Fetch fresh responses for a cached batch."""
        return await batch.send(self.transport)

    # -- parsing -----------------------------------------------------------

    def parse_callback(self, response: Any) -> Any:
        """Upgrade an XML body (or XML text) into an :class:`XMLDocument`.

        :param response: Response envelope or raw body
        :type response: Any
        :return: The same envelope with a parsed body, or the parsed text
        :rtype: Any
        """
        if isinstance(response, ResponseEnvelope):
            if isinstance(response.body, (str, bytes)):
                response.body = parse_body(response.body)
            return response
        if isinstance(response, (str, bytes)):
            return parse_body(response)
        return response


def _fingerprint(value: Any) -> str:
    """SHA-1 of a canonical JSON rendering of ``value``."""
    encoded = json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()
