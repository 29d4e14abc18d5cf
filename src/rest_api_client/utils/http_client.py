"""Resilient JSON REST client returning uniform response envelopes.

This module provides :class:`ApiClient`, the request dispatch pipeline of
the package. A call goes through these steps:

1. The configuration is locked (base address, timeout, default headers).
2. The target is resolved against the base address.
3. The retry policy runs the per-attempt step. Each attempt builds a fresh
   request (default headers, ``Accept``, per-call headers, authentication,
   serialized payload), sends it with a streamed body under the configured
   timeout and returns a classified outcome.
4. The final outcome becomes an :class:`ApiResponse`: decoded data for 2xx,
   status and raw body for other statuses, a description for exceptions,
   a dedicated state for cancellation.

Only structural errors (missing base address, use after release, invalid
arguments, configuration changes after first use) are raised; everything
else ends up in the envelope.

Examples:
    >>> async with ApiClient(base_address="https://api.example.com") as client:
    ...     result = await client.get("/users/1", response_type=User,
    ...                               auth_token="abc", auth_scheme=AuthScheme.BEARER)
    ...     if result.success:
    ...         print(result.data.name)
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional, Union

import httpx

from ..auth.authenticator import DEFAULT_API_KEY_HEADER, AuthScheme, apply_auth
from ..config.settings import ClientSettings
from ..exceptions import (
    AttemptTimeoutError,
    ClientReleasedError,
    MissingBaseAddressError,
    RequestCancelledError,
    ValidationError,
)
from ..models import (
    CANCELLED_MESSAGE,
    TIMEOUT_MESSAGE,
    ApiResponse,
    CallDescriptor,
    HttpMethod,
)
from .codec import JSON_CONTENT_TYPE, BodyCodec, DecodeStrategy, JsonBodyCodec, as_strategy
from .http.cancellation import CancellationToken, run_cancellable
from .http.client_manager import DEFAULT_TIMEOUT, create_http_client
from .http.guard import ConfigurationGuard
from .http.retry import AttemptOutcome, OutcomeKind, RetryContext, RetryPolicy
from .security import sanitize_headers, sanitize_url

logger = logging.getLogger(__name__)

Target = Union[str, httpx.URL, None]
Timeout = Union[float, int, timedelta]


class ApiClient:
    """Async facade for calling JSON REST APIs reliably.

    Any number of calls may run concurrently on one instance. Settings can
    only be changed until the first call is attempted.

    :param base_address: Base URI for relative targets
    :type base_address: Optional[str]
    :param timeout: Per-attempt timeout in seconds (or a ``timedelta``)
    :type timeout: Union[float, timedelta]
    :param default_headers: Headers sent with every request
    :type default_headers: Optional[Mapping[str, str]]
    :param retry_policy: Retry policy, defaults to :class:`RetryPolicy()`
    :type retry_policy: Optional[RetryPolicy]
    :param codec: Body codec, defaults to :class:`JsonBodyCodec()`
    :type codec: Optional[BodyCodec]
    :param http_client: Externally managed ``httpx.AsyncClient``
    :type http_client: Optional[httpx.AsyncClient]
    :param transport: Low-level transport for a client created here
    :type transport: Optional[httpx.AsyncBaseTransport]
    :param owns_http_client: Whether :meth:`release` closes the HTTP client.
                             Defaults to True for a client created here and
                             False for an injected one.
    :type owns_http_client: Optional[bool]
    :param api_key_header: Header name used by :attr:`AuthScheme.API_KEY`
    :type api_key_header: str
    :param logger: Optional logger replacing the module logger
    :type logger: Optional[logging.Logger]
    :raises ValidationError: On invalid construction arguments
    """

    def __init__(
        self,
        base_address: Optional[Union[str, httpx.URL]] = None,
        timeout: Timeout = DEFAULT_TIMEOUT,
        default_headers: Optional[Mapping[str, str]] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        codec: Optional[BodyCodec] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        owns_http_client: Optional[bool] = None,
        api_key_header: str = DEFAULT_API_KEY_HEADER,
        logger: Optional[logging.Logger] = None,
    ):
        if http_client is not None and transport is not None:
            raise ValidationError(
                "Pass either http_client or transport, not both", field="transport"
            )

        self._log = logger or logging.getLogger(__name__)
        self._guard = ConfigurationGuard()
        self._base_address = _parse_base_address(base_address)
        self._timeout = _parse_timeout(timeout)
        self._default_headers = httpx.Headers(default_headers or {})
        self._retry_policy = retry_policy or RetryPolicy()
        self._codec: BodyCodec = codec or JsonBodyCodec()
        self._api_key_header = api_key_header

        if http_client is None:
            http_client = create_http_client(
                timeout=httpx.Timeout(self._timeout), transport=transport
            )
            self._owns_http_client = True if owns_http_client is None else owns_http_client
        else:
            self._owns_http_client = bool(owns_http_client)
        self._http_client = http_client
        self._released = False

    @classmethod
    def from_settings(cls, settings: Optional[ClientSettings] = None, **kwargs: Any) -> "ApiClient":
        """Build a client from :class:`ClientSettings`.

        Keyword arguments override or complement the settings.
        """
        settings = settings or ClientSettings()
        options: Dict[str, Any] = {
            "base_address": settings.base_address,
            "timeout": settings.timeout,
            "default_headers": settings.default_headers,
            "retry_policy": settings.retry_policy(),
            "api_key_header": settings.api_key_header,
        }
        options.update(kwargs)
        return cls(**options)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def base_address(self) -> Optional[str]:
        return str(self._base_address) if self._base_address is not None else None

    @property
    def timeout(self) -> float:
        """Per-attempt timeout in seconds."""
        return self._timeout

    @property
    def default_headers(self) -> Dict[str, str]:
        """Copy of the default headers."""
        return dict(self._default_headers.items())

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def has_sent_requests(self) -> bool:
        """True once any request has been attempted."""
        return self._guard.is_locked

    @property
    def is_released(self) -> bool:
        return self._released

    def set_base_address(self, base_address: Optional[Union[str, httpx.URL]]) -> None:
        """Change the base address.

        :raises ConfigurationLockedError: After the first request
        """
        self._ensure_open("set_base_address")
        parsed = _parse_base_address(base_address)
        self._guard.mutate("base_address", lambda: setattr(self, "_base_address", parsed))

    def set_timeout(self, timeout: Timeout) -> None:
        """Change the per-attempt timeout.

        :raises ConfigurationLockedError: After the first request
        """
        self._ensure_open("set_timeout")
        parsed = _parse_timeout(timeout)
        self._guard.mutate("timeout", lambda: setattr(self, "_timeout", parsed))

    def add_default_header(self, name: str, value: str) -> None:
        """Add or replace a default header (case-insensitive name).

        :raises ConfigurationLockedError: After the first request
        """
        self._ensure_open("add_default_header")
        if not name or not name.strip():
            raise ValidationError("Header name cannot be empty", field="name")

        def _apply() -> None:
            self._default_headers[name] = value

        self._guard.mutate("default_headers", _apply)

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    async def get(
        self,
        target: Target = None,
        *,
        response_type: Any = None,
        auth_token: Optional[str] = None,
        auth_scheme: AuthScheme = AuthScheme.NONE,
        extra_headers: Optional[Mapping[str, str]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ApiResponse:
        """Send a GET request. Without a target the base address is used."""
        return await self.send(
            HttpMethod.GET,
            target,
            response_type=response_type,
            auth_token=auth_token,
            auth_scheme=auth_scheme,
            extra_headers=extra_headers,
            cancellation=cancellation,
        )

    async def post(
        self,
        target: Target,
        payload: Any = None,
        *,
        response_type: Any = None,
        auth_token: Optional[str] = None,
        auth_scheme: AuthScheme = AuthScheme.NONE,
        extra_headers: Optional[Mapping[str, str]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ApiResponse:
        """Send a POST request with a JSON payload."""
        return await self.send(
            HttpMethod.POST,
            target,
            payload,
            response_type=response_type,
            auth_token=auth_token,
            auth_scheme=auth_scheme,
            extra_headers=extra_headers,
            cancellation=cancellation,
        )

    async def put(
        self,
        target: Target,
        payload: Any = None,
        *,
        response_type: Any = None,
        auth_token: Optional[str] = None,
        auth_scheme: AuthScheme = AuthScheme.NONE,
        extra_headers: Optional[Mapping[str, str]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ApiResponse:
        """Send a PUT request with a JSON payload."""
        return await self.send(
            HttpMethod.PUT,
            target,
            payload,
            response_type=response_type,
            auth_token=auth_token,
            auth_scheme=auth_scheme,
            extra_headers=extra_headers,
            cancellation=cancellation,
        )

    async def patch(
        self,
        target: Target,
        payload: Any = None,
        *,
        response_type: Any = None,
        auth_token: Optional[str] = None,
        auth_scheme: AuthScheme = AuthScheme.NONE,
        extra_headers: Optional[Mapping[str, str]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ApiResponse:
        """Send a PATCH request with a JSON payload."""
        return await self.send(
            HttpMethod.PATCH,
            target,
            payload,
            response_type=response_type,
            auth_token=auth_token,
            auth_scheme=auth_scheme,
            extra_headers=extra_headers,
            cancellation=cancellation,
        )

    async def delete(
        self,
        target: Target,
        *,
        response_type: Any = None,
        auth_token: Optional[str] = None,
        auth_scheme: AuthScheme = AuthScheme.NONE,
        extra_headers: Optional[Mapping[str, str]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ApiResponse:
        """Send a DELETE request."""
        return await self.send(
            HttpMethod.DELETE,
            target,
            response_type=response_type,
            auth_token=auth_token,
            auth_scheme=auth_scheme,
            extra_headers=extra_headers,
            cancellation=cancellation,
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def send(
        self,
        method: Union[HttpMethod, str],
        target: Target = None,
        payload: Any = None,
        *,
        response_type: Union[DecodeStrategy, Any, None] = None,
        auth_token: Optional[str] = None,
        auth_scheme: AuthScheme = AuthScheme.NONE,
        extra_headers: Optional[Mapping[str, str]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ApiResponse:
        """Perform one logical call and return its envelope.

        :param method: HTTP method
        :param target: Absolute URI, path relative to the base address, or
                       None for the base address itself
        :param payload: Body for POST/PUT/PATCH, ignored otherwise
        :param response_type: Type to decode 2xx bodies into, a
                              :class:`DecodeStrategy`, or None for plain JSON
        :param auth_token: Secret attached according to ``auth_scheme``
        :param auth_scheme: Authentication scheme
        :param extra_headers: Headers for this call only, overriding defaults
        :param cancellation: Token aborting this call when cancelled
        :return: Response envelope
        :raises ClientReleasedError: If the client was released
        :raises MissingBaseAddressError: If a relative target has no base
        :raises ValidationError: If the method is not supported
        """
        self._ensure_open("send")
        call = CallDescriptor(
            method=_parse_method(method),
            target=target,
            payload=payload,
            auth_token=auth_token,
            auth_scheme=auth_scheme,
            extra_headers=extra_headers,
            cancellation=cancellation,
        )
        # Locks on every attempted send, including structurally failing ones
        self._guard.mark_in_use()
        url = self._resolve_target(call.target)
        strategy = as_strategy(response_type)

        async def attempt(context: RetryContext) -> AttemptOutcome:
            return await self._attempt(call, url, context)

        outcome: Optional[AttemptOutcome] = None
        try:
            outcome = await self._retry_policy.execute(attempt, cancellation)
            return await self._to_envelope(outcome, strategy, call)
        except RequestCancelledError:
            self._log.debug("Request cancelled by caller while reading the response.")
            return ApiResponse.failure(CANCELLED_MESSAGE, status_code=_status_of(outcome))
        except Exception as e:
            self._log.error(f"Error during HTTP request: {e}", exc_info=True)
            return ApiResponse.failure(_describe_error(e), status_code=_status_of(outcome))
        finally:
            if outcome is not None:
                await outcome.aclose()

    async def _attempt(
        self, call: CallDescriptor, url: httpx.URL, context: RetryContext
    ) -> AttemptOutcome:
        """Build, send and classify one attempt. Never raises."""
        try:
            request = self._build_request(call, url)
            if self._log.isEnabledFor(logging.DEBUG):
                self._log.debug(
                    f"=== SEND (attempt {context.attempt}): {request.method} "
                    f"{sanitize_url(str(request.url))} headers="
                    f"{sanitize_headers(request.headers, (self._api_key_header,))}"
                )
            response = await run_cancellable(
                self._send_with_timeout(request), call.cancellation, stage="send"
            )
        except Exception as e:
            return self._retry_policy.outcome_for_exception(e)

        self._log.debug(f"Received HTTP {response.status_code} for {call.method.value}")
        return self._retry_policy.outcome_for_response(response)

    def _build_request(self, call: CallDescriptor, url: httpx.URL) -> httpx.Request:
        """Create a fresh request; nothing is shared between attempts."""
        headers = httpx.Headers(self._default_headers)
        headers["Accept"] = JSON_CONTENT_TYPE
        if call.extra_headers:
            for name, value in call.extra_headers.items():
                headers[name] = value

        content: Optional[bytes] = None
        if call.has_body:
            content = self._codec.serialize(call.payload)
            headers["Content-Type"] = self._codec.content_type

        apply_auth(headers, call.auth_token, call.auth_scheme, self._api_key_header)

        return self._http_client.build_request(
            call.method.value,
            url,
            headers=headers,
            content=content,
            timeout=self._timeout,
        )

    async def _send_with_timeout(self, request: httpx.Request) -> httpx.Response:
        # stream=True: headers only, the body is read later by the decoder
        try:
            return await asyncio.wait_for(
                self._http_client.send(request, stream=True), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise AttemptTimeoutError(self._timeout) from e

    async def _to_envelope(
        self,
        outcome: AttemptOutcome,
        strategy: DecodeStrategy,
        call: CallDescriptor,
    ) -> ApiResponse:
        if outcome.kind is OutcomeKind.CANCELLED:
            self._log.debug("Request cancelled by caller.")
            return ApiResponse.failure(CANCELLED_MESSAGE)

        response = outcome.response
        if response is None:
            error = outcome.error
            if isinstance(error, (AttemptTimeoutError, httpx.TimeoutException)):
                self._log.error(f"Request timeout: {error}")
                return ApiResponse.failure(f"{TIMEOUT_MESSAGE}: {_describe_error(error)}")
            self._log.error(f"Error during HTTP request: {error}", exc_info=error)
            return ApiResponse.failure(_describe_error(error))

        status = response.status_code
        if not response.is_success:
            # Error bodies are read in full
            await run_cancellable(response.aread(), call.cancellation, stage="error_body")
            self._log.debug(f"HTTP Error {status} for {call.method.value}")
            return ApiResponse.failure(
                f"HTTP Error {status}", status_code=status, error_data=response.text
            )

        data = await run_cancellable(
            strategy.decode(response, self._codec), call.cancellation, stage="decode"
        )
        return ApiResponse.ok(data, status_code=status)

    def _resolve_target(self, target: Target) -> httpx.URL:
        base = self._base_address
        if target is None:
            if base is None:
                raise MissingBaseAddressError()
            return base

        url = target if isinstance(target, httpx.URL) else httpx.URL(target)
        if url.is_absolute_url:
            return url
        if base is None:
            raise MissingBaseAddressError(str(target))
        if url.host:
            # Protocol-relative target: keep its host, take the base scheme
            return httpx.URL(f"{base.scheme}:{url}")

        # Base path acts as a directory; base and target queries are both kept
        base_path = base.raw_path.partition(b"?")[0]
        target_path, _, target_query = url.raw_path.partition(b"?")
        raw_path = base_path + target_path.lstrip(b"/")
        query = b"&".join(q for q in (base.query, target_query) if q)
        if query:
            raw_path += b"?" + query
        return base.copy_with(raw_path=raw_path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _ensure_open(self, operation: str) -> None:
        if self._released:
            raise ClientReleasedError(operation)

    async def release(self) -> None:
        """Release the client. The HTTP client is closed once, if owned."""
        if self._released:
            return
        self._released = True
        if self._owns_http_client:
            await self._http_client.aclose()
            self._log.debug("Closed owned HTTP client")

    async def aclose(self) -> None:
        await self.release()

    async def __aenter__(self) -> "ApiClient":
        self._ensure_open("__aenter__")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.release()


def _parse_method(method: Union[HttpMethod, str]) -> HttpMethod:
    if isinstance(method, HttpMethod):
        return method
    try:
        return HttpMethod(str(method).upper())
    except ValueError:
        raise ValidationError(
            f"Unsupported HTTP method '{method}'", field="method", value=method
        ) from None


def _parse_base_address(value: Optional[Union[str, httpx.URL]]) -> Optional[httpx.URL]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        url = value if isinstance(value, httpx.URL) else httpx.URL(value.strip())
    except httpx.InvalidURL as e:
        raise ValidationError(f"Invalid base address: {e}", field="base_address") from e
    if not url.is_absolute_url:
        raise ValidationError(
            "Base address must be an absolute URI", field="base_address", value=value
        )
    path = url.path if url.path.endswith("/") else url.path + "/"
    return url.copy_with(path=path)


def _parse_timeout(value: Timeout) -> float:
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    if seconds <= 0:
        raise ValidationError("Timeout must be strictly positive", field="timeout", value=value)
    return seconds


def _status_of(outcome: Optional[AttemptOutcome]) -> int:
    if outcome is not None and outcome.response is not None:
        return outcome.response.status_code
    return 0


def _describe_error(error: Optional[BaseException]) -> str:
    if error is None:
        return "Unknown error"
    return str(error) or type(error).__name__
