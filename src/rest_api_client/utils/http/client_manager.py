"""Shared HTTP connection pools.

Each :class:`~rest_api_client.utils.http_client.ApiClient` owns its own
``httpx.AsyncClient`` by default. When several clients should share
connections, hand them clients from one explicit :class:`TransportPool`
and close the pool once, after the clients are done. Clients obtained
from a pool are never closed by the ``ApiClient`` that uses them.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def create_timeout(
    connect: float = 5.0,
    read: float = 30.0,
    write: float = 10.0,
    pool: float = 5.0,
) -> httpx.Timeout:
    """Create a timeout configuration object.

    :param connect: Connection timeout in seconds
    :type connect: float
    :param read: Read timeout in seconds
    :type read: float
    :param write: Write timeout in seconds
    :type write: float
    :param pool: Pool timeout in seconds
    :type pool: float
    :return: Configured timeout object
    :rtype: httpx.Timeout
    """
    return httpx.Timeout(connect=connect, read=read, write=write, pool=pool)


def create_limits(
    max_keepalive_connections: int = 10,
    max_connections: int = 20,
    keepalive_expiry: float = 30.0,
) -> httpx.Limits:
    """Create a connection limits configuration object.

    :param max_keepalive_connections: Maximum number of keepalive connections
    :type max_keepalive_connections: int
    :param max_connections: Maximum total number of connections
    :type max_connections: int
    :param keepalive_expiry: Keepalive connection expiry time in seconds
    :type keepalive_expiry: float
    :return: Configured limits object
    :rtype: httpx.Limits
    """
    return httpx.Limits(
        max_keepalive_connections=max_keepalive_connections,
        max_connections=max_connections,
        keepalive_expiry=keepalive_expiry,
    )


def create_http_client(
    timeout: Optional[httpx.Timeout] = None,
    limits: Optional[httpx.Limits] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    http2: bool = False,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """Create the ``httpx.AsyncClient`` used as a request transport.

    Redirects are not followed so that 3xx statuses reach the caller.

    :param timeout: Optional custom timeout configuration
    :param limits: Optional custom connection limits
    :param transport: Optional low-level transport (e.g. for tests)
    :param http2: Enable HTTP/2 when the ``h2`` package is installed
    :return: Configured HTTP client
    """
    if http2:
        try:
            import h2  # type: ignore  # noqa: F401
        except ImportError:
            logger.warning(
                "HTTP/2 requested but 'h2' package not installed; falling back to HTTP/1.1"
            )
            http2 = False

    client_config: Dict[str, Any] = {
        "timeout": timeout or httpx.Timeout(DEFAULT_TIMEOUT),
        "limits": limits or create_limits(),
        "http2": http2,
        "follow_redirects": False,
        **kwargs,
    }
    if transport is not None:
        client_config["transport"] = transport
    return httpx.AsyncClient(**client_config)


class TransportPool:
    """Hands out shared HTTP clients keyed by their configuration.

    Clients with matching timeout, limits and HTTP version are reused.
    The pool, not the API clients using it, is responsible for closing
    them.
    """

    def __init__(
        self,
        timeout: Optional[httpx.Timeout] = None,
        limits: Optional[httpx.Limits] = None,
    ):
        self._clients: Dict[str, httpx.AsyncClient] = {}
        self._lock = asyncio.Lock()
        self._default_timeout = timeout or create_timeout()
        self._default_limits = limits or create_limits()
        self._closed = False

    def __len__(self) -> int:
        return len(self._clients)

    async def get_client(
        self,
        timeout: Optional[httpx.Timeout] = None,
        limits: Optional[httpx.Limits] = None,
        http2: bool = False,
    ) -> httpx.AsyncClient:
        """Get or create an HTTP client for the given configuration.

        :param timeout: Optional custom timeout configuration
        :type timeout: Optional[httpx.Timeout]
        :param limits: Optional custom connection limits
        :type limits: Optional[httpx.Limits]
        :param http2: Whether HTTP/2 should be negotiated
        :type http2: bool
        :return: Shared HTTP client instance
        :rtype: httpx.AsyncClient
        :raises RuntimeError: If the pool has been closed
        """
        if self._closed:
            raise RuntimeError("TransportPool is closed")

        timeout = timeout or self._default_timeout
        limits = limits or self._default_limits
        cache_key = str(
            (
                (timeout.connect, timeout.read, timeout.write, timeout.pool),
                (
                    limits.max_keepalive_connections,
                    limits.max_connections,
                    limits.keepalive_expiry,
                ),
                http2,
            )
        )

        if cache_key not in self._clients:
            async with self._lock:
                if cache_key not in self._clients:
                    self._clients[cache_key] = create_http_client(
                        timeout=timeout, limits=limits, http2=http2
                    )
                    logger.debug("Created pooled HTTP client for %s", cache_key)

        return self._clients[cache_key]

    async def close_all(self) -> None:
        """Close every pooled client. Further ``get_client`` calls fail."""
        if self._closed:
            logger.debug("Transport pool already closed")
            return
        self._closed = True

        if not self._clients:
            logger.debug("No pooled HTTP clients to close")
            return
        logger.info("Closing %d pooled HTTP client(s)...", len(self._clients))
        for cache_key, client in list(self._clients.items()):
            try:
                await client.aclose()
                logger.debug("Closed pooled HTTP client: %s", cache_key)
            except Exception as e:
                logger.warning("Error closing pooled HTTP client %s: %s", cache_key, e)
        self._clients.clear()

    async def __aenter__(self) -> "TransportPool":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close_all()
