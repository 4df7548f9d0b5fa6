from __future__ import annotations

import ssl
from typing import Any, List, Optional, Union

import httpx

from loyaltynet.errors import InvalidParameterError, NetworkError
from loyaltynet.utils.logging import get_logger

logger = get_logger(__name__)


def _tls_verify(trusted_roots: Optional[Union[str, List[str]]], verify: bool) -> Union[bool, ssl.SSLContext]:
    """Builds the httpx ``verify`` argument from profile TLS settings."""
    if not verify:
        return False
    if not trusted_roots:
        return True
    if isinstance(trusted_roots, list):
        trusted_roots = "\n".join(trusted_roots)
    return ssl.create_default_context(cadata=trusted_roots)


class BaseClient:
    """Common functionality for the CA and gateway clients: one async HTTP client and error mapping."""

    def __init__(
        self,
        *,
        base_url: str,
        trusted_roots: Optional[Union[str, List[str]]] = None,
        verify: bool = True,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the BaseClient.

        Args:
            base_url: Root URL of the remote service.
            trusted_roots: PEM TLS root certificate(s) to trust, from the
                connection profile's ``tlsCACerts``.
            verify: Whether to verify the server certificate at all.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, e.g. a MockTransport.

        Raises:
            InvalidParameterError: If base_url is empty.
        """
        if not base_url:
            raise InvalidParameterError("base_url must be provided")

        self._base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            verify=_tls_verify(trusted_roots, verify),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _post(self, path: str, *, content: bytes, headers: Optional[dict] = None, **kwargs: Any) -> httpx.Response:
        """
        POST a request body and return the response, whatever its status.

        Raises:
            NetworkError: The service could not be reached or timed out.
        """
        try:
            return await self._http.post(path, content=content, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {self._base_url}{path} timed out") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {self._base_url}{path} failed: {e}") from e

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
