"""
Default fetch function for a query/caching layer.

Requests under a batchable prefix are delegated to the coalescer. Every other
request goes straight to the server through an httpx client that keeps the
session cookies.
"""

from __future__ import annotations

import typing as t

import httpx
import structlog

from batchfetch.core import ClientFactory, Coalescer
from batchfetch.exceptions import HttpStatusError
from batchfetch.grouping import DEFAULT_BATCHABLE_PREFIXES, is_batchable
from batchfetch.models import HttpMethod, validate_endpoint

if t.TYPE_CHECKING:
    from batchfetch.config import CoalescerSettings

log = structlog.get_logger(__name__)

UnauthorizedBehavior = t.Literal["throw", "return_null"]


def raise_for_status_text(response: httpx.Response) -> None:
    """
    Raise when a direct response is not successful.

    Parameters
    ----------
    response : httpx.Response
        Response to check.

    Raises
    ------
    HttpStatusError
        With message ``"<status>: <body text or reason>"``.
    """
    if response.is_success:
        return
    text = response.text or response.reason_phrase
    raise HttpStatusError(f"{response.status_code}: {text}", status_code=response.status_code)


def _decode_json(*, response: httpx.Response) -> t.Any:
    if not response.content:
        return None
    return response.json()


class QueryFetcher:
    """
    Route fetches either through the coalescer or directly to the server.

    Parameters
    ----------
    coalescer : Coalescer
        Coalescer receiving batchable requests.
    base_url : str, optional
        Base URL used for direct requests.
    batchable_prefixes : tuple[str, ...], optional
        Endpoint prefixes routed through the coalescer.
    batch_endpoint : str | None, optional
        Aggregation endpoint path, never routed through the coalescer.
        Defaults to the coalescer's batch endpoint.
    on_unauthorized : {"throw", "return_null"}, optional
        Behavior of direct fetches answered with 401.
    client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
        Factory for the direct HTTP client.
    """

    def __init__(
        self,
        coalescer: Coalescer,
        *,
        base_url: str = "",
        batchable_prefixes: tuple[str, ...] = DEFAULT_BATCHABLE_PREFIXES,
        batch_endpoint: str | None = None,
        on_unauthorized: UnauthorizedBehavior = "throw",
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._coalescer = coalescer
        self._batchable_prefixes = batchable_prefixes
        self._batch_endpoint = batch_endpoint or coalescer.batch_endpoint
        self._on_unauthorized = on_unauthorized
        self._client_factory: ClientFactory = client_factory or (
            lambda: httpx.AsyncClient(base_url=base_url)
        )
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: CoalescerSettings,
        coalescer: Coalescer,
        *,
        on_unauthorized: UnauthorizedBehavior = "throw",
        client_factory: ClientFactory | None = None,
    ) -> QueryFetcher:
        """
        Build a fetcher routing requests the way the settings describe.

        Parameters
        ----------
        settings : CoalescerSettings
            Configuration the coalescer was built from.
        coalescer : Coalescer
            Coalescer receiving batchable requests.
        on_unauthorized : {"throw", "return_null"}, optional
            Behavior of direct fetches answered with 401.
        client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
            Factory for the direct HTTP client.

        Returns
        -------
        QueryFetcher
            Configured fetcher.
        """
        return cls(
            coalescer,
            base_url=settings.base_url,
            batchable_prefixes=settings.batchable_prefixes,
            batch_endpoint=settings.batch_endpoint,
            on_unauthorized=on_unauthorized,
            client_factory=client_factory,
        )

    def _get_client(self) -> httpx.AsyncClient:
        # one client per fetcher so cookies set by the server are sent back
        if self._client is None or self._client.is_closed:
            self._client = self._client_factory()
        return self._client

    def routes_to_batch(self, endpoint: str) -> bool:
        return is_batchable(
            endpoint,
            prefixes=self._batchable_prefixes,
            batch_endpoint=self._batch_endpoint,
        )

    async def fetch(
        self,
        endpoint: str,
        method: HttpMethod | str = HttpMethod.GET,
        body: t.Any = None,
    ) -> t.Any:
        """
        Fetch an endpoint and return its decoded JSON data.

        Parameters
        ----------
        endpoint : str
            Resource path.
        method : HttpMethod | str, optional
            HTTP verb.
        body : typing.Any, optional
            JSON-serializable payload.

        Returns
        -------
        typing.Any
            Decoded response data.
        """
        validate_endpoint(endpoint)
        if self.routes_to_batch(endpoint):
            log.debug(event="Fetch routed to coalescer", endpoint=endpoint, method=str(method))
            return await self._coalescer.submit(endpoint, method=method, body=body)

        log.debug(event="Fetch sent directly", endpoint=endpoint, method=str(method))
        client = self._get_client()
        response = await client.request(
            method=str(method).upper(),
            url=endpoint,
            json=body,
        )
        if self._on_unauthorized == "return_null" and response.status_code == 401:
            return None
        raise_for_status_text(response)
        return _decode_json(response=response)

    async def query_fn(self, query_key: t.Sequence[t.Any]) -> t.Any:
        """
        Fetch the endpoint named by the first element of a query key.

        Parameters
        ----------
        query_key : typing.Sequence[typing.Any]
            Query key whose first element is the endpoint.

        Returns
        -------
        typing.Any
            Decoded response data.
        """
        if isinstance(query_key, str) or not query_key:
            raise ValueError("Query key must be a non-empty sequence starting with an endpoint")
        return await self.fetch(str(query_key[0]))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
