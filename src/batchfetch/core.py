"""
Core engine coalescing concurrent requests into batch calls.

Requests are partitioned by endpoint group. Each group owns a debounce window:
every new request pushes the flush back by the full window, and when the
window finally elapses every request pending for the group is sent as one
POST to the batch aggregation endpoint. The reply is demultiplexed back to
each caller by request id.
"""

from __future__ import annotations

import asyncio
import typing as t
import uuid
from dataclasses import dataclass, field

import httpx
import pydantic
import structlog

from batchfetch.exceptions import ItemError, OrphanedRequestError, TransportError
from batchfetch.grouping import DEFAULT_BATCH_ENDPOINT, DEFAULT_GROUP_DEPTH, endpoint_group
from batchfetch.models import (
    BatchEnvelope,
    BatchItem,
    BatchResponseEntry,
    HttpMethod,
    batch_response_adapter,
    encode_body,
    validate_endpoint,
)
from batchfetch.scheduling import DelayedAction

if t.TYPE_CHECKING:
    from batchfetch.config import CoalescerSettings

log = structlog.get_logger(__name__)

ClientFactory = t.Callable[[], httpx.AsyncClient]


@dataclass
class _PendingRequest:
    """A request waiting for its batch response."""

    id: str
    endpoint: str
    method: HttpMethod
    body: t.Any
    group: str
    future: asyncio.Future[t.Any]
    dispatched: bool = False

    def to_item(self) -> BatchItem:
        return BatchItem(id=self.id, endpoint=self.endpoint, method=self.method, body=self.body)


@dataclass
class _BatchWindow:
    """The debounce timer of one endpoint group."""

    action: DelayedAction
    opened_at: float
    request_count: int = field(default=1)


class Coalescer:
    """
    Collect requests per endpoint group and dispatch each group as one batch.

    Parameters
    ----------
    base_url : str, optional
        Base URL of the server hosting the batch endpoint.
    batch_endpoint : str, optional
        Path of the batch aggregation endpoint.
    debounce_seconds : float, optional
        Quiet period after the last request of a group before it is flushed.
    group_depth : int, optional
        Number of leading path segments forming the group key.
    max_wait_seconds : float | None, optional
        Upper bound on the time between a window's first request and its
        flush. ``None`` keeps pure debounce behavior.
    fail_missing_results : bool, optional
        Reject requests whose id is absent from the batch response. When
        ``False`` such requests stay pending.
    request_timeout_seconds : float, optional
        Timeout of the batch call when the default client factory is used.
    client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
        Factory for the HTTP client used to send batches.

    Notes
    -----
    All state is mutated on the event loop between suspension points, so no
    lock is held.
    """

    def __init__(
        self,
        *,
        base_url: str = "",
        batch_endpoint: str = DEFAULT_BATCH_ENDPOINT,
        debounce_seconds: float = 0.05,
        group_depth: int = DEFAULT_GROUP_DEPTH,
        max_wait_seconds: float | None = None,
        fail_missing_results: bool = True,
        request_timeout_seconds: float = 30.0,
        client_factory: ClientFactory | None = None,
    ):
        if debounce_seconds <= 0:
            raise ValueError(f"debounce_seconds must be > 0, got {debounce_seconds}")
        if group_depth < 1:
            raise ValueError(f"group_depth must be >= 1, got {group_depth}")
        if max_wait_seconds is not None and max_wait_seconds < debounce_seconds:
            raise ValueError("max_wait_seconds must be >= debounce_seconds")

        self._base_url = base_url
        self._batch_endpoint = validate_endpoint(batch_endpoint)
        self._debounce_seconds = debounce_seconds
        self._group_depth = group_depth
        self._max_wait_seconds = max_wait_seconds
        self._fail_missing_results = fail_missing_results
        self._client_factory: ClientFactory = client_factory or (
            lambda: httpx.AsyncClient(base_url=self._base_url, timeout=request_timeout_seconds)
        )

        self._pending: dict[str, _PendingRequest] = {}
        self._windows: dict[str, _BatchWindow] = {}
        self._inflight: set[asyncio.Task[t.Any]] = set()

        log.debug(
            event="Initialized Coalescer",
            base_url=base_url,
            batch_endpoint=batch_endpoint,
            debounce_seconds=debounce_seconds,
            group_depth=group_depth,
            max_wait_seconds=max_wait_seconds,
            fail_missing_results=fail_missing_results,
        )

    @classmethod
    def from_settings(
        cls,
        settings: CoalescerSettings,
        *,
        client_factory: ClientFactory | None = None,
    ) -> Coalescer:
        """
        Build a coalescer from validated settings.

        Parameters
        ----------
        settings : CoalescerSettings
            Coalescer configuration.
        client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
            Factory overriding the default HTTP client.

        Returns
        -------
        Coalescer
            Configured coalescer.
        """
        return cls(
            base_url=settings.base_url,
            batch_endpoint=settings.batch_endpoint,
            debounce_seconds=settings.debounce_seconds,
            group_depth=settings.group_depth,
            max_wait_seconds=settings.max_wait_seconds,
            fail_missing_results=settings.fail_missing_results,
            request_timeout_seconds=settings.request_timeout_seconds,
            client_factory=client_factory,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def batch_endpoint(self) -> str:
        """Path of the batch aggregation endpoint."""
        return self._batch_endpoint

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_seconds

    @property
    def pending_ids(self) -> frozenset[str]:
        """Ids of requests that have not been settled yet."""
        return frozenset(self._pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def scheduled_groups(self) -> frozenset[str]:
        """Groups with a window that has not fired yet."""
        return frozenset(group for group, window in self._windows.items() if window.action.pending)

    def batch_key(self, endpoint: str) -> str:
        """
        Compute the group key this coalescer uses for an endpoint.

        Parameters
        ----------
        endpoint : str
            Resource path.

        Returns
        -------
        str
            Group key.
        """
        return endpoint_group(endpoint, depth=self._group_depth)

    def enqueue(
        self,
        endpoint: str,
        method: HttpMethod | str = HttpMethod.GET,
        body: t.Any = None,
    ) -> asyncio.Future[t.Any]:
        """
        Queue a request and return the future settled by its batch.

        Parameters
        ----------
        endpoint : str
            Resource path of the request.
        method : HttpMethod | str, optional
            HTTP verb of the request.
        body : typing.Any, optional
            JSON-serializable payload.

        Returns
        -------
        asyncio.Future[typing.Any]
            Future resolved with the response data of this request.

        Raises
        ------
        ValueError
            The endpoint, method or body is invalid. Nothing is queued.
        """
        validate_endpoint(endpoint)
        try:
            http_method = HttpMethod(str(method).upper())
        except ValueError:
            raise ValueError(f"Unsupported HTTP method: {method!r}") from None
        payload = encode_body(body)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[t.Any] = loop.create_future()
        group = self.batch_key(endpoint)
        request = _PendingRequest(
            id=str(uuid.uuid4()),
            endpoint=endpoint,
            method=http_method,
            body=payload,
            group=group,
            future=future,
        )
        self._pending[request.id] = request
        log.debug(
            event="Queued request for batch",
            request_id=request.id,
            group=group,
            method=http_method.value,
            endpoint=endpoint,
        )
        self._schedule(group=group)
        return future

    async def submit(
        self,
        endpoint: str,
        method: HttpMethod | str = HttpMethod.GET,
        body: t.Any = None,
    ) -> t.Any:
        """
        Queue a request for batching and return its response data.

        Parameters
        ----------
        endpoint : str
            Resource path of the request.
        method : HttpMethod | str, optional
            HTTP verb of the request.
        body : typing.Any, optional
            JSON-serializable payload.

        Returns
        -------
        typing.Any
            The ``data`` of this request's batch response entry.

        Raises
        ------
        TransportError
            The batch call carrying this request failed.
        ItemError
            The server reported a failure for this request.
        """
        return await self.enqueue(endpoint, method=method, body=body)

    def _schedule(self, *, group: str) -> None:
        """
        Start the window of a group, or push back the one already running.

        Parameters
        ----------
        group : str
            Group key of the request just queued.
        """
        loop = asyncio.get_running_loop()
        window = self._windows.get(group)
        if window is not None and window.action.pending:
            delay = self._debounce_seconds
            if self._max_wait_seconds is not None:
                remaining = self._max_wait_seconds - (loop.time() - window.opened_at)
                delay = max(0.0, min(delay, remaining))
            window.request_count += 1
            window.action.reschedule(delay_seconds=delay)
            log.debug(
                event="Batch window reset",
                group=group,
                delay_seconds=delay,
                window_request_count=window.request_count,
            )
            return

        action = DelayedAction(
            delay_seconds=self._debounce_seconds,
            callback=lambda: self._flush(group=group),
            name=f"batch_window_{group}",
        )
        self._windows[group] = _BatchWindow(action=action, opened_at=loop.time())
        action.start()
        log.debug(
            event="Batch window started",
            group=group,
            debounce_seconds=self._debounce_seconds,
        )

    def _drain_group(self, *, group: str) -> list[_PendingRequest]:
        """
        Take every undispatched request of a group and mark it dispatched.

        Parameters
        ----------
        group : str
            Group key to drain.

        Returns
        -------
        list[_PendingRequest]
            Drained requests in submission order.
        """
        window = self._windows.get(group)
        if window is not None and not window.action.pending:
            self._windows.pop(group, None)

        requests = [
            request
            for request in self._pending.values()
            if request.group == group and not request.dispatched
        ]
        for request in requests:
            request.dispatched = True
        log.debug(event="Drained group", group=group, drained_count=len(requests))
        return requests

    async def _flush(self, *, group: str) -> None:
        """
        Send all pending requests of a group as one batch and settle them.

        Parameters
        ----------
        group : str
            Group key to flush.
        """
        requests = self._drain_group(group=group)
        if not requests:
            log.debug(event="Batch window elapsed with empty group", group=group)
            return

        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)
        try:
            await self._dispatch(group=group, requests=requests)
        except Exception as error:
            log.error(
                event="Batch flush error",
                group=group,
                request_count=len(requests),
                error=str(object=error),
            )
            for request in requests:
                self._reject(request=request, error=error)
            raise
        finally:
            if task is not None:
                self._inflight.discard(task)

    async def _dispatch(self, *, group: str, requests: list[_PendingRequest]) -> None:
        envelope = BatchEnvelope(requests=[request.to_item() for request in requests])
        request_ids = [request.id for request in requests]
        log.info(
            event="Submitting batch",
            group=group,
            request_count=len(requests),
            batch_endpoint=self._batch_endpoint,
        )
        try:
            entries = await self._send(envelope=envelope, request_ids=request_ids)
        except TransportError as error:
            log.error(
                event="Batch transport failed",
                group=group,
                request_count=len(requests),
                status_code=error.status_code,
                error=str(object=error),
            )
            for request in requests:
                self._reject(request=request, error=error)
            return

        seen = self._apply_batch_results(group=group, requests=requests, entries=entries)
        log.info(
            event="Batch completed",
            group=group,
            resolved_count=len(seen & set(request_ids)),
            request_count=len(requests),
        )
        self._handle_missing_results(group=group, requests=requests, seen=seen)

    async def _send(
        self,
        *,
        envelope: BatchEnvelope,
        request_ids: list[str],
    ) -> list[BatchResponseEntry]:
        """
        Post a batch envelope and decode the response entries.

        Parameters
        ----------
        envelope : BatchEnvelope
            Outbound batch payload.
        request_ids : list[str]
            Ids carried by the envelope, attached to transport errors.

        Returns
        -------
        list[BatchResponseEntry]
            Decoded response entries.
        """
        try:
            async with self._client_factory() as client:
                try:
                    request = client.build_request(
                        method="POST",
                        url=self._batch_endpoint,
                        json=envelope.to_wire(),
                    )
                except (TypeError, ValueError) as error:
                    raise TransportError(
                        f"Batch request could not be encoded: {error}",
                        request_ids=request_ids,
                    ) from error
                response = await client.send(request)
        except httpx.HTTPError as error:
            raise TransportError(
                f"Batch request failed: {error}",
                request_ids=request_ids,
            ) from error

        if not response.is_success:
            raise TransportError(
                f"Batch request failed with status {response.status_code}",
                status_code=response.status_code,
                request_ids=request_ids,
            )
        try:
            return batch_response_adapter.validate_json(response.content)
        except pydantic.ValidationError as error:
            raise TransportError(
                "Malformed batch response",
                status_code=response.status_code,
                request_ids=request_ids,
            ) from error

    def _apply_batch_results(
        self,
        *,
        group: str,
        requests: list[_PendingRequest],
        entries: list[BatchResponseEntry],
    ) -> set[str]:
        """
        Settle the futures of a flushed batch from its response entries.

        Parameters
        ----------
        group : str
            Group key of the flushed batch.
        requests : list[_PendingRequest]
            Requests carried by the batch.
        entries : list[BatchResponseEntry]
            Decoded response entries.

        Returns
        -------
        set[str]
            Ids present in the response.
        """
        # only ids sent in this batch may settle a future
        flushed = {request.id: request for request in requests}
        seen: set[str] = set()
        for entry in entries:
            seen.add(entry.id)
            request = flushed.get(entry.id)
            if request is None:
                log.debug(event="Batch result for unknown request", group=group, request_id=entry.id)
                continue
            if entry.ok:
                self._resolve(request=request, data=entry.data)
                continue
            log.warning(
                event="Batch item failed",
                group=group,
                request_id=entry.id,
                endpoint=request.endpoint,
                status=entry.status,
            )
            self._reject(
                request=request,
                error=ItemError(
                    entry.error or f"Request failed with status {entry.status}",
                    request_id=entry.id,
                    status_code=entry.status,
                    endpoint=request.endpoint,
                ),
            )
        return seen

    def _handle_missing_results(
        self,
        *,
        group: str,
        requests: list[_PendingRequest],
        seen: set[str],
    ) -> None:
        """
        Deal with flushed requests that did not appear in the response.

        Parameters
        ----------
        group : str
            Group key of the flushed batch.
        requests : list[_PendingRequest]
            Requests carried by the batch.
        seen : set[str]
            Ids present in the response.
        """
        missing = [request for request in requests if request.id not in seen]
        if not missing:
            return
        log.error(
            event="Missing batch results",
            group=group,
            missing_count=len(missing),
            fail_missing_results=self._fail_missing_results,
        )
        if not self._fail_missing_results:
            return
        for request in missing:
            self._reject(
                request=request,
                error=OrphanedRequestError(
                    f"No result returned for request {request.id} ({request.endpoint})",
                    request_id=request.id,
                ),
            )

    def _resolve(self, *, request: _PendingRequest, data: t.Any) -> None:
        self._pending.pop(request.id, None)
        if not request.future.done():
            request.future.set_result(data)

    def _reject(self, *, request: _PendingRequest, error: BaseException) -> None:
        self._pending.pop(request.id, None)
        if not request.future.done():
            request.future.set_exception(error)

    async def flush_all(self) -> None:
        """
        Flush every scheduled group now instead of waiting for its window.
        """
        groups = [group for group, window in self._windows.items() if window.action.cancel()]
        for group in groups:
            self._windows.pop(group, None)
        if groups:
            log.info(event="Flushing scheduled groups", group_count=len(groups))
            await asyncio.gather(*(self._flush(group=group) for group in groups))

    async def close(self) -> None:
        """
        Flush every scheduled group and wait for in-flight batches.

        Notes
        -----
        Requests left unsettled afterwards are orphans kept by
        ``fail_missing_results=False``.
        """
        await self.flush_all()

        current = asyncio.current_task()
        inflight = [task for task in self._inflight if task is not current]
        if inflight:
            log.debug(event="Waiting for in-flight batches", batch_count=len(inflight))
            results = await asyncio.gather(*inflight, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    log.debug(event="In-flight batch ended with error", error=str(object=result))

        if self._pending:
            log.warning(
                event="Requests left unsettled on close",
                pending_count=len(self._pending),
            )
        log.debug(event="Coalescer closed")
