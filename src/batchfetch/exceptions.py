"""
Batchfetch-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t


class BatchfetchError(Exception):
    """
    Base class for errors surfaced to callers of the coalescer.
    """


class TransportError(BatchfetchError):
    """
    The aggregate batch call itself failed.

    Every request that was part of the failed flush is rejected with the same
    instance.

    Parameters
    ----------
    message : str
        Human readable failure summary.
    status_code : int | None, optional
        Envelope-level HTTP status, when a response was received.
    request_ids : typing.Iterable[str], optional
        Ids of the requests carried by the failed flush.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        request_ids: t.Iterable[str] = (),
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.request_ids = tuple(request_ids)


class ItemError(BatchfetchError):
    """
    The batch succeeded but the server reported a failure for one item.

    Parameters
    ----------
    message : str
        Server-supplied error message, or a generic fallback.
    request_id : str
        Id of the failed request.
    status_code : int
        Per-item status reported by the server.
    endpoint : str | None, optional
        Endpoint of the failed request.
    """

    def __init__(
        self,
        message: str,
        *,
        request_id: str,
        status_code: int,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.status_code = status_code
        self.endpoint = endpoint


class OrphanedRequestError(BatchfetchError):
    """
    A flushed request id never appeared in the batch response.
    """

    def __init__(self, message: str, *, request_id: str) -> None:
        super().__init__(message)
        self.request_id = request_id


class HttpStatusError(BatchfetchError):
    """
    A direct (non-batched) request returned a non-success status.
    """

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code
