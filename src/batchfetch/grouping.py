"""
Endpoint group derivation.

Requests whose endpoints map to the same group key may share one batch call.
The key is intentionally coarse: ``/api/users/1`` and ``/api/users/2/stats``
both land in ``/api/users``.
"""

import typing as t
from urllib.parse import urlsplit

from batchfetch.models import validate_endpoint

DEFAULT_GROUP_DEPTH = 2
DEFAULT_BATCH_ENDPOINT = "/api/batch"
DEFAULT_BATCHABLE_PREFIXES: tuple[str, ...] = ("/api/",)


def _path_segments(*, endpoint: str) -> list[str]:
    path = urlsplit(url=endpoint).path
    return [segment for segment in path.split("/") if segment]


def endpoint_group(endpoint: str, *, depth: int = DEFAULT_GROUP_DEPTH) -> str:
    """
    Compute the group key for an endpoint.

    Parameters
    ----------
    endpoint : str
        Resource path, optionally with a query string.
    depth : int, optional
        Number of leading path segments kept in the key.

    Returns
    -------
    str
        Group key such as ``/api/users``.
    """
    if depth < 1:
        raise ValueError(f"Group depth must be >= 1, got {depth}")
    validate_endpoint(endpoint)
    segments = _path_segments(endpoint=endpoint)
    return "/" + "/".join(segments[:depth])


def is_batchable(
    endpoint: str,
    *,
    prefixes: t.Iterable[str] = DEFAULT_BATCHABLE_PREFIXES,
    batch_endpoint: str = DEFAULT_BATCH_ENDPOINT,
) -> bool:
    """
    Check whether an endpoint should be routed through the coalescer.

    Parameters
    ----------
    endpoint : str
        Resource path.
    prefixes : typing.Iterable[str], optional
        Path prefixes eligible for batching.
    batch_endpoint : str, optional
        Aggregation endpoint, which is never itself batched.

    Returns
    -------
    bool
        ``True`` when the endpoint matches a batchable prefix.
    """
    if not endpoint or not endpoint.startswith("/"):
        return False
    path = urlsplit(url=endpoint).path
    if path.rstrip("/") == batch_endpoint.rstrip("/"):
        return False
    return any(path.startswith(prefix) for prefix in prefixes)
