"""
Main entry points for users.

``coalesce`` binds a fresh coalescer to a function call or a ``with`` block;
``batch_fetch`` submits through whichever coalescer is currently bound.
"""

import functools
import inspect
import types
import typing as t

from batchfetch.context import CoalescingSession, active_coalescer
from batchfetch.core import Coalescer
from batchfetch.models import HttpMethod

P = t.ParamSpec(name="P")
R = t.TypeVar(name="R")
T = t.TypeVar(name="T")


@t.overload
def coalesce(target: t.Callable[P, R], **settings: t.Any) -> t.Callable[P, R]: ...


@t.overload
def coalesce(target: T, **settings: t.Any) -> CoalescingSession[T]: ...


@t.overload
def coalesce(target: None = None, **settings: t.Any) -> CoalescingSession[None]: ...


def coalesce(
    target: t.Callable[..., t.Any] | t.Any | None = None,
    **settings: t.Any,
) -> CoalescingSession[t.Any] | t.Callable[..., t.Any]:
    """
    Bind a new coalescer to a function or to a context manager scope.

    Parameters
    ----------
    target : typing.Callable[..., typing.Any] | typing.Any | None
        Function to wrap, or object yielded by the returned context manager.
    **settings : typing.Any
        Keyword arguments forwarded to ``Coalescer``.

    Returns
    -------
    CoalescingSession[typing.Any] | typing.Callable[..., typing.Any]
        Wrapped function when ``target`` is a function, otherwise a context
        manager yielding ``target``.

    Notes
    -----
    >>> async with coalesce(base_url="https://pickle.example") as _:
    ...     user, team = await asyncio.gather(
    ...         batch_fetch("/api/users/1"),
    ...         batch_fetch("/api/teams/5"),
    ...     )
    """
    coalescer = Coalescer(**settings)

    if target is not None and isinstance(target, types.MethodType) and target.__self__ is not None:
        raise TypeError(
            "coalesce should only be called on functions. "
            "Use a context manager for client methods instead."
        )

    if target is not None and callable(target) and not isinstance(target, type):
        if inspect.iscoroutinefunction(target):

            @functools.wraps(wrapped=target)
            async def decorated_function(*args: t.Any, **func_kwargs: t.Any) -> t.Any:
                token = active_coalescer.set(coalescer)
                try:
                    return await target(*args, **func_kwargs)
                finally:
                    active_coalescer.reset(token)
                    await coalescer.close()

        else:

            @functools.wraps(wrapped=target)
            def decorated_function(*args: t.Any, **func_kwargs: t.Any) -> t.Any:
                token = active_coalescer.set(coalescer)
                try:
                    return target(*args, **func_kwargs)
                finally:
                    active_coalescer.reset(token)

        return decorated_function

    return CoalescingSession(target=target, coalescer=coalescer)


async def batch_fetch(
    endpoint: str,
    method: HttpMethod | str = HttpMethod.GET,
    body: t.Any = None,
) -> t.Any:
    """
    Submit a request through the active coalescer.

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
        Response data for this request.
    """
    coalescer = active_coalescer.get()
    if coalescer is None:
        raise RuntimeError("No active coalescer; use 'coalesce()' to open a session")
    return await coalescer.submit(endpoint, method=method, body=body)
