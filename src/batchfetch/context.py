"""
Session scope binding a coalescer to the current context.
"""

import asyncio
import contextvars
import typing as t
import warnings

if t.TYPE_CHECKING:
    from batchfetch.core import Coalescer

T = t.TypeVar(name="T")

# Coalescer of the current session; set by ``CoalescingSession`` and ``coalesce``
active_coalescer: contextvars.ContextVar["Coalescer | None"] = contextvars.ContextVar(
    "active_coalescer", default=None
)


class CoalescingSession(t.Generic[T]):
    """
    Context manager that activates a coalescer for its scope.

    Parameters
    ----------
    target : T | None
        Object yielded by the context manager.
    coalescer : Coalescer
        Coalescer bound for the scope of the context manager.
    """

    def __init__(self, target: T | None, coalescer: "Coalescer") -> None:
        self._target = target
        self._coalescer = coalescer
        self._token: contextvars.Token[t.Any] | None = None

    @property
    def coalescer(self) -> "Coalescer":
        return self._coalescer

    def _deactivate(self) -> None:
        if self._token is not None:
            active_coalescer.reset(self._token)
            self._token = None

    def __enter__(self) -> T | None:
        self._token = active_coalescer.set(self._coalescer)
        return self._target

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Reset the active coalescer and schedule its close on the running loop.
        """
        self._deactivate()
        try:
            loop = asyncio.get_running_loop()
            loop.create_task(self._coalescer.close())
        except RuntimeError:
            warnings.warn(
                message=(
                    "CoalescingSession used with sync context manager. "
                    "Use 'async with' for proper cleanup, or manually call await "
                    "coalescer.close()"
                ),
                category=UserWarning,
                stacklevel=2,
            )

    async def __aenter__(self) -> T | None:
        self._token = active_coalescer.set(self._coalescer)
        return self._target

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Reset the active coalescer and flush its pending requests.
        """
        self._deactivate()
        await self._coalescer.close()
