from .api import batch_fetch as batch_fetch
from .api import coalesce as coalesce
from .config import CoalescerSettings as CoalescerSettings
from .context import CoalescingSession as CoalescingSession
from .core import Coalescer as Coalescer
from .exceptions import BatchfetchError as BatchfetchError
from .exceptions import HttpStatusError as HttpStatusError
from .exceptions import ItemError as ItemError
from .exceptions import OrphanedRequestError as OrphanedRequestError
from .exceptions import TransportError as TransportError
from .fetch import QueryFetcher as QueryFetcher
from .grouping import endpoint_group as endpoint_group
from .grouping import is_batchable as is_batchable
from .scheduling import DelayedAction as DelayedAction

__all__ = [
    "Coalescer",
    "CoalescerSettings",
    "CoalescingSession",
    "DelayedAction",
    "QueryFetcher",
    "batch_fetch",
    "coalesce",
    "endpoint_group",
    "is_batchable",
    "BatchfetchError",
    "HttpStatusError",
    "ItemError",
    "OrphanedRequestError",
    "TransportError",
]
