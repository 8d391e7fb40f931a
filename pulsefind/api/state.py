"""Type-safe application state for Litestar."""

from __future__ import annotations

from litestar.datastructures import State

from ..config import Config
from ..matching.aggregator import MatchAggregator


class AppState(State):
    """Type-safe application state.

    Subclassing State allows proper type checking when injected into handlers.

    Note: Attributes are set directly on the State dict, not as class attributes.
    The aggregator is attached by the app lifespan once its HTTP client is open.
    """

    config: Config
    aggregator: MatchAggregator
