class AutomationEngineError(Exception):
    """Base class for failures surfaced by the automation engine."""


class AutomationNotFound(AutomationEngineError):
    pass


class InvalidFlow(AutomationEngineError):
    """Flow graph is missing, empty, malformed, or has no start node."""


class StoreUnavailable(AutomationEngineError):
    """The record store cannot be reached (e.g. Postgres pool in backoff)."""
