"""Exception types raised by liftlog_metrics.

Document-store failures are not wrapped: they propagate from the store
implementation unchanged.
"""


class LiftlogError(Exception):
    """Base class for errors raised by this package."""


class ConfigError(LiftlogError):
    """Required configuration is missing or invalid."""
