"""
monitor/exceptions.py

Errors that escape the engine. Per-unit failures (one patient, one
candidate, one provider) are logged and contained, never raised here.
"""


class EngineError(Exception):
    """Base class for monitoring engine errors."""


class EngineStartupError(EngineError):
    """The engine could not reach its store when starting."""


class AlertRuleError(EngineError):
    """The configured alert rule file is missing or invalid."""
