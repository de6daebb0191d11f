"""
Engine Errors

Only explicit misconfiguration raises. Insufficient data, stale input and
rejected entries are reported through diagnostics and decision blockers.
"""


class ConfigurationError(ValueError):
    """Invalid explicit configuration (cutoff, periods, windows, timeframes)."""
