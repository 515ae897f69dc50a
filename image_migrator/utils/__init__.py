"""
Utility helpers used by the migration tool.

This subpackage exposes convenience functions for structured logging, the
old → new URL map, the execution budget and credential checks.
"""

from .deadline import Deadline
from .errors import ERRORS, report_error, report_ok
from .pre_flight_checks import ConfigurationError, run_pre_flight_checks
from .url_map import append_url_map_csv

__all__ = [
    "Deadline",
    "ERRORS",
    "report_error",
    "report_ok",
    "ConfigurationError",
    "run_pre_flight_checks",
    "append_url_map_csv",
]
