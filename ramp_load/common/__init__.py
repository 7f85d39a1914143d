"""
Common utilities for ramp-load.
"""

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ramp_load.common.logger import get_logger, configure_logging, StructuredLogger
    from ramp_load.common.file_logger import setup_file_logger, close_file_logger
    from ramp_load.common.errors import ErrorCode, LoadTestError, ConfigurationError
    from ramp_load.common.telemetry import setup_telemetry, shutdown_telemetry, record_request, record_vu_change

_LAZY_IMPORTS = {
    "get_logger": ("ramp_load.common.logger", "get_logger"),
    "configure_logging": ("ramp_load.common.logger", "configure_logging"),
    "StructuredLogger": ("ramp_load.common.logger", "StructuredLogger"),
    "setup_file_logger": ("ramp_load.common.file_logger", "setup_file_logger"),
    "close_file_logger": ("ramp_load.common.file_logger", "close_file_logger"),
    "ErrorCode": ("ramp_load.common.errors", "ErrorCode"),
    "LoadTestError": ("ramp_load.common.errors", "LoadTestError"),
    "ConfigurationError": ("ramp_load.common.errors", "ConfigurationError"),
    "setup_telemetry": ("ramp_load.common.telemetry", "setup_telemetry"),
    "shutdown_telemetry": ("ramp_load.common.telemetry", "shutdown_telemetry"),
    "record_request": ("ramp_load.common.telemetry", "record_request"),
    "record_vu_change": ("ramp_load.common.telemetry", "record_vu_change"),
}


def __getattr__(name: str):
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_LAZY_IMPORTS.keys()))

__all__ = [
    "get_logger",
    "configure_logging",
    "StructuredLogger",
    "setup_file_logger",
    "close_file_logger",
    "ErrorCode",
    "LoadTestError",
    "ConfigurationError",
    "setup_telemetry",
    "shutdown_telemetry",
    "record_request",
    "record_vu_change",
]
