"""
Logging and instrumentation helpers.
"""

from .instrumentation import (
    Instrumentation,
    NullInstrumentation,
    OperationRecord,
    OperationTimer,
    measure,
)
from .log_config import configure_logging

__all__ = [
    "Instrumentation",
    "NullInstrumentation",
    "OperationRecord",
    "OperationTimer",
    "measure",
    "configure_logging",
]
