"""
Core building blocks of the runtime.

- handler_resolver: Parses handler strings into descriptors
- error_translator: Turns exceptions into the host's error envelope
- self_logger: Tab-separated runtime log written to the log stream

These pieces have no knowledge of HTTP or of the invocation loop.
"""

from lambda_script_runtime.core.error_translator import ErrorRecord, translate
from lambda_script_runtime.core.handler_resolver import (
    HandlerDescriptor,
    HandlerKind,
    ResolutionError,
    resolve,
)
from lambda_script_runtime.core.self_logger import SelfLogger

__all__ = [
    "ErrorRecord",
    "translate",
    "HandlerDescriptor",
    "HandlerKind",
    "ResolutionError",
    "resolve",
    "SelfLogger",
]
