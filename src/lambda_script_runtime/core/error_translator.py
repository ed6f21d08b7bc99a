"""
Error Translator

Converts exceptions into the host's error envelope:

    {"errorMessage": "...", "errorType": "...", "stackTrace": ["...", ...]}

- errorType is the exception's class name (NameError, TypeError, ...)
- errorMessage is str(exc), untouched
- stackTrace lists frames outermost first, without the runtime's own frames
"""

import json
import os
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from lambda_script_runtime.core.handler_resolver import HandlerLoadError

# Frames from files under this directory belong to the runtime, not the handler
_RUNTIME_DIR = str(Path(__file__).resolve().parent.parent) + os.sep


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error reported to the control plane."""
    error_type: str
    error_message: str
    stack_trace: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the control plane's JSON shape."""
        return {
            "errorMessage": self.error_message,
            "errorType": self.error_type,
            "stackTrace": list(self.stack_trace),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def translate(exc: BaseException) -> ErrorRecord:
    """
    Translate an exception into an ErrorRecord.

    Load errors raised while initializing a handler are unwrapped, so the
    record names the failure in the handler's code (SyntaxError,
    ImportError, ...) rather than the runtime's wrapper.
    """
    exc = _unwrap(exc)

    error_type = type(exc).__name__
    error_message = str(exc) or error_type

    return ErrorRecord(
        error_type=error_type,
        error_message=error_message,
        stack_trace=format_stack_trace(exc),
    )


def format_stack_trace(exc: BaseException) -> List[str]:
    """
    Format an exception's traceback, outermost frame first.

    Returns an empty list when the exception carries no traceback.
    """
    frames = [
        frame for frame in traceback.extract_tb(exc.__traceback__)
        if not _is_runtime_frame(frame.filename)
    ]

    lines = [entry.rstrip('\n') for entry in traceback.format_list(frames)]

    # Syntax errors happen before any frame exists; point at the source line
    if isinstance(exc, SyntaxError) and exc.filename:
        lines.append(f'  File "{exc.filename}", line {exc.lineno}')

    return lines


def _unwrap(exc: BaseException) -> BaseException:
    """Helper: follow HandlerLoadError to the exception that caused it"""
    while isinstance(exc, HandlerLoadError) and exc.__cause__ is not None:
        exc = exc.__cause__
    return exc


def _is_runtime_frame(filename: str) -> bool:
    """Helper: whether a frame comes from the runtime package or the import machinery"""
    if filename.startswith('<frozen'):
        return True
    try:
        return str(Path(filename).resolve()).startswith(_RUNTIME_DIR)
    except (OSError, ValueError):
        return False
