"""
Runtime execution engine.

This package handles serving invocations:
- control_plane: HTTP client for the host's Runtime API
- context: Context objects handed to handlers
- executor: Loads the handler once, runs it per invocation
- bootstrap: The poll / invoke / report loop

Modules are imported directly (lambda_script_runtime.runtime.bootstrap,
...); configuration depends on the context module, so this package
imports nothing on its own.
"""

__all__ = [
    "bootstrap",
    "context",
    "control_plane",
    "executor",
]
