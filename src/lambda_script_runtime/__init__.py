"""
Lambda Script Runtime: a custom runtime for Python scripts and modules.

Bridges the Lambda Runtime API (the host's local HTTP control plane) to
user-supplied handler code.

Handlers are named by a single handler string (_HANDLER):
- script.py                      Script: the file body runs per invocation
- handler.py::handle             Function: a function defined in a file
- Module::package_name::handle   Module: a function exported by a module

The runtime:
- Polls the control plane for the next invocation
- Builds a context object from headers and environment
- Invokes the handler and captures everything it emits
- Reports the result (or a structured error) back over HTTP

Example:
    $ export _HANDLER=handler.py::handle
    $ lambda-script-runtime
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
