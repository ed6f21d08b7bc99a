"""
Test fixtures for the runtime

This package contains fixtures used for testing:
- Handler files (handlers/): scripts and file functions
- Handler modules (modules/): found through the module search path
- Helpers to build invocations and contexts
"""

import json
import time
from pathlib import Path

# Path to fixtures directory
FIXTURES_DIR = Path(__file__).parent
HANDLERS_DIR = FIXTURES_DIR / 'handlers'
MODULES_DIR = FIXTURES_DIR / 'modules'

FUNCTION_ARN = 'arn:aws:lambda:us-east-1:123456789012:function:demo'

FUNCTION_ENVIRON = {
    'AWS_LAMBDA_FUNCTION_NAME': 'demo',
    'AWS_LAMBDA_FUNCTION_VERSION': '$LATEST',
    'AWS_LAMBDA_FUNCTION_MEMORY_SIZE': '512',
    'AWS_LAMBDA_LOG_GROUP_NAME': '/aws/lambda/demo',
    'AWS_LAMBDA_LOG_STREAM_NAME': '2024/05/01/[$LATEST]abcdef',
}


def make_invocation(request_id='req-1', event=None, timeout_ms=30000, **kwargs):
    """Build an Invocation as the control plane would return it"""
    from lambda_script_runtime.runtime.control_plane import Invocation

    body = kwargs.pop('body', None)
    if body is None:
        body = json.dumps(event if event is not None else {}).encode('utf-8')

    return Invocation(
        request_id=request_id,
        deadline_ms=kwargs.pop('deadline_ms', int(time.time() * 1000) + timeout_ms),
        invoked_function_arn=kwargs.pop('invoked_function_arn', FUNCTION_ARN),
        trace_id=kwargs.pop('trace_id', 'Root=1-5759e988-bd862e3fe1be46a994272793'),
        body=body,
        **kwargs,
    )


def make_context(request_id='req-1', **kwargs):
    """Build a LambdaContext for a fresh invocation"""
    from lambda_script_runtime.runtime.context import FunctionEnvironment, build_context

    environment = FunctionEnvironment.from_environ(FUNCTION_ENVIRON)
    return build_context(make_invocation(request_id=request_id, **kwargs), environment)


def forget_modules(*names):
    """Drop handler modules imported by a test so the next test imports them fresh"""
    import sys

    for name in list(sys.modules):
        if name in names or name.split('.')[0] in names:
            del sys.modules[name]
