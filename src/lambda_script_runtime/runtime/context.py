"""
Context Builder

Builds the context object handed to handlers alongside the event.

Two kinds of fields:
- Process-wide: function name/version, memory limit, log group/stream.
  Read from the environment once at cold start (FunctionEnvironment).
- Per-invocation: request ID, function ARN, trace ID, identity, client
  context and the deadline, taken from the invocation's headers.

Remaining time is computed from the deadline on every read, never cached.
"""

import json
import os
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional

TRACE_ID_VAR = '_X_AMZN_TRACE_ID'


@dataclass(frozen=True)
class FunctionEnvironment:
    """Process-wide function settings, fixed for the life of the process."""
    function_name: str = ''
    function_version: str = ''
    memory_limit_in_mb: Optional[int] = None
    log_group_name: str = ''
    log_stream_name: str = ''

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> 'FunctionEnvironment':
        """Read the AWS_LAMBDA_* variables set by the host."""
        memory = environ.get('AWS_LAMBDA_FUNCTION_MEMORY_SIZE', '')
        return cls(
            function_name=environ.get('AWS_LAMBDA_FUNCTION_NAME', ''),
            function_version=environ.get('AWS_LAMBDA_FUNCTION_VERSION', ''),
            memory_limit_in_mb=int(memory) if memory.strip().isdigit() else None,
            log_group_name=environ.get('AWS_LAMBDA_LOG_GROUP_NAME', ''),
            log_stream_name=environ.get('AWS_LAMBDA_LOG_STREAM_NAME', ''),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'function_name': self.function_name,
            'function_version': self.function_version,
            'memory_limit_in_mb': self.memory_limit_in_mb,
            'log_group_name': self.log_group_name,
            'log_stream_name': self.log_stream_name,
        }


@dataclass(frozen=True)
class CognitoIdentity:
    """Identity of the caller, when invoked through the mobile SDK."""
    cognito_identity_id: Optional[str] = None
    cognito_identity_pool_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CognitoIdentity':
        return cls(
            cognito_identity_id=data.get('cognitoIdentityId'),
            cognito_identity_pool_id=data.get('cognitoIdentityPoolId'),
        )


@dataclass(frozen=True)
class ClientContext:
    """Client application details, when invoked through the mobile SDK."""
    client: Optional[Dict[str, Any]] = None
    custom: Optional[Dict[str, Any]] = None
    env: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClientContext':
        return cls(
            client=data.get('client'),
            custom=data.get('custom'),
            env=data.get('env'),
        )


@dataclass(frozen=True)
class LambdaContext:
    """
    Read-only context for one invocation.

    Attributes:
        aws_request_id: Request ID of this invocation
        invoked_function_arn: ARN used to invoke the function
        trace_id: X-Ray trace header (may be empty)
        deadline_ms: Deadline in epoch milliseconds
        identity: CognitoIdentity, or None when the caller sent none
        client_context: ClientContext, or None when the caller sent none
        environment: Process-wide function settings
    """
    aws_request_id: str
    invoked_function_arn: str
    deadline_ms: int
    environment: FunctionEnvironment
    trace_id: str = ''
    identity: Optional[CognitoIdentity] = None
    client_context: Optional[ClientContext] = None
    clock: Callable[[], float] = field(default=time.time, repr=False, compare=False)

    @property
    def function_name(self) -> str:
        return self.environment.function_name

    @property
    def function_version(self) -> str:
        return self.environment.function_version

    @property
    def memory_limit_in_mb(self) -> Optional[int]:
        return self.environment.memory_limit_in_mb

    @property
    def log_group_name(self) -> str:
        return self.environment.log_group_name

    @property
    def log_stream_name(self) -> str:
        return self.environment.log_stream_name

    @property
    def remaining_time(self) -> timedelta:
        """Time left before the deadline (never negative)"""
        return timedelta(milliseconds=self._remaining_ms())

    def get_remaining_time_in_millis(self) -> int:
        """Milliseconds left before the deadline (never negative)"""
        return int(self._remaining_ms())

    def _remaining_ms(self) -> float:
        return max(self.deadline_ms - self.clock() * 1000, 0)


def build_context(
    invocation,
    environment: FunctionEnvironment,
    clock: Callable[[], float] = time.time,
) -> LambdaContext:
    """
    Build the context for an invocation.

    Args:
        invocation: Invocation returned by the control plane
        environment: Process-wide settings read at cold start
        clock: Seconds since the epoch (time.time unless testing)

    Returns:
        LambdaContext
    """
    identity = parse_optional_json(invocation.cognito_identity)
    client_context = parse_optional_json(invocation.client_context)

    return LambdaContext(
        aws_request_id=invocation.request_id,
        invoked_function_arn=invocation.invoked_function_arn,
        deadline_ms=invocation.deadline_ms,
        environment=environment,
        trace_id=invocation.trace_id,
        identity=CognitoIdentity.from_dict(identity) if identity is not None else None,
        client_context=ClientContext.from_dict(client_context) if client_context is not None else None,
        clock=clock,
    )


def parse_optional_json(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parse an optional JSON object header.

    Absent, empty, 'null' or non-object values give None.
    """
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def apply_trace_id(invocation, environ: MutableMapping[str, str] = os.environ) -> None:
    """Expose the invocation's trace ID to tracing SDKs via _X_AMZN_TRACE_ID"""
    if invocation.trace_id:
        environ[TRACE_ID_VAR] = invocation.trace_id
    else:
        environ.pop(TRACE_ID_VAR, None)
