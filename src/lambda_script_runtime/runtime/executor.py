"""
Invocation Executor

Loads the handler once per process and runs it once per invocation.

Handler kinds:
- SCRIPT: the file is compiled at initialization; its body runs again on
  every invocation, in a fresh namespace with `event` and `context` bound
- FUNCTION: the file is loaded once (its top level runs once) and the named
  function is called with (event, context)
- MODULE: the module is imported once and its exported function is called
  with (event, context)

Output capture:
Everything the handler emits during the call becomes the payload, in
emission order, not just a final return value.
- Script expression statements emit their value (outside def/class bodies)
- Generator handlers emit every yielded value, then their return value
- Plain functions emit their return value
- emit(*values) is available to all handlers
None is never emitted; print() goes to the log stream, not the payload.

Failures inside a call never escape invoke(): they come back as a failed
ExecutionResult and any partial output is dropped.
"""

import ast
import builtins
import inspect
import json
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from types import CodeType
from typing import Any, List, Optional, Sequence

from lambda_script_runtime.core.error_translator import ErrorRecord, translate
from lambda_script_runtime.core.handler_resolver import (
    HandlerDescriptor,
    HandlerKind,
    HandlerLoadError,
    get_handler_function,
    import_handler_module,
    load_handler_file,
    prepend_sys_path,
)
from lambda_script_runtime.core.self_logger import SelfLogger

EMIT_NAME = 'emit'

# Name the rewritten script expression statements call
_EMIT_HOOK = '__lambda_emit__'


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one invocation: a payload or an error, never both."""
    payload: Optional[bytes] = None
    error: Optional[ErrorRecord] = None

    def __post_init__(self):
        if (self.payload is None) == (self.error is None):
            raise ValueError("ExecutionResult needs exactly one of payload or error")

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, payload: bytes) -> 'ExecutionResult':
        return cls(payload=payload)

    @classmethod
    def failure(cls, error: ErrorRecord) -> 'ExecutionResult':
        return cls(error=error)


class Pipeline:
    """Ordered collection of the values a handler emits during one call."""

    def __init__(self):
        self._values: List[Any] = []

    def emit(self, *values: Any) -> None:
        for value in values:
            if value is not None:
                self._values.append(value)

    def collect(self, result: Any) -> None:
        """Emit a handler's result, draining it first if it is a generator"""
        if not inspect.isgenerator(result):
            self.emit(result)
            return

        while True:
            try:
                self.emit(next(result))
            except StopIteration as stop:
                self.emit(stop.value)
                return

    @property
    def values(self) -> List[Any]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)


def serialize_output(values: Sequence[Any]) -> bytes:
    """
    Serialize emitted values into the response body.

    - no values: empty body
    - one str: the text itself; one bytes: as-is
    - one other value: its JSON
    - several values: a JSON array, in emission order

    Raises:
        TypeError: If a value can't be represented as JSON
        ValueError: If a float is NaN or infinite
    """
    if not values:
        return b''

    if len(values) == 1:
        value = values[0]
        if isinstance(value, str):
            return value.encode('utf-8')
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        return json.dumps(value, default=_json_default, allow_nan=False).encode('utf-8')

    return json.dumps(list(values), default=_json_default, allow_nan=False).encode('utf-8')


def _json_default(value: Any) -> Any:
    """Helper: JSON form of values json doesn't know"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise TypeError(f"Decimal {value} is not JSON serializable")
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class _EmitExpressionStatements(ast.NodeTransformer):
    """Rewrite `expr` statements into `__lambda_emit__(expr)` outside def/class bodies"""

    def visit_FunctionDef(self, node):
        return node

    visit_AsyncFunctionDef = visit_FunctionDef
    visit_ClassDef = visit_FunctionDef

    def visit_Expr(self, node):
        call = ast.Call(
            func=ast.Name(id=_EMIT_HOOK, ctx=ast.Load()),
            args=[node.value],
            keywords=[],
        )
        return ast.copy_location(ast.Expr(value=call), node)


def compile_script(path: str | Path) -> CodeType:
    """
    Compile a script handler so its expression statements emit.

    The module docstring is left alone.

    Raises:
        HandlerLoadError: If the file can't be read or compiled
    """
    path = Path(path)

    try:
        source = path.read_text(encoding='utf-8')
        tree = ast.parse(source, filename=str(path))
    except (OSError, UnicodeDecodeError, SyntaxError, ValueError) as e:
        raise HandlerLoadError(f"Failed to compile script {path}: {type(e).__name__}: {e}") from e

    body = tree.body
    head: List[ast.stmt] = []
    if body and isinstance(body[0], ast.Expr) and isinstance(body[0].value, ast.Constant) \
            and isinstance(body[0].value.value, str):
        head, body = body[:1], body[1:]

    transformer = _EmitExpressionStatements()
    tree.body = head + [transformer.visit(stmt) for stmt in body]
    ast.fix_missing_locations(tree)

    return compile(tree, str(path), 'exec')


class InvocationExecutor:
    """
    Runs one resolved handler.

    initialize() once, then invoke() per event.
    """

    def __init__(
        self,
        descriptor: HandlerDescriptor,
        module_paths: Sequence[str | Path] = (),
        logger: Optional[SelfLogger] = None,
    ):
        """
        Initialize executor.

        Args:
            descriptor: Resolved handler
            module_paths: Directories searched first for MODULE handlers
            logger: Runtime logger
        """
        self.descriptor = descriptor
        self.module_paths = list(module_paths)
        self.logger = logger or SelfLogger(component='executor')

        self._initialized = False
        self._script: Optional[CodeType] = None
        self._function = None
        self._pipeline: Optional[Pipeline] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """
        Load the handler. Called once, before the first invocation.

        Raises:
            ResolutionError: If the handler function can't be found
            HandlerLoadError: If the handler code fails to load
            RuntimeError: If called a second time
        """
        if self._initialized:
            raise RuntimeError("Executor is already initialized")

        descriptor = self.descriptor
        started = time.monotonic()

        # Sibling modules of a handler file are importable from it
        if descriptor.kind in (HandlerKind.SCRIPT, HandlerKind.FUNCTION):
            prepend_sys_path([descriptor.path.parent])

        if descriptor.kind == HandlerKind.SCRIPT:
            self._script = compile_script(descriptor.target)

        elif descriptor.kind == HandlerKind.FUNCTION:
            module = load_handler_file(descriptor.target, inject={EMIT_NAME: self._emit})
            self._function = get_handler_function(module, descriptor)

        elif descriptor.kind == HandlerKind.MODULE:
            module = import_handler_module(descriptor.target, self.module_paths)
            self._function = get_handler_function(module, descriptor)

            # Inject emit helper unless the module has its own
            if not hasattr(module, EMIT_NAME):
                setattr(module, EMIT_NAME, self._emit)

        else:
            raise ValueError(f"Unknown handler kind: {descriptor.kind}")

        self._initialized = True

        self.logger.debug(
            'Handler initialized',
            kind=descriptor.kind.value,
            target=descriptor.target,
            function=descriptor.function_name,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )

    def invoke(self, event: Any, context: Any) -> ExecutionResult:
        """
        Run the handler for one event.

        Args:
            event: Decoded event
            context: LambdaContext for this invocation

        Returns:
            ExecutionResult with the serialized output, or the error
        """
        if not self._initialized:
            raise RuntimeError("Executor is not initialized")

        request_id = getattr(context, 'aws_request_id', None)
        started = time.monotonic()

        self.logger.debug(
            f'Invoking {self.descriptor.kind.value} handler',
            request_id=request_id,
            handler=self.descriptor.spec,
        )

        pipeline = Pipeline()
        self._pipeline = pipeline

        try:
            if self.descriptor.kind == HandlerKind.SCRIPT:
                self._run_script(event, context, pipeline)
            else:
                pipeline.collect(self._function(event, context))

            payload = serialize_output(pipeline.values)

        except (Exception, SystemExit) as e:
            error = translate(e)

            self.logger.error(
                f'Invocation failed: {error.error_type}: {error.error_message}',
                request_id=request_id,
                status='error',
            )

            return ExecutionResult.failure(error)

        finally:
            self._pipeline = None

        self.logger.debug(
            'Invocation completed successfully',
            request_id=request_id,
            status='success',
            emitted=len(pipeline),
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )

        return ExecutionResult.success(payload)

    def _run_script(self, event: Any, context: Any, pipeline: Pipeline) -> None:
        """Execute the compiled script body in a fresh namespace"""
        namespace = {
            '__name__': '__main__',
            '__file__': self.descriptor.target,
            '__builtins__': builtins,
            'event': event,
            'context': context,
            EMIT_NAME: pipeline.emit,
            _EMIT_HOOK: pipeline.emit,
        }
        exec(self._script, namespace)

    def _emit(self, *values: Any) -> None:
        """emit() as seen by FUNCTION and MODULE handlers"""
        if self._pipeline is None:
            raise RuntimeError("emit() called outside of an invocation")
        self._pipeline.emit(*values)
