"""
Bootstrap Loop

Drives the runtime from cold start to exit:

    ColdStart -> Initializing -> Ready <-> Invoking
                      |            |
                   exit 1       exit 2 (transport failure)

- ColdStart: read configuration, build the control-plane client
- Initializing: resolve the handler and load it; failures are reported to
  the init error endpoint and end the process
- Ready: block on the next invocation
- Invoking: build the context, run the handler, report the result

Process-wide state is built once, as a RuntimeState, and passed into every
pass of the loop.
"""

import sys
from dataclasses import dataclass
from typing import Optional

from lambda_script_runtime import __version__
from lambda_script_runtime.config import ConfigError, RuntimeConfig
from lambda_script_runtime.core.error_translator import translate
from lambda_script_runtime.core.handler_resolver import (
    HandlerDescriptor,
    InitError,
    ResolutionError,
    resolve,
)
from lambda_script_runtime.core.self_logger import SelfLogger
from lambda_script_runtime.runtime.context import FunctionEnvironment, apply_trace_id, build_context
from lambda_script_runtime.runtime.control_plane import RuntimeApiClient, TransportError
from lambda_script_runtime.runtime.executor import InvocationExecutor

EXIT_OK = 0
EXIT_INIT_FAILURE = 1
EXIT_TRANSPORT_FAILURE = 2


@dataclass(frozen=True)
class RuntimeState:
    """Everything built during Initializing; read-only afterwards."""
    descriptor: HandlerDescriptor
    executor: InvocationExecutor
    environment: FunctionEnvironment


class Bootstrap:
    """
    The runtime's main loop.

    Usage:
        config = RuntimeConfig()
        exit_code = Bootstrap(config).run()
    """

    def __init__(
        self,
        config: RuntimeConfig,
        client: Optional[RuntimeApiClient] = None,
        logger: Optional[SelfLogger] = None,
    ):
        """
        ColdStart.

        Args:
            config: Runtime configuration
            client: Control-plane client (built from config by default)
            logger: Runtime logger
        """
        self.config = config
        self.logger = logger or SelfLogger(component='bootstrap', verbose=config.verbose)
        self.client = client or RuntimeApiClient(
            config.runtime_api,
            logger=self.logger.bind('control_plane'),
        )

    def initialize(self) -> RuntimeState:
        """
        Resolve and load the handler.

        On failure the error is reported to the init error endpoint (best
        effort) and re-raised.

        Raises:
            ResolutionError: If the handler can't be resolved
            InitError: If the handler fails to load
        """
        self.logger.debug(
            'Initializing',
            handler=self.config.handler,
            task_root=str(self.config.task_root),
        )

        try:
            descriptor = resolve(
                self.config.handler,
                task_root=self.config.task_root,
                module_paths=self.config.module_paths,
            )
            executor = InvocationExecutor(
                descriptor,
                module_paths=self.config.module_paths,
                logger=self.logger.bind('executor'),
            )
            executor.initialize()

        except (ResolutionError, InitError) as e:
            error = translate(e)
            self.logger.critical(
                f'Initialization failed: {error.error_type}: {error.error_message}',
                handler=self.config.handler,
            )
            try:
                self.client.post_init_error(error)
            except TransportError as report_error:
                self.logger.critical(f'Failed to report init error: {report_error}')
            raise

        self.logger.debug('Ready', kind=descriptor.kind.value, target=descriptor.target)

        return RuntimeState(
            descriptor=descriptor,
            executor=executor,
            environment=self.config.function_environment,
        )

    def run_once(self, state: RuntimeState) -> bool:
        """
        Serve one invocation: Ready, then Invoking.

        Returns:
            True if the handler succeeded

        Raises:
            TransportError: If the control plane fails at any point
        """
        invocation = self.client.next_invocation()
        request_id = invocation.request_id

        self.logger.debug('Invocation received', request_id=request_id)

        apply_trace_id(invocation)
        context = build_context(invocation, state.environment)

        result = state.executor.invoke(invocation.event, context)

        if result.succeeded:
            self.client.post_response(request_id, result.payload)
        else:
            self.client.post_invocation_error(request_id, result.error)

        self.logger.debug(
            'Invocation reported',
            request_id=request_id,
            status='success' if result.succeeded else 'error',
        )

        return result.succeeded

    def run(self, max_invocations: Optional[int] = None) -> int:
        """
        Run until a fatal error (or max_invocations, for tests).

        Returns:
            Process exit code
        """
        try:
            state = self.initialize()
        except (ResolutionError, InitError):
            return EXIT_INIT_FAILURE

        served = 0
        while max_invocations is None or served < max_invocations:
            try:
                self.run_once(state)
            except TransportError as e:
                self.logger.critical(f'Control plane failure, exiting: {e}', status_code=e.status_code)
                return EXIT_TRANSPORT_FAILURE
            served += 1

        return EXIT_OK


def main(argv=None) -> int:
    """Console entry point"""
    config = RuntimeConfig()
    logger = SelfLogger(component='bootstrap', verbose=config.verbose)

    try:
        config.validate()
    except ConfigError as e:
        logger.critical(f'Cannot start runtime: {e}')
        return EXIT_INIT_FAILURE

    logger.debug(f'lambda-script-runtime {__version__} starting', **config.to_dict())

    return Bootstrap(config, logger=logger).run()


if __name__ == "__main__":
    sys.exit(main())
