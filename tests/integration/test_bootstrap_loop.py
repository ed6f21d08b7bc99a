"""
Integration tests for the bootstrap loop

Runs the loop from cold start against a control plane that hands out a
fixed list of invocations, then fails like a host going away. The last
tests talk HTTP to a control plane stubbed with responses.
"""

import io
import json
import os
import sys
from collections import deque
from unittest.mock import Mock

import pytest
import requests
import responses

from tests.fixtures import (
    FIXTURES_DIR,
    FUNCTION_ENVIRON,
    HANDLERS_DIR,
    forget_modules,
    make_invocation,
)

RUNTIME_API = '127.0.0.1:9001'
BASE_URL = f'http://{RUNTIME_API}/2018-06-01/runtime'


class FakeControlPlane:
    """In-memory stand-in for RuntimeApiClient"""

    def __init__(self, invocations=(), fail_init_report=False):
        self.pending = deque(invocations)
        self.fail_init_report = fail_init_report
        self.next_calls = 0
        self.responses = []
        self.errors = []
        self.init_errors = []

    def next_invocation(self):
        from lambda_script_runtime.runtime.control_plane import TransportError

        self.next_calls += 1
        if not self.pending:
            raise TransportError('connection closed by host')
        return self.pending.popleft()

    def post_response(self, request_id, payload):
        self.responses.append((request_id, payload))

    def post_invocation_error(self, request_id, error):
        self.errors.append((request_id, error))

    def post_init_error(self, error):
        from lambda_script_runtime.runtime.control_plane import TransportError

        if self.fail_init_report:
            raise TransportError('init error endpoint unavailable', status_code=500)
        self.init_errors.append(error)


def make_config(handler, task_root=HANDLERS_DIR, **extra):
    from lambda_script_runtime.config import RuntimeConfig

    environ = dict(FUNCTION_ENVIRON)
    environ.update({
        'AWS_LAMBDA_RUNTIME_API': RUNTIME_API,
        '_HANDLER': handler,
        'LAMBDA_TASK_ROOT': str(task_root),
    })
    environ.update(extra)
    return RuntimeConfig(environ)


def make_bootstrap(config, client):
    from lambda_script_runtime.core.self_logger import SelfLogger
    from lambda_script_runtime.runtime.bootstrap import Bootstrap

    stream = io.StringIO()
    return Bootstrap(config, client=client, logger=SelfLogger('bootstrap', stream=stream)), stream


class TestBootstrapLoop:
    """Test the loop against an in-memory control plane"""

    def setup_method(self):
        self.saved_path = list(sys.path)

    def teardown_method(self):
        sys.path[:] = self.saved_path
        forget_modules('mymod', 'brokenmod', 'exitmod', 'pricing_helpers')

    def test_script_handler_invocations(self):
        from lambda_script_runtime.runtime.bootstrap import EXIT_TRANSPORT_FAILURE

        client = FakeControlPlane([
            make_invocation('req-1', {'x': 1}),
            make_invocation('req-2', {'x': 'two'}),
        ])
        bootstrap, _ = make_bootstrap(make_config('script.py'), client)

        assert bootstrap.run() == EXIT_TRANSPORT_FAILURE
        assert client.responses == [('req-1', b'1'), ('req-2', b'two')]
        assert client.errors == []
        assert client.next_calls == 3

    def test_missing_function_is_init_error(self):
        """handler.py::do_work where handler.py lacks do_work"""
        from lambda_script_runtime.runtime.bootstrap import EXIT_INIT_FAILURE

        client = FakeControlPlane([make_invocation()])
        bootstrap, stream = make_bootstrap(make_config('handler.py::do_work'), client)

        assert bootstrap.run() == EXIT_INIT_FAILURE
        assert len(client.init_errors) == 1
        assert client.init_errors[0].error_type == 'HandlerFunctionNotFoundError'
        assert 'do_work' in client.init_errors[0].error_message
        assert client.next_calls == 0
        assert '\tCRITICAL\tbootstrap\t' in stream.getvalue()

    def test_module_handler_from_task_modules(self):
        """Module handlers are found under <task root>/modules"""
        client = FakeControlPlane([
            make_invocation('req-1', {}),
            make_invocation('req-2', {}),
        ])
        bootstrap, _ = make_bootstrap(
            make_config('Module::mymod::invoke_handler', task_root=FIXTURES_DIR),
            client,
        )

        bootstrap.run()

        assert [json.loads(payload) for _, payload in client.responses] == [
            {'ok': True, 'request_id': 'req-1'},
            {'ok': True, 'request_id': 'req-2'},
        ]

    def test_failing_module_handler_loop_continues(self):
        """Module handler errors are reported per invocation"""
        from lambda_script_runtime.runtime.bootstrap import EXIT_TRANSPORT_FAILURE

        client = FakeControlPlane([
            make_invocation('req-1', {}),
            make_invocation('req-2', {}),
        ])
        bootstrap, _ = make_bootstrap(
            make_config('Module::mymod::fail_handler', task_root=FIXTURES_DIR),
            client,
        )

        assert bootstrap.run() == EXIT_TRANSPORT_FAILURE
        assert [(request_id, error.error_type) for request_id, error in client.errors] == [
            ('req-1', 'TypeError'),
            ('req-2', 'TypeError'),
        ]
        assert client.responses == []
        assert client.next_calls == 3

    def test_invocations_share_function_fields(self):
        """Process-wide fields stay fixed while request IDs change"""
        client = FakeControlPlane([
            make_invocation('req-1', {}),
            make_invocation('req-2', {}),
        ])
        bootstrap, _ = make_bootstrap(make_config('context_script.py'), client)

        bootstrap.run()

        first, second = [json.loads(payload) for _, payload in client.responses]
        assert first[:2] == second[:2] == ['demo', '/aws/lambda/demo']
        assert (first[2], second[2]) == ('req-1', 'req-2')

    def test_context_reaches_script(self):
        client = FakeControlPlane([make_invocation('req-ctx', {})])
        bootstrap, _ = make_bootstrap(make_config('context_script.py'), client)

        bootstrap.run()

        request_id, payload = client.responses[0]
        assert request_id == 'req-ctx'
        assert json.loads(payload) == ['demo', '/aws/lambda/demo', 'req-ctx']

    @pytest.mark.parametrize('handler, source', [
        ('checkout.py::go', 'import pricing_helpers\n\n\ndef go(event, context):\n    return pricing_helpers.price(event["n"])\n'),
        ('checkout.py', 'import pricing_helpers\n\npricing_helpers.price(event["n"])\n'),
    ])
    def test_handler_imports_sibling_module(self, tmp_path, handler, source):
        """Modules shipped next to the handler file are importable"""
        (tmp_path / 'pricing_helpers.py').write_text('def price(n):\n    return n * 2\n')
        (tmp_path / 'checkout.py').write_text(source)

        client = FakeControlPlane([make_invocation('req-1', {'n': 21})])
        bootstrap, _ = make_bootstrap(make_config(handler, task_root=tmp_path), client)

        bootstrap.run()

        assert client.init_errors == []
        assert client.responses == [('req-1', b'42')]

    def test_handler_error_is_reported_and_loop_continues(self):
        client = FakeControlPlane([
            make_invocation('req-1', {'value': 'abc'}),
            make_invocation('req-2', {'value': '9'}),
        ])
        bootstrap, _ = make_bootstrap(make_config('function_handler.py::convert'), client)

        bootstrap.run()

        assert [(request_id, error.error_type) for request_id, error in client.errors] == [
            ('req-1', 'ValueError'),
        ]
        assert client.responses == [('req-2', b'9')]

    def test_max_invocations_exits_cleanly(self):
        from lambda_script_runtime.runtime.bootstrap import EXIT_OK

        client = FakeControlPlane([make_invocation('req-1', {'x': 1}), make_invocation('req-2', {'x': 2})])
        bootstrap, _ = make_bootstrap(make_config('script.py'), client)

        assert bootstrap.run(max_invocations=1) == EXIT_OK
        assert client.responses == [('req-1', b'1')]
        assert len(client.pending) == 1

    def test_run_once_reports_success(self):
        client = FakeControlPlane([
            make_invocation('req-1', {'value': '1'}),
            make_invocation('req-2', {'value': 'x'}),
        ])
        bootstrap, _ = make_bootstrap(make_config('function_handler.py::convert'), client)
        state = bootstrap.initialize()

        assert bootstrap.run_once(state) is True
        assert bootstrap.run_once(state) is False

    def test_trace_id_is_exported(self, monkeypatch):
        from lambda_script_runtime.runtime.context import TRACE_ID_VAR

        monkeypatch.setenv(TRACE_ID_VAR, 'Root=1-stale')
        client = FakeControlPlane([make_invocation('req-1', {'x': 1}, trace_id='Root=1-fresh')])
        bootstrap, _ = make_bootstrap(make_config('script.py'), client)
        state = bootstrap.initialize()

        bootstrap.run_once(state)

        assert os.environ[TRACE_ID_VAR] == 'Root=1-fresh'

    @pytest.mark.parametrize('handler, error_type', [
        ('a.py::b::c', 'MalformedHandlerError'),
        ('', 'MalformedHandlerError'),
        ('missing.py', 'HandlerFileNotFoundError'),
        ('Module::no_such_handler_module::run', 'HandlerModuleNotFoundError'),
        ('Module::mymod::hidden_handler', 'HandlerFunctionNotExportedError'),
        ('Module::brokenmod::handler', 'ModuleNotFoundError'),
        ('handlers/exiting_handler.py::go', 'SystemExit'),
        ('Module::exitmod::handler', 'SystemExit'),
    ])
    def test_init_errors(self, handler, error_type):
        from lambda_script_runtime.runtime.bootstrap import EXIT_INIT_FAILURE

        client = FakeControlPlane([make_invocation()])
        bootstrap, _ = make_bootstrap(make_config(handler, task_root=FIXTURES_DIR), client)

        assert bootstrap.run() == EXIT_INIT_FAILURE
        assert [error.error_type for error in client.init_errors] == [error_type]
        assert client.next_calls == 0

    def test_init_error_report_failure_still_exits(self):
        from lambda_script_runtime.runtime.bootstrap import EXIT_INIT_FAILURE

        client = FakeControlPlane(fail_init_report=True)
        bootstrap, stream = make_bootstrap(make_config('handler.py::do_work'), client)

        assert bootstrap.run() == EXIT_INIT_FAILURE
        assert 'Failed to report init error' in stream.getvalue()


class TestBootstrapOverHttp:
    """Test the loop with the real client against a stubbed Runtime API"""

    def setup_method(self):
        self.saved_path = list(sys.path)

    def teardown_method(self):
        sys.path[:] = self.saved_path

    @responses.activate
    def test_script_round_trip(self):
        from lambda_script_runtime.runtime.bootstrap import Bootstrap, EXIT_TRANSPORT_FAILURE
        from lambda_script_runtime.core.self_logger import SelfLogger

        responses.add(
            responses.GET,
            f'{BASE_URL}/invocation/next',
            body=b'{"x": 41}',
            headers={
                'Lambda-Runtime-Aws-Request-Id': 'req-1',
                'Lambda-Runtime-Deadline-Ms': '9999999999999',
            },
        )
        responses.add(responses.GET, f'{BASE_URL}/invocation/next', status=500)
        responses.add(responses.POST, f'{BASE_URL}/invocation/req-1/response', status=202)

        bootstrap = Bootstrap(make_config('script.py'), logger=SelfLogger(stream=io.StringIO()))

        assert bootstrap.run() == EXIT_TRANSPORT_FAILURE

        posts = [call for call in responses.calls if call.request.method == 'POST']
        assert len(posts) == 1
        assert posts[0].request.body == b'41'

    @responses.activate
    def test_unreachable_control_plane(self):
        """No response or error is posted when the next GET fails"""
        from lambda_script_runtime.runtime.bootstrap import Bootstrap, EXIT_TRANSPORT_FAILURE
        from lambda_script_runtime.core.self_logger import SelfLogger

        responses.add(
            responses.GET,
            f'{BASE_URL}/invocation/next',
            body=requests.ConnectionError('connection refused'),
        )

        stream = io.StringIO()
        bootstrap = Bootstrap(make_config('script.py'), logger=SelfLogger(stream=stream))

        assert bootstrap.run() == EXIT_TRANSPORT_FAILURE
        assert len(responses.calls) == 1
        assert responses.calls[0].request.method == 'GET'
        assert 'Control plane failure' in stream.getvalue()

    @responses.activate
    def test_init_error_posted(self):
        from lambda_script_runtime.runtime.bootstrap import Bootstrap, EXIT_INIT_FAILURE
        from lambda_script_runtime.core.self_logger import SelfLogger

        responses.add(responses.POST, f'{BASE_URL}/init/error', status=202)

        bootstrap = Bootstrap(make_config('handler.py::do_work'), logger=SelfLogger(stream=io.StringIO()))

        assert bootstrap.run() == EXIT_INIT_FAILURE

        request = responses.calls[0].request
        assert request.headers['Lambda-Runtime-Function-Error-Type'] == 'HandlerFunctionNotFoundError'
        assert json.loads(request.body)['errorType'] == 'HandlerFunctionNotFoundError'


class TestBootstrapWithMockClient:
    """Test calls made on the client"""

    def setup_method(self):
        self.saved_path = list(sys.path)

    def teardown_method(self):
        sys.path[:] = self.saved_path

    def test_init_error_posted_once(self):
        from lambda_script_runtime.runtime.control_plane import RuntimeApiClient

        client = Mock(spec=RuntimeApiClient)
        bootstrap, _ = make_bootstrap(make_config('missing.py'), client)

        bootstrap.run()

        client.post_init_error.assert_called_once()
        assert client.post_init_error.call_args[0][0].error_type == 'HandlerFileNotFoundError'
        client.next_invocation.assert_not_called()

    def test_transport_error_on_post_stops_loop(self):
        from lambda_script_runtime.runtime.bootstrap import EXIT_TRANSPORT_FAILURE
        from lambda_script_runtime.runtime.control_plane import RuntimeApiClient, TransportError

        client = Mock(spec=RuntimeApiClient)
        client.next_invocation.return_value = make_invocation('req-1', {'x': 1})
        client.post_response.side_effect = TransportError('gone', status_code=410)
        bootstrap, stream = make_bootstrap(make_config('script.py'), client)

        assert bootstrap.run() == EXIT_TRANSPORT_FAILURE
        client.post_response.assert_called_once_with('req-1', b'1')
        client.post_invocation_error.assert_not_called()
        assert 'status_code=410' in stream.getvalue()


class TestMain:
    """Test the console entry point"""

    def test_missing_runtime_api(self, monkeypatch, capsys):
        from lambda_script_runtime.runtime.bootstrap import EXIT_INIT_FAILURE, main

        monkeypatch.delenv('AWS_LAMBDA_RUNTIME_API', raising=False)

        assert main() == EXIT_INIT_FAILURE
        assert 'AWS_LAMBDA_RUNTIME_API is not set' in capsys.readouterr().out
