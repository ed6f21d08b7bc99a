"""
Control-Plane Client

Talks to the host's Runtime API over HTTP:

    GET  /2018-06-01/runtime/invocation/next
    POST /2018-06-01/runtime/invocation/{request_id}/response
    POST /2018-06-01/runtime/invocation/{request_id}/error
    POST /2018-06-01/runtime/init/error

Design principles:
- One requests.Session for the life of the process
- The GET blocks until the host has work (no read timeout)
- No retries: any failure raises TransportError and is fatal to the caller
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

import requests

from lambda_script_runtime import __version__
from lambda_script_runtime.core.error_translator import ErrorRecord
from lambda_script_runtime.core.self_logger import SelfLogger

RUNTIME_API_VERSION = '2018-06-01'

REQUEST_ID_HEADER = 'Lambda-Runtime-Aws-Request-Id'
DEADLINE_HEADER = 'Lambda-Runtime-Deadline-Ms'
FUNCTION_ARN_HEADER = 'Lambda-Runtime-Invoked-Function-Arn'
TRACE_ID_HEADER = 'Lambda-Runtime-Trace-Id'
CLIENT_CONTEXT_HEADER = 'Lambda-Runtime-Client-Context'
COGNITO_IDENTITY_HEADER = 'Lambda-Runtime-Cognito-Identity'
ERROR_TYPE_HEADER = 'Lambda-Runtime-Function-Error-Type'

USER_AGENT = f'lambda-script-runtime/{__version__}'

# Seconds to wait for the connection itself; the read never times out
CONNECT_TIMEOUT = 5.0


# Custom exceptions
class TransportError(Exception):
    """Raised when the control plane can't be reached or answers with an error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidInvocationError(TransportError):
    """Raised when the next invocation lacks a usable request ID or deadline"""
    pass


@dataclass(frozen=True)
class Invocation:
    """
    One unit of work fetched from the control plane.

    Attributes:
        request_id: Host-assigned request ID
        deadline_ms: Deadline in epoch milliseconds
        invoked_function_arn: ARN used to invoke the function
        trace_id: X-Ray trace header
        client_context: Raw client context JSON, if sent
        cognito_identity: Raw cognito identity JSON, if sent
        body: Raw event body
    """
    request_id: str
    deadline_ms: int
    invoked_function_arn: str = ''
    trace_id: str = ''
    client_context: Optional[str] = None
    cognito_identity: Optional[str] = None
    body: bytes = b''

    @property
    def event(self) -> Any:
        """
        The event as handlers see it.

        JSON bodies are decoded; an empty body is None; other UTF-8 is text;
        anything else is passed through as bytes.
        """
        if not self.body:
            return None
        try:
            text = self.body.decode('utf-8')
        except UnicodeDecodeError:
            return self.body
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text


class RuntimeApiClient:
    """
    Client for the Runtime API.

    Usage:
        client = RuntimeApiClient('127.0.0.1:9001')
        invocation = client.next_invocation()
        client.post_response(invocation.request_id, b'{"ok": true}')
    """

    def __init__(
        self,
        runtime_api: str,
        session: Optional[requests.Session] = None,
        logger: Optional[SelfLogger] = None,
        connect_timeout: float = CONNECT_TIMEOUT,
    ):
        """
        Initialize client.

        Args:
            runtime_api: host:port of the Runtime API (AWS_LAMBDA_RUNTIME_API)
            session: requests session (a new one by default)
            logger: Runtime logger
            connect_timeout: Seconds to wait for a connection
        """
        self.base_url = f'http://{runtime_api}/{RUNTIME_API_VERSION}/runtime'
        self.session = session or requests.Session()
        self.session.headers.setdefault('User-Agent', USER_AGENT)
        self.logger = logger or SelfLogger(component='control_plane')
        self.connect_timeout = connect_timeout

    def next_invocation(self) -> Invocation:
        """
        Block until the host hands over the next invocation.

        Raises:
            TransportError: If the request fails
            InvalidInvocationError: If required headers are missing or malformed
        """
        response = self._request('GET', '/invocation/next')
        headers = response.headers

        request_id = (headers.get(REQUEST_ID_HEADER) or '').strip()
        if not request_id:
            raise InvalidInvocationError(f"Next invocation has no {REQUEST_ID_HEADER} header")

        deadline = (headers.get(DEADLINE_HEADER) or '').strip()
        try:
            deadline_ms = int(deadline)
        except ValueError as e:
            raise InvalidInvocationError(
                f"Next invocation has an invalid {DEADLINE_HEADER} header: {deadline!r}"
            ) from e

        return Invocation(
            request_id=request_id,
            deadline_ms=deadline_ms,
            invoked_function_arn=headers.get(FUNCTION_ARN_HEADER, ''),
            trace_id=headers.get(TRACE_ID_HEADER, ''),
            client_context=headers.get(CLIENT_CONTEXT_HEADER),
            cognito_identity=headers.get(COGNITO_IDENTITY_HEADER),
            body=response.content,
        )

    def post_response(self, request_id: str, payload: bytes | str) -> None:
        """
        Report a successful invocation.

        Raises:
            TransportError: If the request fails
        """
        if isinstance(payload, str):
            payload = payload.encode('utf-8')
        self._request('POST', f'/invocation/{request_id}/response', data=payload)

    def post_invocation_error(self, request_id: str, error: ErrorRecord) -> None:
        """
        Report a failed invocation.

        Raises:
            TransportError: If the request fails
        """
        self._post_error(f'/invocation/{request_id}/error', error)

    def post_init_error(self, error: ErrorRecord) -> None:
        """
        Report a failure to initialize, before any invocation exists.

        Raises:
            TransportError: If the request fails
        """
        self._post_error('/init/error', error)

    def close(self) -> None:
        self.session.close()

    def _post_error(self, path: str, error: ErrorRecord) -> None:
        """Helper: POST an error record as JSON"""
        self._request(
            'POST',
            path,
            data=error.to_json().encode('utf-8'),
            headers={
                'Content-Type': 'application/json',
                ERROR_TYPE_HEADER: error.error_type,
            },
        )

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Helper: send a request, turning every failure into TransportError"""
        url = f'{self.base_url}{path}'

        try:
            response = self.session.request(
                method,
                url,
                timeout=(self.connect_timeout, None),
                **kwargs,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {type(e).__name__}: {e}") from e

        self.logger.debug(
            f'{method} {path}',
            status=response.status_code,
        )

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        return response
