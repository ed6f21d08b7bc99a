"""
Self-Logger

The runtime logs to itself: its own standard output, which the host ships
to the function's log stream. No logging framework is configured and the
handler's own logging setup is never touched.

Design:
- Entries are TSV lines (human-readable, grep-able)
- Each entry: timestamp, level, component, message, then key=value fields
- DEBUG entries are only written when verbose logging is on
- None fields are dropped (don't log empty fields)
- One entry per line on the log stream
"""

import csv
import sys
from datetime import datetime, timezone
from typing import Optional, TextIO

LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class SelfLogger:
    """
    Runtime logger.

    Entries look like:
        2024-05-01T12:00:00.000+00:00	INFO	bootstrap	Invocation received	request_id=abc
    """

    def __init__(
        self,
        component: str = 'runtime',
        stream: Optional[TextIO] = None,
        verbose: bool = False,
    ):
        """
        Initialize self-logger.

        Args:
            component: Name written in every entry (e.g., 'bootstrap')
            stream: Where entries go (default: sys.stdout at write time)
            verbose: Whether DEBUG entries are written
        """
        self.component = component
        self.stream = stream
        self.verbose = verbose

    def bind(self, component: str) -> 'SelfLogger':
        """Return a logger for another component sharing stream and verbosity"""
        return SelfLogger(component=component, stream=self.stream, verbose=self.verbose)

    def log(
        self,
        level: str,
        message: str,
        **kwargs,
    ) -> None:
        """
        Write a log entry.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            message: Log message
            **kwargs: Additional fields to log (request_id, status, etc.)
        """
        level = level.upper()
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")

        if level == 'DEBUG' and not self.verbose:
            return

        timestamp = datetime.now(timezone.utc).isoformat(timespec='milliseconds')

        row = [timestamp, level, self.component, self._one_line(message)]
        row.extend(
            f'{key}={self._one_line(str(value))}'
            for key, value in kwargs.items()
            if value is not None
        )

        stream = self.stream if self.stream is not None else sys.stdout
        writer = csv.writer(stream, delimiter='\t', lineterminator='\n')
        writer.writerow(row)
        stream.flush()

    def debug(self, message: str, **kwargs) -> None:
        """Log DEBUG level message"""
        self.log('DEBUG', message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log INFO level message"""
        self.log('INFO', message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log WARNING level message"""
        self.log('WARNING', message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        """Log ERROR level message"""
        self.log('ERROR', message, **kwargs)

    def critical(self, message: str, **kwargs) -> None:
        """Log CRITICAL level message"""
        self.log('CRITICAL', message, **kwargs)

    @staticmethod
    def _one_line(text: str) -> str:
        # The log stream splits events on '\n'; '\r' keeps a multi-line
        # message in a single event.
        return text.replace('\r\n', '\r').replace('\n', '\r')
