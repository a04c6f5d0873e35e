"""A resource reader that serves Fibonacci numbers under the ``fib:`` scheme."""

from __future__ import annotations

import re
import urllib.parse

from .messages import PathElement

_INTEGER = re.compile(r"[+-]?[0-9]+")


def fibonacci(n: int) -> int:
    """The ``n``-th Fibonacci number, counting from fibonacci(0) == 0."""
    previous, current = 0, 1
    for _ in range(n):
        previous, current = current, previous + current
    return previous


def _split(uri: str | urllib.parse.SplitResult) -> urllib.parse.SplitResult:
    return urllib.parse.urlsplit(uri) if isinstance(uri, str) else uri


class FibonacciReader:
    """Reads ``fib:<n>`` as the decimal text of the n-th Fibonacci number."""

    scheme = "fib"
    has_hierarchical_uris = False
    is_globbable = False

    def read(self, uri: str | urllib.parse.SplitResult) -> bytes:
        """Return the Fibonacci number named by ``uri``; ``n`` must be positive."""
        text = _split(uri).path
        n = int(text) if _INTEGER.fullmatch(text) else 0
        if n <= 0:
            raise ValueError(
                "input uri must be in format fib:<positive integer>: non-positive value"
            )
        return str(fibonacci(n)).encode()

    def list_elements(self, base_uri: str | urllib.parse.SplitResult) -> list[PathElement]:
        """List the children of ``base_uri``; ``fib:`` URIs are flat, so there are none."""
        parts = _split(base_uri)
        if parts.scheme and parts.scheme != self.scheme:
            raise ValueError(f"cannot list `{parts.geturl()}` with the `{self.scheme}` reader")
        elements: list[PathElement] = []
        return elements