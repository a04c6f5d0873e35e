import urllib.parse

import pytest

from pklbridge.fibreader import FibonacciReader, fibonacci


def test_fibonacci_start_values():
    assert fibonacci(0) == 0
    assert fibonacci(1) == 1


def test_fibonacci_worked_example():
    assert fibonacci(10) == 55


@pytest.mark.parametrize("n", range(0, 40))
def test_fibonacci_recurrence(n):
    assert fibonacci(n + 2) == fibonacci(n + 1) + fibonacci(n)


def test_read_returns_decimal_text():
    reader = FibonacciReader()
    assert reader.read("fib:10") == str(fibonacci(10)).encode()


def test_read_accepts_split_uri():
    reader = FibonacciReader()
    uri = urllib.parse.urlsplit("fib:25")
    assert reader.read(uri) == str(fibonacci(25)).encode()


@pytest.mark.parametrize("uri", ["fib:0", "fib:-3", "fib:abc", "fib:", "fib: 4"])
def test_read_rejects_non_positive_or_malformed(uri):
    with pytest.raises(ValueError, match="input uri must be in format fib:<positive integer>"):
        FibonacciReader().read(uri)


def test_reader_describes_itself():
    reader = FibonacciReader()
    assert reader.scheme == "fib"
    assert reader.has_hierarchical_uris is False
    assert reader.is_globbable is False


def test_list_elements_is_empty():
    assert FibonacciReader().list_elements("fib:") == []