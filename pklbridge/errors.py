"""Errors raised while talking to the Pkl runtime or decoding its values."""

from __future__ import annotations


class PklError(Exception):
    """Base class for every error raised by this package."""


class EvalError(PklError):
    """Pkl evaluation ran, and the Pkl runtime reported an error."""

    def __init__(self, error_output: str) -> None:
        super().__init__(error_output)
        self.error_output = error_output

    def __str__(self) -> str:
        return self.error_output


class InternalError(PklError):
    """Something unexpected went wrong outside of normal Pkl evaluation."""

    def __init__(self, err: BaseException | str) -> None:
        if isinstance(err, str):
            err = RuntimeError(err)
        super().__init__(err)
        self.err = err
        self.__cause__ = err

    def __str__(self) -> str:
        return f"an internal error occurred: {self.err}"