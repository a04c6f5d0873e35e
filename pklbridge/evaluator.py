"""Evaluators, and the manager that shares one Pkl backend between them."""

from __future__ import annotations

import abc
import contextlib
import logging
import queue
import random
import threading
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from .decoder import decode
from .errors import EvalError, InternalError, PklError
from .messages import (
    CloseEvaluator,
    CreateEvaluator,
    CreateEvaluatorResponse,
    Evaluate,
    EvaluateResponse,
    ListModules,
    ListModulesResponse,
    ListResources,
    ListResourcesResponse,
    Log,
    PathElement,
    ReadModule,
    ReadModuleResponse,
    ReadResource,
    ReadResourceResponse,
)

_log = logging.getLogger(__name__)


def _request_id() -> int:
    return random.getrandbits(63)


class _StandardLogger:
    """Forwards Pkl trace and warn output to the ``logging`` module."""

    def trace(self, message: str, frame_uri: str) -> None:
        _log.debug("%s (%s)", message, frame_uri)

    def warn(self, message: str, frame_uri: str) -> None:
        _log.warning("%s (%s)", message, frame_uri)


@dataclass(frozen=True)
class ModuleSource:
    """A module to evaluate: its URI, and its text when not read from the URI."""

    uri: str
    contents: str | None = None


@dataclass
class EvaluatorOptions:
    """Settings for a new evaluator.

    Readers are objects with a ``scheme`` attribute and ``read(uri)`` and
    ``list_elements(uri)`` methods, where ``uri`` is a ``urllib.parse.SplitResult``.
    """

    logger: Any = field(default_factory=_StandardLogger)
    resource_readers: list[Any] = field(default_factory=list)
    module_readers: list[Any] = field(default_factory=list)
    allowed_modules: list[str] = field(default_factory=list)
    allowed_resources: list[str] = field(default_factory=list)
    module_paths: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    properties: dict[str, str] = field(default_factory=dict)
    output_format: str = ""
    cache_dir: str = ""
    root_dir: str = ""
    timeout_seconds: int = 0
    schemas: dict[str, type] = field(default_factory=dict)

    def _to_message(self, request_id: int) -> CreateEvaluator:
        return CreateEvaluator(
            request_id=request_id,
            allowed_modules=list(self.allowed_modules),
            allowed_resources=list(self.allowed_resources),
            client_resource_readers=[
                _reader_spec(reader) for reader in self.resource_readers
            ],
            client_module_readers=[
                {**_reader_spec(reader), "isLocal": bool(getattr(reader, "is_local", False))}
                for reader in self.module_readers
            ],
            module_paths=list(self.module_paths),
            env=dict(self.env),
            properties=dict(self.properties),
            output_format=self.output_format,
            cache_dir=self.cache_dir,
            root_dir=self.root_dir,
            timeout_seconds=self.timeout_seconds,
        )


def _reader_spec(reader: Any) -> dict[str, Any]:
    return {
        "scheme": reader.scheme,
        "hasHierarchicalUris": bool(getattr(reader, "has_hierarchical_uris", False)),
        "isGlobbable": bool(getattr(reader, "is_globbable", False)),
    }


def _find_reader(readers: Iterable[Any], scheme: str) -> Any | None:
    return next((reader for reader in readers if reader.scheme == scheme), None)


class ManagerBackend(abc.ABC):
    """The channel to a Pkl runtime that an EvaluatorManager drives."""

    def start(self) -> None:
        """Prepare the backend; called before the first evaluator is created."""

    def stop(self) -> None:
        """Release the backend; ``messages`` should end afterwards."""

    @abc.abstractmethod
    def send(self, message: Any) -> None:
        """Send one message to the runtime."""

    @abc.abstractmethod
    def messages(self) -> Iterator[Any]:
        """Yield messages from the runtime; raising means the runtime went away."""

    @abc.abstractmethod
    def version(self) -> str:
        """The version of the Pkl runtime behind this backend."""


class _Waiter:
    """Receives either a response or an interruption for one pending request."""

    __slots__ = ("evaluator_id", "_queue")

    def __init__(self, evaluator_id: int) -> None:
        self.evaluator_id = evaluator_id
        self._queue: queue.Queue[tuple[bool, Any]] = queue.Queue()

    def respond(self, message: Any) -> None:
        self._queue.put((False, message))

    def interrupt(self, error: BaseException | None) -> None:
        self._queue.put((True, error))

    def wait(self) -> tuple[bool, Any]:
        return self._queue.get()


class Evaluator:
    """Evaluates Pkl modules through the manager that created it."""

    def __init__(self, evaluator_id: int, manager: EvaluatorManager, options: EvaluatorOptions) -> None:
        self.evaluator_id = evaluator_id
        self._manager = manager
        self._logger = options.logger
        self._resource_readers = list(options.resource_readers)
        self._module_readers = list(options.module_readers)
        self._schemas = dict(options.schemas)
        self._pending: dict[int, _Waiter] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether this evaluator has been closed."""
        return self._closed

    def evaluate_module(self, source: ModuleSource, typ: Any) -> Any:
        """Evaluate the whole module into ``typ``."""
        return self.evaluate_expression(source, "", typ)

    def evaluate_output_text(self, source: ModuleSource) -> str:
        """Evaluate the module's ``output.text``."""
        return self.evaluate_expression(source, "output.text", str)

    def evaluate_output_value(self, source: ModuleSource, typ: Any) -> Any:
        """Evaluate the module's ``output.value`` into ``typ``."""
        return self.evaluate_expression(source, "output.value", typ)

    def evaluate_output_files(self, source: ModuleSource) -> dict[str, str]:
        """Evaluate the module's ``output.files`` as a mapping of path to text."""
        return self.evaluate_expression(
            source, "output.files.toMap().mapValues((_, it) -> it.text)", dict[str, str]
        )

    def evaluate_expression(self, source: ModuleSource, expr: str, typ: Any) -> Any:
        """Evaluate ``expr`` within the module and decode the result into ``typ``."""
        return decode(self.evaluate_expression_raw(source, expr), typ, self._schemas)

    def evaluate_expression_raw(self, source: ModuleSource, expr: str) -> bytes:
        """Evaluate ``expr`` and return the encoded result.

        Returns empty bytes when the evaluator is closed while waiting.
        """
        if self._closed:
            raise PklError("evaluator is closed")
        request_id = _request_id()
        with self._manager._interrupted(self.evaluator_id) as waiter:
            with self._lock:
                self._pending[request_id] = waiter
            try:
                self._manager._send(
                    Evaluate(
                        request_id=request_id,
                        evaluator_id=self.evaluator_id,
                        module_uri=source.uri,
                        module_text=source.contents,
                        expr=expr,
                    )
                )
                interrupted, payload = waiter.wait()
            finally:
                with self._lock:
                    self._pending.pop(request_id, None)
        if interrupted:
            if payload is None:
                return b""
            raise payload
        if payload.error:
            raise EvalError(payload.error)
        return payload.result

    def close(self) -> None:
        """Close the evaluator; closing again does nothing."""
        if self._closed:
            return
        self._manager._close_evaluator(self)

    # -- requests from the runtime ---------------------------------------

    def _handle_evaluate_response(self, message: EvaluateResponse) -> None:
        with self._lock:
            waiter = self._pending.pop(message.request_id, None)
        if waiter is None:
            _log.warning("received a message for an unknown request id: %d", message.request_id)
            return
        waiter.respond(message)

    def _handle_log(self, message: Log) -> None:
        if message.level == 0:
            self._logger.trace(message.message, message.frame_uri)
        elif message.level == 1:
            self._logger.warn(message.message, message.frame_uri)
        else:
            raise InternalError(f"unknown log level: {message.level}")

    def _serve_read(self, message: Any, readers: list[Any], response_type: type, kind: str) -> None:
        ids = {"evaluator_id": self.evaluator_id, "request_id": message.request_id}
        try:
            uri = urllib.parse.urlsplit(message.uri)
        except ValueError as exc:
            self._manager._send(
                response_type(**ids, error=f"internal error: failed to parse resource url: {exc}")
            )
            return
        reader = _find_reader(readers, uri.scheme)
        if reader is None:
            self._manager._send(
                response_type(**ids, error=f"No {kind} reader found for scheme `{uri.scheme}`")
            )
            return
        try:
            contents = reader.read(uri)
        except Exception as exc:  # reader failures are reported to the runtime
            self._manager._send(response_type(**ids, error=str(exc)))
            return
        self._manager._send(response_type(**ids, contents=contents))

    def _serve_list(self, message: Any, readers: list[Any], response_type: type, kind: str) -> None:
        ids = {"evaluator_id": self.evaluator_id, "request_id": message.request_id}
        try:
            uri = urllib.parse.urlsplit(message.uri)
        except ValueError as exc:
            self._manager._send(
                response_type(**ids, error=f"internal error: failed to parse resource url: {exc}")
            )
            return
        reader = _find_reader(readers, uri.scheme)
        if reader is None:
            self._manager._send(
                response_type(**ids, error=f"No {kind} reader found for scheme `{uri.scheme}`")
            )
            return
        try:
            elements = [
                PathElement(element.name, element.is_directory)
                for element in reader.list_elements(uri)
            ]
        except Exception as exc:  # reader failures are reported to the runtime
            self._manager._send(response_type(**ids, error=str(exc)))
            return
        self._manager._send(response_type(**ids, path_elements=elements))

    def _handle_read_resource(self, message: ReadResource) -> None:
        self._serve_read(message, self._resource_readers, ReadResourceResponse, "resource")

    def _handle_read_module(self, message: ReadModule) -> None:
        self._serve_read(message, self._module_readers, ReadModuleResponse, "module")

    def _handle_list_resources(self, message: ListResources) -> None:
        self._serve_list(message, self._resource_readers, ListResourcesResponse, "resource")

    def _handle_list_modules(self, message: ListModules) -> None:
        self._serve_list(message, self._module_readers, ListModulesResponse, "module")


_HANDLERS = {
    EvaluateResponse: Evaluator._handle_evaluate_response,
    Log: Evaluator._handle_log,
    ReadResource: Evaluator._handle_read_resource,
    ReadModule: Evaluator._handle_read_module,
    ListResources: Evaluator._handle_list_resources,
    ListModules: Evaluator._handle_list_modules,
}


class EvaluatorManager:
    """Creates evaluators that all share one backend."""

    def __init__(self, backend: ManagerBackend) -> None:
        self._backend = backend
        self._lock = threading.Lock()
        self._new_lock = threading.Lock()
        self._interrupts: set[_Waiter] = set()
        self._evaluators: dict[int, Evaluator] = {}
        self._pending_evaluators: dict[int, _Waiter] = {}
        self._closing = False
        self._closed = threading.Event()
        self._initialized = False

    @property
    def closed(self) -> bool:
        """Whether this manager has been closed."""
        return self._closed.is_set()

    def new_evaluator(self, options: EvaluatorOptions | None = None) -> Evaluator | None:
        """Create an evaluator; returns None if the manager closes while waiting."""
        with self._new_lock:
            if self._closed.is_set():
                raise PklError("EvaluatorManager has been closed")
            if not self._initialized:
                self._init()
                self._initialized = True
            self.get_version()
            options = options if options is not None else EvaluatorOptions()
            request_id = _request_id()
            with self._interrupted(0) as waiter:
                with self._lock:
                    self._pending_evaluators[request_id] = waiter
                try:
                    self._send(options._to_message(request_id))
                    if self._closed.is_set():
                        return None
                    interrupted, payload = waiter.wait()
                finally:
                    with self._lock:
                        self._pending_evaluators.pop(request_id, None)
            if interrupted:
                if payload is None:
                    return None
                raise payload
            if payload.error:
                raise PklError(payload.error)
            evaluator = Evaluator(payload.evaluator_id, self, options)
            with self._lock:
                self._evaluators[payload.evaluator_id] = evaluator
            return evaluator

    def get_version(self) -> str:
        """The version of Pkl behind this manager."""
        return self._backend.version()

    def listen(self) -> None:
        """Dispatch messages from the backend until it ends.

        Stops at a message for an unknown evaluator or request. If the backend
        fails, the manager is closed with that error.
        """
        messages = iter(self._backend.messages())
        while True:
            try:
                message = next(messages)
            except StopIteration:
                return
            except Exception as exc:  # the runtime went away
                try:
                    self._close_with(exc)
                except Exception:
                    _log.exception("error while closing after backend failure")
                return
            if not self._dispatch(message):
                return

    def interrupt(self, error: BaseException | None) -> None:
        """Wake every pending request with ``error``; None means a plain close."""
        with self._lock:
            waiters = list(self._interrupts)
        for waiter in waiters:
            waiter.interrupt(error)

    def close(self) -> None:
        """Close the manager and all of its evaluators."""
        self._close_with(None)

    # -- internals -------------------------------------------------------

    def _init(self) -> None:
        self._backend.start()
        threading.Thread(target=self.listen, name="pkl-listener", daemon=True).start()

    def _send(self, message: Any) -> None:
        self._backend.send(message)

    @contextlib.contextmanager
    def _interrupted(self, evaluator_id: int) -> Iterator[_Waiter]:
        waiter = _Waiter(evaluator_id)
        with self._lock:
            self._interrupts.add(waiter)
        try:
            yield waiter
        finally:
            with self._lock:
                self._interrupts.discard(waiter)

    def _dispatch(self, message: Any) -> bool:
        if isinstance(message, CreateEvaluatorResponse):
            with self._lock:
                waiter = self._pending_evaluators.pop(message.request_id, None)
            if waiter is None:
                _log.warning("received a message for an unknown request id: %d", message.request_id)
                return False
            waiter.respond(message)
            return True
        handler = _HANDLERS.get(type(message))
        if handler is None:
            return True
        with self._lock:
            evaluator = self._evaluators.get(message.evaluator_id)
        if evaluator is None:
            _log.warning("received a message for an unknown evaluator id: %d", message.evaluator_id)
            return False
        handler(evaluator, message)
        return True

    def _close_evaluator(self, evaluator: Evaluator) -> None:
        if self._closed.is_set():
            return
        self._send(CloseEvaluator(evaluator_id=evaluator.evaluator_id))
        with self._lock:
            self._evaluators.pop(evaluator.evaluator_id, None)
            waiters = [w for w in self._interrupts if w.evaluator_id == evaluator.evaluator_id]
        evaluator._closed = True
        for waiter in waiters:
            waiter.interrupt(None)

    def _close_with(self, error: BaseException | None) -> None:
        with self._lock:
            if self._closing:
                return
            self._closing = True
            evaluators = list(self._evaluators.values())
        self.interrupt(error)
        failure: BaseException | None = None
        for evaluator in evaluators:
            try:
                evaluator.close()
            except Exception as exc:  # keep closing the rest
                failure = exc
        self._closed.set()
        try:
            self._backend.stop()
        except Exception as exc:
            if failure is None:
                failure = exc
        if failure is not None:
            raise failure