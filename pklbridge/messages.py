"""Messages exchanged between evaluators and the Pkl runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PathElement:
    """One entry of a listed directory: its name and whether it is a directory."""

    name: str
    is_directory: bool = False


@dataclass(kw_only=True)
class CreateEvaluator:
    """Asks the runtime to create an evaluator configured by these settings."""

    request_id: int
    allowed_modules: list[str] = field(default_factory=list)
    allowed_resources: list[str] = field(default_factory=list)
    client_resource_readers: list[dict[str, Any]] = field(default_factory=list)
    client_module_readers: list[dict[str, Any]] = field(default_factory=list)
    module_paths: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    properties: dict[str, str] = field(default_factory=dict)
    output_format: str = ""
    cache_dir: str = ""
    root_dir: str = ""
    timeout_seconds: int = 0


@dataclass(kw_only=True)
class CreateEvaluatorResponse:
    """The runtime's answer to CreateEvaluator."""

    request_id: int
    evaluator_id: int = 0
    error: str = ""


@dataclass(kw_only=True)
class CloseEvaluator:
    """Tells the runtime that an evaluator is no longer used."""

    evaluator_id: int


@dataclass(kw_only=True)
class Evaluate:
    """Asks the runtime to evaluate an expression of a module."""

    request_id: int
    evaluator_id: int
    module_uri: str
    module_text: str | None = None
    expr: str = ""


@dataclass(kw_only=True)
class EvaluateResponse:
    """The encoded result of an evaluation, or the error it produced."""

    request_id: int
    evaluator_id: int
    result: bytes = b""
    error: str = ""


@dataclass(kw_only=True)
class Log:
    """A log line produced during evaluation; level 0 is trace, 1 is warn."""

    evaluator_id: int
    level: int
    message: str
    frame_uri: str = ""


@dataclass(kw_only=True)
class ReadResource:
    """The runtime asks the client to read a resource."""

    request_id: int
    evaluator_id: int
    uri: str


@dataclass(kw_only=True)
class ReadResourceResponse:
    """Contents of a resource read by the client, or the error it produced."""

    request_id: int
    evaluator_id: int
    contents: bytes | None = b""
    error: str = ""


@dataclass(kw_only=True)
class ReadModule:
    """The runtime asks the client to read a module."""

    request_id: int
    evaluator_id: int
    uri: str


@dataclass(kw_only=True)
class ReadModuleResponse:
    """Source text of a module read by the client, or the error it produced."""

    request_id: int
    evaluator_id: int
    contents: str | None = ""
    error: str = ""


@dataclass(kw_only=True)
class ListResources:
    """The runtime asks the client to list resources under a URI."""

    request_id: int
    evaluator_id: int
    uri: str


@dataclass(kw_only=True)
class ListResourcesResponse:
    """Elements found under a resource URI, or the error listing produced."""

    request_id: int
    evaluator_id: int
    path_elements: list[PathElement] | None = None
    error: str = ""


@dataclass(kw_only=True)
class ListModules:
    """The runtime asks the client to list modules under a URI."""

    request_id: int
    evaluator_id: int
    uri: str


@dataclass(kw_only=True)
class ListModulesResponse:
    """Elements found under a module URI, or the error listing produced."""

    request_id: int
    evaluator_id: int
    path_elements: list[PathElement] | None = None
    error: str = ""