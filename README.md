# pklbridge

`pklbridge` turns values produced by the Pkl configuration language into
ordinary Python objects. It also manages evaluators that talk to a Pkl runtime
through a message channel that you supply.

## Modules

- **`pklbridge.decoder`**: decodes evaluated values.
  - Pkl sends evaluated values in a msgpack-based encoding.
    `decode(data, typ, schemas=None)`, or `Decoder(data, schemas).decode(typ)`,
    reads those bytes and builds the value described by `typ`.
  - `typ` may be any of these:
    - `bool`, `int`, `float` or `str`
    - `list[...]`, `dict[..., ...]`, `set[...]` or `frozenset[...]`
    - `Optional`/union types
    - `Enum` subclasses, matched by value
    - dataclasses
    - `Any`
  - Pkl objects of class `pkl:base#Dynamic`, and anything decoded into
    `values.Object`, become generic `Object` values.
  - `schemas` maps a Pkl class name to the dataclass to build for it. A
    registered schema is used even when it differs from `typ`, so polymorphic
    values decode into the right subclass.
  - `ObjectCode` lists the type codes of the encoding.
- **`pklbridge.values`**: the Pkl value types.
  - The types are `Object`, `Duration`, `DataSize`, `IntSeq`, `Regex`, `Pair`,
    `Class` and `TypeAlias`. `Duration` and `DataSize` reject unknown units.
  - `pkl_field(name, **kwargs)` binds a dataclass field to a Pkl property whose
    name differs from the attribute. A name of `"-"` excludes the field.
  - `struct_fields(cls)` returns the property-to-field mapping that the decoder
    uses.
- **`pklbridge.evaluator`**: evaluators and the manager that shares a backend
  between them.
  - `EvaluatorManager(backend)` creates `Evaluator` instances that share one
    `ManagerBackend`.
  - `Evaluator` offers these methods:
    - `evaluate_module`
    - `evaluate_output_text`
    - `evaluate_output_value`
    - `evaluate_output_files`
    - `evaluate_expression`
    - `evaluate_expression_raw`
  - Each method takes a `ModuleSource(uri, contents=None)`.
- **`pklbridge.messages`**: the request and response records exchanged with
  the runtime. Examples are `CreateEvaluator`, `Evaluate`, `EvaluateResponse`,
  `Log`, `ReadResource`, `ListModules` and `PathElement`.
- **`pklbridge.errors`**: every error derives from `PklError`.
  - `EvalError` carries the runtime's own error output.
  - `InternalError` marks unexpected failures.
- **`pklbridge.settings`**: settings for code generation.
  - `GeneratorSettings` is a dataclass of code-generation settings.
  - `load_settings(evaluator, source)` evaluates those settings from a module.
    It resolves relative `project_dir` and `cache_dir` against the directory of
    the settings module.
  - `find_project_dir(project_dir_flag=None, start=None)` returns the flag if
    one is given. Otherwise it walks up from `start`, or from the working
    directory, to the nearest directory that holds a `PklProject` file. It
    returns `None` if there is none.
- **`pklbridge.fibreader`**: an example resource reader.
  - `FibonacciReader` serves `fib:<n>` resources as the decimal text of the
    n-th Fibonacci number. It raises `ValueError` when `n` is not a positive
    integer.
  - `fibonacci(n)` computes those numbers.

## Decoding into your own classes

```python
from dataclasses import dataclass

from pklbridge.decoder import decode
from pklbridge.values import pkl_field


@dataclass
class Server:
    host_name: str = pkl_field("hostName")
    port: int = pkl_field("port")


server = decode(payload, Server, {"myapp.Config#Server": Server})
```

How properties are matched:

- A property with no matching field is skipped, and a warning is logged.
- A `null` property value leaves the field at its default. If the field has no
  default, it gets the empty value of its type: `0`, `""`, `False`, an empty
  collection, or `None`.
- A field typed `float` accepts values sent either as integers or as floats.

## Driving evaluators

A backend subclasses `ManagerBackend` and implements three methods:

- `send(message)`
- `messages()`, which yields incoming messages from `pklbridge.messages`
- `version()`

It may also override `start()` and `stop()`.

On the first `new_evaluator(options)` call, the manager calls `start()` and
begins dispatching `messages()` on a background thread.

`EvaluatorOptions` carries the following:

- the logger, which receives `trace(message, frame_uri)` and
  `warn(message, frame_uri)`. By default it writes to `logging`.
- resource and module readers
- allowed modules and resources
- module paths, environment and properties
- output format, cache and root directories, and timeout
- the `schemas` used for decoding

A reader has these members:

- a `scheme` attribute
- `read(uri)` and `list_elements(uri)` methods, where `uri` is a
  `urllib.parse.SplitResult`
- optional `has_hierarchical_uris`, `is_globbable` and `is_local` attributes

If a reader raises, the error text is reported back to the runtime.

## Errors and closing

- An evaluation that fails in the runtime raises `EvalError`.
- Using a closed evaluator raises `PklError("evaluator is closed")`.
- Asking a closed manager for an evaluator raises `PklError`.
- `EvaluatorManager.close()` wakes every waiting request.
  - A waiting `new_evaluator` returns `None`.
  - A waiting `evaluate_expression_raw` returns empty bytes.
  - If the backend's message stream fails, the manager closes and waiting
    requests receive that error.
- `interrupt(error)` wakes every waiting request with the given error.

## What this package does not do

It does not start or embed a Pkl runtime. You provide the `ManagerBackend`
that carries messages to and from one. It has no command-line tool, and it
does not generate code. `pklbridge.settings` only loads and locates the
settings for such a tool.