import os

import msgpack
import pytest

from pklbridge.decoder import decode
from pklbridge.errors import EvalError
from pklbridge.evaluator import ModuleSource
from pklbridge.settings import GeneratorSettings, find_project_dir, load_settings

MODULE_NAME = "codegen.GeneratorSettings"


class _StubEvaluator:
    def __init__(self, payload: bytes) -> None:
        self.payload = payload
        self.sources = []

    def evaluate_module(self, source, typ):
        self.sources.append(source)
        return decode(self.payload, typ)


class _FailingEvaluator:
    def evaluate_module(self, source, typ):
        raise EvalError("cannot evaluate settings")


def _encode_settings(module_uri: str, **properties) -> bytes:
    members = [[0x10, name, value] for name, value in properties.items()]
    return msgpack.packb([0x1, MODULE_NAME, module_uri, members])


SETTINGS_URI = "file:///work/settings/generator-settings.pkl"


def test_load_settings_decodes_properties():
    payload = _encode_settings(
        SETTINGS_URI,
        packageMappings=[0x3, {"org.foo.BugHolder": "example.com/bugholder"}],
        basePath="example.com",
        structTags=[0x3, {"json": "%{name},omitempty"}],
        generatorScriptPath="Generate.pkl",
        allowedModules=[0x5, ["file:", "package:"]],
        allowedResources=[0x5, ["env:"]],
        projectDir=None,
        cacheDir=None,
        dryRun=True,
        uri=SETTINGS_URI,
    )
    evaluator = _StubEvaluator(payload)
    source = ModuleSource(SETTINGS_URI)
    settings = load_settings(evaluator, source)
    assert evaluator.sources == [source]
    assert settings == GeneratorSettings(
        package_mappings={"org.foo.BugHolder": "example.com/bugholder"},
        base_path="example.com",
        struct_tags={"json": "%{name},omitempty"},
        generator_script_path="Generate.pkl",
        allowed_modules=["file:", "package:"],
        allowed_resources=["env:"],
        project_dir=None,
        cache_dir=None,
        dry_run=True,
        uri=SETTINGS_URI,
    )


def test_missing_properties_keep_defaults():
    settings = load_settings(
        _StubEvaluator(_encode_settings(SETTINGS_URI, basePath="example.com")),
        ModuleSource(SETTINGS_URI),
    )
    assert settings == GeneratorSettings(base_path="example.com")


def test_relative_dirs_resolve_against_settings_file():
    payload = _encode_settings(SETTINGS_URI, projectDir="../project", cacheDir="cache")
    settings = load_settings(_StubEvaluator(payload), ModuleSource(SETTINGS_URI))
    assert settings.project_dir == "/work/project"
    assert settings.cache_dir == "/work/settings/cache"


def test_absolute_dirs_are_unchanged():
    payload = _encode_settings(SETTINGS_URI, projectDir="/abs/project", cacheDir="/abs/cache")
    settings = load_settings(_StubEvaluator(payload), ModuleSource(SETTINGS_URI))
    assert settings.project_dir == "/abs/project"
    assert settings.cache_dir == "/abs/cache"


def test_unknown_property_is_ignored():
    payload = _encode_settings(SETTINGS_URI, somethingNew="x", dryRun=True)
    settings = load_settings(_StubEvaluator(payload), ModuleSource(SETTINGS_URI))
    assert settings.dry_run is True
    assert settings.base_path == ""


def test_find_project_dir_prefers_flag(tmp_path):
    assert find_project_dir("/given/dir", tmp_path) == "/given/dir"


def test_find_project_dir_walks_upwards(tmp_path):
    (tmp_path / "PklProject").write_text('amends "pkl:Project"\n')
    child = tmp_path / "a" / "b"
    child.mkdir(parents=True)
    assert find_project_dir("", child) == str(tmp_path)


def test_find_project_dir_in_start_itself(tmp_path):
    (tmp_path / "PklProject").write_text('amends "pkl:Project"\n')
    assert find_project_dir(None, tmp_path) == str(tmp_path)


def test_find_project_dir_nearest_wins(tmp_path):
    (tmp_path / "PklProject").write_text('amends "pkl:Project"\n')
    child = tmp_path / "nested"
    child.mkdir()
    (child / "PklProject").write_text('amends "pkl:Project"\n')
    deeper = child / "deeper"
    deeper.mkdir()
    assert find_project_dir("", deeper) == str(child)


def test_find_project_dir_uses_cwd(tmp_path, monkeypatch):
    (tmp_path / "PklProject").write_text('amends "pkl:Project"\n')
    inner = tmp_path / "inner"
    inner.mkdir()
    monkeypatch.chdir(inner)
    assert os.path.realpath(find_project_dir()) == os.path.realpath(tmp_path)


def test_evaluation_error_propagates():
    with pytest.raises(EvalError) as info:
        load_settings(_FailingEvaluator(), ModuleSource(SETTINGS_URI))
    assert str(info.value) == "cannot evaluate settings"