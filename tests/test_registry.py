from pathlib import Path

import pytest

from errors import ModuleNotFoundInRegistry, RegistrationError
from protocol import Record
from registry import Module, ModuleRegistry, ModuleType


class StubModule(Module):
    identifier = "stub-module"
    name = "stub"
    module_type = ModuleType.LANGUAGE
    language = "stub"
    capabilities = ("testing", "stubbing")

    def detect(self, project_root: Path) -> Record:
        return self.not_detected(self.language)

    def discover_test_suites(self, project_root: Path, platform: Record) -> Record:
        return Record().set("suites_count", 0)

    def detect_build_requirements(self, project_root: Path, platform: Record) -> Record:
        return self.no_build()

    def get_build_steps(self, project_root: Path, requirements: Record) -> Record:
        return Record().set("build_steps_count", 0)

    def execute_test_suite(self, suite, test_image, run):
        return self.run_and_record(run, "true")

    def parse_test_results(self, output: str, exit_code: int) -> Record:
        return Record({"status": "passed" if exit_code == 0 else "failed"})


class OtherStub(StubModule):
    identifier = "other-stub"
    name = "other"


class MissingParser:
    identifier = "broken-module"
    name = "broken"
    module_type = "language"

    def detect(self, project_root):
        return Record()

    def check_container_environment(self, project_root, platform):
        return Record()

    def discover_test_suites(self, project_root, platform):
        return Record()

    def detect_build_requirements(self, project_root, platform):
        return Record()

    def get_build_steps(self, project_root, requirements):
        return Record()

    def execute_test_suite(self, suite, test_image, run):
        return Record()

    def get_metadata(self):
        return Record({"language": "broken"})


def test_builtins_are_registered_in_order():
    registry = ModuleRegistry.with_builtins()

    assert [m.identifier for m in registry.modules()] == [
        "rust-module", "bash-module", "cargo-module", "bats-module",
    ]
    assert registry.frozen


def test_duplicate_identifier_is_rejected_and_first_stays():
    registry = ModuleRegistry()
    first = registry.register(StubModule())

    with pytest.raises(RegistrationError) as exc_info:
        registry.register(StubModule())

    assert "already registered" in exc_info.value.message
    assert registry.get("stub-module") is first
    assert len(registry) == 1


def test_missing_method_is_rejected():
    registry = ModuleRegistry()

    with pytest.raises(RegistrationError) as exc_info:
        registry.register(MissingParser())

    assert "parse_test_results" in exc_info.value.message
    assert "broken-module" not in registry


def test_try_register_does_not_raise():
    registry = ModuleRegistry()
    assert registry.try_register(StubModule())
    assert not registry.try_register(StubModule())


def test_empty_identifier_is_rejected():
    module = StubModule()
    module.identifier = ""

    with pytest.raises(RegistrationError, match="cannot be empty"):
        ModuleRegistry().register(module)


def test_frozen_registry_refuses_registration():
    registry = ModuleRegistry.with_builtins()

    with pytest.raises(RegistrationError):
        registry.register(StubModule())


def test_lookup_by_type_capability_and_path():
    registry = ModuleRegistry.with_builtins()

    assert [m.identifier for m in registry.by_type("framework")] == ["cargo-module", "bats-module"]
    assert [m.identifier for m in registry.by_capability("compilation")] == ["rust-module", "cargo-module"]
    assert registry.load("framework/cargo").identifier == "cargo-module"
    assert registry.load("language/bash").identifier == "bash-module"
    assert "compilation" in registry.capabilities()


def test_unknown_lookups_raise():
    registry = ModuleRegistry.with_builtins()

    with pytest.raises(ModuleNotFoundInRegistry):
        registry.get("nope")
    with pytest.raises(ModuleNotFoundInRegistry):
        registry.load("project/nope")
    assert registry.find("nope") is None


def test_metadata_reports_priority_and_language():
    registry = ModuleRegistry.with_builtins()
    metadata = registry.metadata("cargo-module")

    assert metadata.get("language") == "rust"
    assert metadata.get("module_type") == "framework"
    assert metadata.get_int("priority") == 1


def test_resolve_owner_prefers_higher_type():
    registry = ModuleRegistry.with_builtins()
    rust, cargo = registry.get("rust-module"), registry.get("cargo-module")

    owner, warning = registry.resolve_owner([rust, cargo])

    assert owner is cargo
    assert warning is None


def test_resolve_owner_tie_warns_and_first_registered_wins():
    registry = ModuleRegistry()
    first = registry.register(StubModule())
    second = registry.register(OtherStub())

    owner, warning = registry.resolve_owner([second, first])

    assert owner is first
    assert "share priority" in warning


def test_explicit_priority_overrides_type_default():
    registry = ModuleRegistry()
    module = OtherStub()
    module.priority = 5
    registry.register(StubModule())
    registry.register(module)

    owner, _ = registry.resolve_owner(registry.modules())
    assert owner is module
