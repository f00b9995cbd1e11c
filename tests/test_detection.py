from pathlib import Path

import pytest

from conftest import write_files
from detection import BuildRequirementResolver, PlatformDetector, TestSuiteDetector, platforms_from_record
from detection.counting import count_bats_tests, count_rust_tests
from protocol import Record
from registry import ModuleRegistry

RUST_TEST = "#[test]\nfn it_works() { assert!(true); }\n"
BATS_TEST = "#!/usr/bin/env bats\n@test \"first\" { true; }\n@test \"second\" { true; }\n"


@pytest.fixture
def registry() -> ModuleRegistry:
    return ModuleRegistry.with_builtins()


@pytest.fixture
def mixed_project(tmp_path: Path) -> Path:
    return write_files(tmp_path, {
        "Cargo.toml": '[package]\nname = "mixed"\nversion = "0.1.0"\n',
        "tests/unit/a_test.rs": RUST_TEST,
        "tests/bats/b.bats": BATS_TEST,
    })


def test_detects_both_platforms_with_framework_owners(registry, mixed_project):
    record = PlatformDetector(registry).detect(mixed_project)
    platforms = {p.language: p for p in platforms_from_record(record)}

    assert set(platforms) == {"rust", "bash"}
    assert platforms["rust"].confidence == "high"
    assert platforms["rust"].module_id == "cargo-module"
    assert platforms["bash"].confidence == "high"
    assert platforms["bash"].module_id == "bats-module"
    assert record.get_array("platform_warnings") == []


def test_each_platform_contributes_one_suite(registry, mixed_project):
    platforms = PlatformDetector(registry).detect(mixed_project)
    suites = TestSuiteDetector(registry).discover(platforms)

    items = suites.get_items("suites")
    assert len(items) == 2
    by_platform = {s.get("platform"): s for s in items}
    assert by_platform["rust"].get_array("files") == ["tests/unit/a_test.rs"]
    assert by_platform["bash"].get_array("files") == ["tests/bats/b.bats"]
    assert by_platform["bash"].get_int("test_count") == 2
    assert [s.get("platform_index") for s in items] == ["0", "1"]


def test_no_platforms_is_not_an_error(registry, tmp_path):
    write_files(tmp_path, {"README.md": "nothing here"})
    platforms = PlatformDetector(registry).detect(tmp_path)

    assert platforms.array_count("platforms") == 0
    assert TestSuiteDetector(registry).discover(platforms).array_count("suites") == 0
    assert not BuildRequirementResolver(registry).resolve(platforms).get_bool("requires_build")


class ExplodingModule:
    """Duck-typed module whose probes always fail."""

    identifier = "exploding-module"
    name = "exploding"
    module_type = "project"
    test_image = "busybox"

    def detect(self, project_root):
        raise RuntimeError("probe crashed")

    def check_container_environment(self, project_root, platform):
        return Record({"available": True})

    def discover_test_suites(self, project_root, platform):
        raise RuntimeError("discovery crashed")

    def detect_build_requirements(self, project_root, platform):
        return "not a record"

    def get_build_steps(self, project_root, requirements):
        return Record()

    def execute_test_suite(self, suite, test_image, run):
        return Record()

    def parse_test_results(self, output, exit_code):
        return Record()

    def get_metadata(self):
        return Record({"language": "exploding"})


def test_failing_probe_is_skipped(mixed_project):
    registry = ModuleRegistry.with_builtins(extra=[ExplodingModule()])
    record = PlatformDetector(registry).detect(mixed_project)

    assert {p.language for p in platforms_from_record(record)} == {"rust", "bash"}


def test_failing_discovery_leaves_other_platforms(registry, mixed_project):
    platforms = PlatformDetector(registry).detect(mixed_project)
    broken = platforms.set("platforms_0_module_id", "missing-module")

    suites = TestSuiteDetector(registry).discover(broken)

    assert [s.get("platform") for s in suites.get_items("suites")] == ["bash"]
    assert suites.array_count("suite_warnings") == 1


def test_build_requirements_merge_additively(registry, mixed_project):
    platforms = PlatformDetector(registry).detect(mixed_project)
    resolver = BuildRequirementResolver(registry)
    requirements = resolver.resolve(platforms)

    assert requirements.get_bool("requires_build")
    assert requirements.get_array("build_commands") == ["cargo build --tests"]
    assert requirements.get_array("build_artifacts") == ["target"]
    assert requirements.array_count("build_requirements") == 2

    steps = resolver.build_steps(platforms, requirements)
    step = steps.get_items("build_steps")[0]
    assert steps.array_count("build_steps") == 1
    assert step.get("step_name") == "rust_build"
    assert step.get("module_id") == "cargo-module"
    assert step.get("docker_image") == "rust:1.70-slim"
    assert step.get("working_directory", "") == ""
    assert step.get_array("environment") == ["CARGO_TARGET_DIR=${SUITEY_ARTIFACT_DIR}/target"]


def test_cargo_splits_unit_and_integration(registry, tmp_path):
    write_files(tmp_path, {
        "Cargo.toml": "[package]\n",
        "src/lib.rs": "pub fn f() {}\n#[cfg(test)]\nmod tests {\n    #[test]\n    fn a() {}\n}\n",
        "tests/integration_test.rs": RUST_TEST + RUST_TEST.replace("it_works", "again"),
    })
    platforms = PlatformDetector(registry).detect(tmp_path)
    suites = {s.get("name"): s for s in TestSuiteDetector(registry).discover(platforms).get_items("suites")}

    assert suites["unit_tests"].get_array("files") == ["src/lib.rs"]
    assert suites["unit_tests"].get_int("test_count") == 1
    assert suites["integration_tests"].get_int("test_count") == 2


def test_counting(tmp_path):
    write_files(tmp_path, {
        "a.bats": BATS_TEST,
        "lib.rs": "#[test]\nfn outside() {}\n#[cfg(test)]\nmod t {\n#[test]\nfn inside() {}\n}\n",
    })

    assert count_bats_tests(tmp_path / "a.bats") == 2
    assert count_rust_tests(tmp_path / "lib.rs") == 1
    assert count_rust_tests(tmp_path / "lib.rs", integration=True) == 2


def requiring_build(module_id, framework):
    return Record().set("build_requirements_count", 0).append_item(
        "build_requirements", Record({"requires_build": True, "module_id": module_id, "framework": framework})
    )


@pytest.mark.parametrize("steps, error", [
    (RuntimeError("toolchain missing"), "Build step collection failed: toolchain missing"),
    ("not a record", "Build step collection returned str, not a record"),
    (Record().set("build_steps_count", 0), "Build required but no build steps were defined"),
])
def test_unusable_build_steps_are_reported_with_framework(steps, error):
    module = ExplodingModule()

    def get_build_steps(project_root, requirements):
        if isinstance(steps, Exception):
            raise steps
        return steps

    module.get_build_steps = get_build_steps
    resolver = BuildRequirementResolver(ModuleRegistry.with_builtins(extra=[module]))

    result = resolver.build_steps(Record(), requiring_build("exploding-module", "boom"))

    assert result.array_count("build_steps") == 0
    assert [(e.get("framework"), e.get("error")) for e in result.get_items("build_step_errors")] == [("boom", error)]
