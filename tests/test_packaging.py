import io
from pathlib import Path

import pytest
from rich.console import Console

from builder import BuildStep, PackagedImage, TestImageBuilder, image_tag
from builder.packaging import suite_files_for
from errors import ImageVerificationError
from lifecycle import LifecycleController
from protocol import Record


@pytest.fixture
def image_builder(runtime, config):
    lifecycle = LifecycleController(runtime, config=config, console=Console(file=io.StringIO()))
    yield TestImageBuilder(runtime, lifecycle, config)
    lifecycle.shutdown()


def full_image(**overrides):
    values = {
        "tag": "cargo-20240101000000",
        "framework": "cargo",
        "artifacts": ["target"],
        "sources": ["Cargo.toml"],
        "tests": ["tests/smoke.rs"],
    }
    values.update(overrides)
    return PackagedImage(**values)


@pytest.mark.parametrize("category", ["artifacts", "sources", "tests"])
def test_empty_category_fails_verification(image_builder, runtime, category):
    with pytest.raises(ImageVerificationError, match=f"has no {category}"):
        image_builder.verify(full_image(**{category: []}))

    assert runtime.runs == []


def test_missing_paths_fail_verification(image_builder, runtime):
    runtime.outcomes = {"missing=0": (1, "missing:/app/tests/smoke.rs\n", "")}

    with pytest.raises(ImageVerificationError) as exc_info:
        image_builder.verify(full_image())

    assert exc_info.value.raw_output == "/app/tests/smoke.rs"
    assert runtime.runs[0]["image"] == "cargo-20240101000000"


def test_complete_image_passes_verification(image_builder, runtime):
    image_builder.verify(full_image())

    script = runtime.runs[0]["command"]
    for path in ("/app/target", "/app/Cargo.toml", "/app/tests/smoke.rs"):
        assert path in script


def test_image_tag_is_framework_and_timestamp():
    assert image_tag("cargo", "20240101120000") == "cargo-20240101120000"
    assert image_tag("My Framework", "1") == "my-framework-1"


def test_suite_files_follow_the_step_platform():
    step = BuildStep(name="rust_build", framework="cargo", docker_image="rust", build_command="cargo build",
                     language="rust")
    suites = Record().set("suites_count", 0)
    suites = suites.append_item("suites", Record({"framework": "cargo", "platform": "rust"})
                                .replace_array("files", ["tests/a.rs"]))
    suites = suites.append_item("suites", Record({"framework": "bats", "platform": "bash"})
                                .replace_array("files", ["tests/b.bats"]))

    assert suite_files_for(step, suites) == ["tests/a.rs"]
