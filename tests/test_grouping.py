from pathlib import Path

import pytest

from conftest import write_files
from grouping import (
    AdaptiveGrouper,
    GroupingStrategy,
    group_by_convention,
    group_by_directory,
    group_by_file,
    group_by_subdirectory,
)


def _suites(record):
    return {item.get("name"): item.get_array("files") for item in record.get_items("suites")}


def test_flat_src_layout_falls_through_to_directory(tmp_path: Path):
    files = ["src/foo_test.x", "src/bar_test.x"]

    result = AdaptiveGrouper().group(tmp_path, files)

    assert result.strategy == GroupingStrategy.DIRECTORY
    assert _suites(result.suites) == {"src": files}


def test_convention_requires_a_conventional_directory(tmp_path: Path):
    assert group_by_convention(tmp_path, ["src/foo_test.x"]).array_count("suites") == 0

    record = group_by_convention(
        tmp_path, ["tests/unit/a.rs", "tests/integrations/b.rs", "tests/perf/c.rs", "tests/misc/d.rs"]
    )
    assert _suites(record) == {
        "unit": ["tests/unit/a.rs"],
        "integration": ["tests/integrations/b.rs"],
        "performance": ["tests/perf/c.rs"],
        "misc": ["tests/misc/d.rs"],
    }


def test_convention_wins_in_chain(tmp_path: Path):
    result = AdaptiveGrouper().group(tmp_path, ["tests/unit/a_test.rs", "tests/e2e/flow.rs"])

    assert result.strategy == GroupingStrategy.CONVENTION
    assert set(_suites(result.suites)) == {"unit", "e2e"}


def test_subdirectory_keeps_nested_structure(tmp_path: Path):
    record = group_by_subdirectory(tmp_path, ["tests/bats/a.bats", "tests/bats/b.bats", "tests/c.bats"])

    assert _suites(record) == {"tests_bats": ["tests/bats/a.bats", "tests/bats/b.bats"], "tests": ["tests/c.bats"]}


def test_subdirectory_skips_flat_layouts(tmp_path: Path):
    assert group_by_subdirectory(tmp_path, ["src/a.x", "lib/b.x"]).array_count("suites") == 0


def test_directory_groups_root_files_under_root(tmp_path: Path):
    record = group_by_directory(tmp_path, ["a_test.x", "pkg/b_test.x"])

    assert _suites(record) == {"root": ["a_test.x"], "pkg": ["pkg/b_test.x"]}


def test_file_level_is_one_suite_per_file(tmp_path: Path):
    record = group_by_file(tmp_path, ["tests/alpha.bats", "tests/beta.bats"])

    assert _suites(record) == {"alpha": ["tests/alpha.bats"], "beta": ["tests/beta.bats"]}


def test_absolute_paths_are_made_relative(tmp_path: Path):
    files = [str(tmp_path / "src" / "a_test.x")]
    result = AdaptiveGrouper().group(tmp_path, files)

    assert list(_suites(result.suites)) == ["src"]


def test_configuration_wins_over_every_strategy(tmp_path: Path):
    write_files(tmp_path, {
        "tests/unit/a.bats": "@test 'a' { true; }\n",
        "tests/unit/b.bats": "@test 'b' { true; }\n",
        "suitey.toml": '[[suites]]\nname = "everything"\nfiles = ["tests/**/*.bats"]\n',
    })

    result = AdaptiveGrouper().group(tmp_path, ["tests/unit/a.bats", "tests/unit/b.bats"], platform="bash")

    assert result.strategy == GroupingStrategy.CONFIGURATION
    assert _suites(result.suites) == {"everything": ["tests/unit/a.bats", "tests/unit/b.bats"]}


def test_malformed_configuration_falls_back(tmp_path: Path):
    write_files(tmp_path, {
        "tests/unit/a.bats": "",
        "suitey.toml": "[[suites]]\nname = \n",
    })

    result = AdaptiveGrouper().group(tmp_path, ["tests/unit/a.bats"])

    assert result.strategy == GroupingStrategy.CONVENTION


@pytest.mark.parametrize("platform,expected", [("rust", {"rust_only"}), ("bash", set())])
def test_configuration_restricted_to_platform(tmp_path: Path, platform, expected):
    write_files(tmp_path, {
        "tests/a.rs": "",
        "suitey.toml": '[[suites]]\nname = "rust_only"\nfiles = ["tests/*.rs"]\nplatform = "rust"\n',
    })

    result = AdaptiveGrouper().group(tmp_path, ["tests/a.rs"], platform=platform)

    if expected:
        assert set(_suites(result.suites)) == expected
    else:
        assert result.strategy != GroupingStrategy.CONFIGURATION


def test_no_files_means_no_suites(tmp_path: Path):
    assert AdaptiveGrouper().group(tmp_path, []).suites.array_count("suites") == 0
