import pytest

from errors import RuntimeUnavailableError
from lifecycle import check_environment, max_concurrent_containers, memory_per_container_gb


@pytest.mark.parametrize(
    "limit,cores,expected,capped",
    [
        (None, 8, 8, False),
        (0, 4, 4, False),
        (2, 8, 2, False),
        (16, 4, 4, True),
    ],
)
def test_max_concurrent_containers(limit, cores, expected, capped):
    record = max_concurrent_containers(limit, cores=cores)

    assert record.get_int("max_containers") == expected
    assert record.get_bool("limited_by_cpu") is capped


def test_memory_split_keeps_headroom():
    assert memory_per_container_gb(16, 4, headroom=0.25) == 3.0


def test_memory_never_drops_below_minimum():
    assert memory_per_container_gb(1, 100) == 0.1


@pytest.mark.parametrize("total,jobs,headroom", [(0, 1, 0.2), (8, 0, 0.2), (8, 2, 1.0)])
def test_memory_rejects_bad_input(total, jobs, headroom):
    with pytest.raises(ValueError):
        memory_per_container_gb(total, jobs, headroom)


def test_check_environment_requires_docker_binary(monkeypatch):
    monkeypatch.setattr("lifecycle.resources.shutil.which", lambda name: None)

    with pytest.raises(RuntimeUnavailableError) as exc_info:
        check_environment(lambda: "runtime")

    assert exc_info.value.error_code == "DOCKER_NOT_INSTALLED"
    assert exc_info.value.suggestions


def test_check_environment_builds_runtime(monkeypatch):
    monkeypatch.setattr("lifecycle.resources.shutil.which", lambda name: "/usr/bin/docker")

    assert check_environment(lambda: "runtime") == "runtime"
