from execution import RunStatus, StatusBoard, StatusKind


def test_buffer_lifecycle_and_snapshot():
    board = StatusBoard()
    updates = []
    board.subscribe(updates.append)

    buffer = board.create("unit", StatusKind.SUITE)
    buffer.start()
    buffer.append_output("ok 1 works\n")
    buffer.append_output("EOF\n")
    buffer.finish(RunStatus.PASSED, exit_code=0, duration=1.5, total_tests=1)

    snapshot = buffer.snapshot()
    assert snapshot.get("status") == "passed"
    assert snapshot.get("duration") == "1.50"
    assert snapshot.get("exit_code") == "0"
    assert snapshot.get("total_tests") == "1"
    assert snapshot.get_multiline("output") == "ok 1 works\n EOF\n"
    assert [u.status for u in updates] == [RunStatus.RUNNING, RunStatus.PASSED]
    assert buffer.is_terminal()


def test_create_returns_existing_buffer():
    board = StatusBoard()
    first = board.create("rust_build", StatusKind.BUILD_STEP)

    assert board.create("rust_build", StatusKind.BUILD_STEP) is first
    assert board.create("rust_build", StatusKind.SUITE) is not first
    assert board.get("rust_build", StatusKind.BUILD_STEP) is first
    assert board.get("missing", StatusKind.SUITE) is None


def test_board_snapshot_filters_by_kind():
    board = StatusBoard()
    board.create("build", StatusKind.BUILD_STEP)
    board.create("unit", StatusKind.SUITE)
    board.create("integration", StatusKind.SUITE).finish(RunStatus.FAILED, exit_code=1, error="1 failed")

    snapshot = board.snapshot(StatusKind.SUITE)
    entries = snapshot.get_items("entries")

    assert [e.get("name") for e in entries] == ["unit", "integration"]
    assert entries[0].get("status") == "pending"
    assert entries[1].get("error") == "1 failed"
