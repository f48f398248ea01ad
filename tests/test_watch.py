import asyncio
from pathlib import Path

import pytest

from wasmbuildkit.watch import (
    ChangeKind,
    FsEvent,
    WatchSystem,
    build_error_reason,
)
from wasmbuildkit.ws import State


class _Recorder:
    def __init__(self, fail=None):
        self.calls = 0
        self.fail = fail

    async def __call__(self):
        self.calls += 1
        if self.fail is not None:
            raise self.fail


def _system(root, build=None, **kwargs):
    kwargs.setdefault("enable_cooldown", False)
    return WatchSystem([root], build or _Recorder(), **kwargs)


def test_error_reason_without_cause():
    assert build_error_reason(RuntimeError("boom")) == "boom\n\n"


def test_error_reason_with_chain():
    try:
        try:
            try:
                raise ValueError("root")
            except ValueError as inner:
                raise OSError("middle") from inner
        except OSError as middle:
            raise RuntimeError("outer") from middle
    except RuntimeError as err:
        reason = build_error_reason(err)
    assert reason == "outer\n\nCaused by:\n\t0: middle\n\t1: root\n"


def test_error_reason_suppressed_context():
    try:
        try:
            raise ValueError("hidden")
        except ValueError:
            raise RuntimeError("shown") from None
    except RuntimeError as err:
        reason = build_error_reason(err)
    assert "hidden" not in reason
    assert reason.startswith("shown\n\n")


def test_missing_watch_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        WatchSystem([tmp_path / "absent"], _Recorder())


def test_relevant_kinds(tmp_path):
    root = tmp_path.resolve()
    target = root / "index.html"
    target.write_text("x")
    system = _system(root)
    assert system.is_event_relevant(FsEvent(ChangeKind.CREATE, (target,)))
    assert system.is_event_relevant(FsEvent(ChangeKind.MODIFY_DATA, (target,)))
    assert not system.is_event_relevant(FsEvent(ChangeKind.ACCESS, (target,)))
    assert not system.is_event_relevant(FsEvent(ChangeKind.MODIFY_METADATA, (target,)))


def test_missing_path_not_relevant(tmp_path):
    system = _system(tmp_path)
    event = FsEvent(ChangeKind.REMOVE, (tmp_path / "gone.txt",))
    assert system.is_event_relevant(event) is False


def test_blacklisted_path(tmp_path):
    git = tmp_path / ".git"
    git.mkdir()
    head = git / "HEAD"
    head.write_text("ref")
    system = _system(tmp_path)
    assert not system.is_event_relevant(FsEvent(ChangeKind.MODIFY_DATA, (head,)))


def test_ignored_paths(tmp_path):
    dist = tmp_path / "dist"
    dist.mkdir()
    out = dist / "app.js"
    out.write_text("js")
    event = FsEvent(ChangeKind.CREATE, (out,))
    system = _system(tmp_path)
    assert system.is_event_relevant(event)
    system.update_ignore_list(dist)
    assert not system.is_event_relevant(event)


def test_ignored_from_constructor(tmp_path):
    root = tmp_path.resolve()
    dist = root / "dist"
    dist.mkdir()
    out = dist / "a.css"
    out.write_text("css")
    system = _system(root, ignored_paths=[dist])
    assert not system.is_event_relevant(FsEvent(ChangeKind.CREATE, (out,)))


def test_update_ignore_list_no_duplicates(tmp_path):
    system = _system(tmp_path)
    system.update_ignore_list(tmp_path)
    system.update_ignore_list(tmp_path)
    assert system.ignored_paths == [tmp_path.resolve()]


def test_update_ignore_list_keeps_missing_path(tmp_path):
    system = _system(tmp_path)
    missing = tmp_path / "not-there"
    system.update_ignore_list(missing)
    assert system.ignored_paths == [missing]


@pytest.mark.asyncio
async def test_build_propagates_error(tmp_path):
    system = _system(tmp_path, _Recorder(fail=RuntimeError("broken")))
    with pytest.raises(RuntimeError, match="broken"):
        await system.build()


@pytest.mark.asyncio
async def test_event_spawns_single_build(tmp_path):
    target = tmp_path / "main.rs"
    target.write_text("fn main() {}")
    recorder = _Recorder()
    states = []
    system = _system(tmp_path, recorder, ws_state=states.append)
    event = FsEvent(ChangeKind.MODIFY_DATA, (target,))

    await system.handle_watch_event(event)
    await asyncio.sleep(0.05)
    assert recorder.calls == 1
    assert system.is_build_active()

    await system.handle_watch_event(event)
    await asyncio.sleep(0.05)
    assert recorder.calls == 1

    await system.build_complete(None)
    await asyncio.sleep(0.05)
    assert states == [State.ok()]
    assert recorder.calls == 2


@pytest.mark.asyncio
async def test_irrelevant_event_does_not_build(tmp_path):
    recorder = _Recorder()
    system = _system(tmp_path, recorder)
    await system.handle_watch_event(FsEvent(ChangeKind.ACCESS, (tmp_path,)))
    await asyncio.sleep(0.02)
    assert recorder.calls == 0
    assert not system.is_build_active()


@pytest.mark.asyncio
async def test_build_failure_reported(tmp_path):
    states = []
    system = _system(tmp_path, ws_state=states.append)
    await system.build_complete(RuntimeError("compile error"))
    assert states == [State.failed("compile error\n\n")]
    assert not system.is_build_active()


@pytest.mark.asyncio
async def test_no_error_reporting(tmp_path):
    states = []
    system = _system(tmp_path, ws_state=states.append, no_error_reporting=True)
    await system.build_complete(RuntimeError("compile error"))
    await system.build_complete(None)
    assert states == [State.ok()]


@pytest.mark.asyncio
async def test_cooldown_suppresses_build(tmp_path):
    target = tmp_path / "style.scss"
    target.write_text("body {}")
    recorder = _Recorder()
    system = WatchSystem([tmp_path], recorder, enable_cooldown=True)
    await system.handle_watch_event(FsEvent(ChangeKind.CREATE, (target,)))
    await asyncio.sleep(0.02)
    assert recorder.calls == 0
    assert not system.is_build_active()


@pytest.mark.asyncio
async def test_run_builds_on_file_change(tmp_path):
    root = tmp_path.resolve()
    recorder = _Recorder()
    states = []
    system = WatchSystem(
        [root], recorder, poll=0.05, enable_cooldown=False, ws_state=states.append
    )
    shutdown = asyncio.Event()
    runner = asyncio.create_task(system.run(shutdown))
    await asyncio.sleep(0.3)

    (root / "new.txt").write_text("content")
    for _ in range(100):
        if states:
            break
        await asyncio.sleep(0.05)

    shutdown.set()
    await asyncio.wait_for(runner, timeout=10)
    assert recorder.calls >= 1
    assert states[0] == State.ok()


@pytest.mark.asyncio
async def test_run_stops_on_shutdown(tmp_path):
    recorder = _Recorder()
    system = _system(Path(tmp_path), recorder, poll=0.05)
    shutdown = asyncio.Event()
    shutdown.set()
    await asyncio.wait_for(system.run(shutdown), timeout=10)
    assert recorder.calls == 0