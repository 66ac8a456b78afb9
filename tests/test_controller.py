"""Tests for OnchangeController - the engine wiring."""

import asyncio
import errno
import os
import time

import pytest

from conftest import FakeRunner
from onchange.controller import OnchangeController
from onchange_core.config import RuleTable
from onchange_core.models import DispatchState, ExecutionMode, RawEvent, WatchTarget
from onchange_core.watchers import WatchError


class FakeWatcher:
    """In-memory watcher; tests push raw events through `emit`."""

    def __init__(self, sink, missing=()):
        self.sink = sink
        self.missing = set(missing)
        self.targets = []
        self.started = False
        self.stopped = False

    def add_watch(self, target):
        if target.path in self.missing:
            raise WatchError(target, "path does not exist")
        self.targets.append(target)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def emit(self, path):
        self.sink(RawEvent(path=str(path), observed_at=time.monotonic()))


@pytest.fixture
def fake_watchers():
    created = []

    def factory_for(missing=()):
        def factory(config, sink):
            watcher = FakeWatcher(sink, missing=missing)
            created.append(watcher)
            return watcher

        return factory

    factory_for.created = created
    return factory_for


@pytest.mark.asyncio
async def test_attach_detach(make_config, notifier, fake_watchers, tmp_path):
    controller = OnchangeController(make_config(), notifier, watcher_factory=fake_watchers())
    loop = asyncio.get_running_loop()

    controller.attach(loop)
    watcher = fake_watchers.created[0]
    assert watcher.started
    assert controller.active_targets == [WatchTarget(tmp_path)]
    assert notifier.infos[-1] == f"Watching: {tmp_path}"

    # Second attach is a no-op
    controller.attach(loop)
    assert len(fake_watchers.created) == 1

    controller.detach()
    assert watcher.stopped
    assert controller._loop is None


@pytest.mark.asyncio
async def test_attach_with_not_running_loop(make_config, fake_watchers):
    controller = OnchangeController(make_config(), watcher_factory=fake_watchers())
    loop = asyncio.new_event_loop()
    try:
        with pytest.raises(RuntimeError, match="Event loop must be running"):
            controller.attach(loop)
    finally:
        loop.close()


@pytest.mark.asyncio
async def test_bad_target_dropped(make_config, notifier, fake_watchers, tmp_path):
    good = WatchTarget(tmp_path)
    bad = WatchTarget(tmp_path / "missing")
    config = make_config(targets=[bad, good])
    controller = OnchangeController(config, notifier, watcher_factory=fake_watchers(missing={bad.path}))

    controller.attach(asyncio.get_running_loop())
    try:
        assert controller.active_targets == [good]
        assert len(notifier.errors) == 1
        assert "missing" in notifier.errors[0]
    finally:
        controller.detach()


@pytest.mark.asyncio
async def test_no_valid_targets_is_fatal(make_config, notifier, fake_watchers, tmp_path):
    bad = WatchTarget(tmp_path / "missing")
    controller = OnchangeController(
        make_config(targets=[bad]), notifier, watcher_factory=fake_watchers(missing={bad.path})
    )

    with pytest.raises(WatchError, match="No valid watch targets"):
        controller.attach(asyncio.get_running_loop())
    assert controller._loop is None


@pytest.mark.asyncio
async def test_raw_events_debounced_and_dispatched(make_config, notifier, fake_watchers, tmp_path):
    runner = FakeRunner()
    config = make_config(command="echo {name.ext}", debounce_window=0.05)
    controller = OnchangeController(config, notifier, runner=runner, watcher_factory=fake_watchers(), cwd=tmp_path)
    controller.attach(asyncio.get_running_loop())
    watcher = fake_watchers.created[0]

    try:
        for _ in range(4):
            watcher.emit(tmp_path / "a.txt")
        watcher.emit(tmp_path / "b.txt")
        await asyncio.sleep(0.01)
        assert controller.pending_count == 2

        await asyncio.sleep(0.2)
    finally:
        controller.detach()

    assert sorted(runner.started) == ["echo a.txt", "echo b.txt"]
    assert len(notifier.changes) == 2


@pytest.mark.asyncio
async def test_events_from_other_thread(make_config, notifier, fake_watchers, tmp_path):
    config = make_config(debounce_window=0.02)
    controller = OnchangeController(config, notifier, watcher_factory=fake_watchers(), cwd=tmp_path)
    controller.attach(asyncio.get_running_loop())
    watcher = fake_watchers.created[0]

    try:
        await asyncio.to_thread(watcher.emit, tmp_path / "threaded.txt")
        await asyncio.sleep(0.2)
    finally:
        controller.detach()

    assert notifier.changes == [f"Change Detected: {tmp_path / 'threaded.txt'}"]


@pytest.mark.asyncio
async def test_detach_drops_pending_changes(make_config, notifier, fake_watchers, tmp_path):
    config = make_config(debounce_window=0.1)
    controller = OnchangeController(config, notifier, watcher_factory=fake_watchers())
    controller.attach(asyncio.get_running_loop())
    fake_watchers.created[0].emit(tmp_path / "a.txt")
    await asyncio.sleep(0.01)

    controller.detach()
    await asyncio.sleep(0.2)

    assert notifier.changes == []
    assert controller.pending_count == 0


@pytest.mark.asyncio
async def test_run_forever_until_stopped(make_config, notifier, fake_watchers, tmp_path):
    controller = OnchangeController(make_config(), notifier, watcher_factory=fake_watchers())

    task = asyncio.create_task(controller.run_forever())
    await asyncio.sleep(0.01)
    assert fake_watchers.created[0].started

    controller.request_stop()
    await asyncio.wait_for(task, timeout=1.0)
    assert fake_watchers.created[0].stopped


@pytest.mark.asyncio
async def test_rules_announced_without_explicit_command(make_config, notifier, fake_watchers):
    table = RuleTable()
    table.merge({"latex": {"extensions": "tex", "command": "latexmk {rpath}"}})
    controller = OnchangeController(make_config(rule_table=table), notifier, watcher_factory=fake_watchers())

    controller.attach(asyncio.get_running_loop())
    controller.detach()

    assert notifier.infos[0] == "Rule: latex (tex) ⇒ latexmk {rpath}"


@pytest.mark.asyncio
async def test_trial_run(make_config, notifier, tmp_path):
    runner = FakeRunner()
    targets = [WatchTarget(tmp_path / "a.c"), WatchTarget(tmp_path / "b.swp")]
    config = make_config(
        targets=targets,
        command="cc {name.ext}",
        mode=ExecutionMode.CONCURRENT,
        ignore_patterns=("*.swp",),
    )
    controller = OnchangeController(config, notifier, runner=runner, cwd=tmp_path)

    states = await controller.trial_run()

    assert states == [DispatchState.EXECUTING]
    assert runner.finished == ["cc a.c"]
    assert controller.dispatcher.active_count == 0


@pytest.mark.asyncio
async def test_end_to_end_recursive_report_only(make_config, notifier, tmp_path):
    """`onchange --recursive . --template '{rpath}'`, editing ./sub/x.md once."""
    (tmp_path / "sub").mkdir()
    runner = FakeRunner()
    config = make_config(
        targets=[WatchTarget(tmp_path, recursive=True)],
        template="{rpath}",
        debounce_window=0.1,
        poll_interval=0.05,
        force_polling=True,
    )
    controller = OnchangeController(config, notifier, runner=runner, cwd=tmp_path)
    controller.attach(asyncio.get_running_loop())

    try:
        await asyncio.sleep(0.2)
        await asyncio.to_thread((tmp_path / "sub" / "x.md").write_text, "edit")
        for _ in range(40):
            if notifier.changes:
                break
            await asyncio.sleep(0.05)
        await asyncio.sleep(0.3)
    finally:
        controller.detach()

    assert notifier.changes == [os.path.join("sub", "x.md")]
    assert runner.started == []


@pytest.mark.asyncio
async def test_unreadable_target_dropped_with_real_watcher(make_config, notifier, tmp_path, monkeypatch):
    good = tmp_path / "good"
    locked = tmp_path / "locked"
    good.mkdir()
    locked.mkdir()
    real_scandir = os.scandir

    def scandir(path="."):
        if os.path.abspath(path) == str(locked):
            raise PermissionError(errno.EACCES, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", scandir)
    config = make_config(
        targets=[WatchTarget(good), WatchTarget(locked)],
        poll_interval=0.05,
        force_polling=True,
    )
    controller = OnchangeController(config, notifier, cwd=tmp_path)

    controller.attach(asyncio.get_running_loop())
    try:
        assert controller.active_targets == [WatchTarget(good)]
        assert len(notifier.errors) == 1
        assert "locked" in notifier.errors[0]
        assert notifier.infos[-1] == f"Watching: {good}"
    finally:
        controller.detach()
