"""
Tests for the transfer engine.

Runs real tasks between local directories (tmp_path) with a fixed clock,
plus fake backends for the failure paths that are hard to provoke on disk.
"""

import os
import threading
import time
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from ferry.config.tasks import Task
from ferry.exceptions import ConfigurationError, ConnectionError_, ListError, OpenError
from ferry.filesystems.base import FileEntry, FileSystem
from ferry.filesystems.local import LocalFileSystem
from ferry.sync.engine import TransferEngine
from ferry.sync.ledger import HistoryLedger

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


class FixedClock:
    """Settable clock for deterministic staleness and retention checks."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _write(path, content: str = "data", mtime: datetime | None = None):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    if mtime is not None:
        ts = mtime.timestamp()
        os.utime(path, (ts, ts))
    return path


def _task(src, dst, **overrides) -> Task:
    values = dict(
        name="t1",
        cron="* * * * *",
        source_type="local",
        source_path=str(src),
        target_type="local",
        target_path=str(dst),
    )
    values.update(overrides)
    return Task(**values)


@pytest.fixture
def dirs(tmp_path):
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.mkdir()
    return src, dst


@pytest.fixture
def ledger(tmp_path):
    return HistoryLedger(tmp_path / "history.json")


class TestScenario:
    """The csv-only sync walked through first run, rerun and retention."""

    def test_first_second_and_retention_runs(self, dirs, ledger):
        src, dst = dirs
        clock = FixedClock()
        _write(src / "a.csv", "a", mtime=NOW)
        _write(src / "b.txt", "b", mtime=NOW)

        opened = []

        def factory(kind, root, auth):
            fs = LocalFileSystem(root)
            real_open = fs.open

            def tracking_open(path):
                opened.append(path)
                return real_open(path)

            fs.open = tracking_open
            return fs

        engine = TransferEngine(ledger, filesystem_factory=factory, clock=clock)
        task = _task(src, dst, source_regex=r"^.*\.csv$")

        first = engine.run_task(task)
        assert first.transferred == 1
        assert (dst / "a.csv").read_text() == "a"
        assert not (dst / "b.txt").exists()
        assert opened == ["a.csv"]
        assert ledger.get_task_history("t1").has("a.csv")

        second = engine.run_task(task)
        assert second.transferred == 0
        assert second.skipped == 2

        clock.advance(days=2)
        third = engine.run_task(_task(src, dst, source_regex=r"^.*\.csv$", retention_days=1))
        assert third.removed == 1
        assert not (dst / "a.csv").exists()
        # Cleanup keeps the ledger entry, so the file is not sent again
        assert ledger.get_task_history("t1").has("a.csv")

        fourth = engine.run_task(task)
        assert fourth.transferred == 0
        assert not (dst / "a.csv").exists()


class TestTraversal:
    """Tests for the source walk."""

    def test_nested_directories_are_mirrored(self, dirs, ledger):
        src, dst = dirs
        _write(src / "x" / "y" / "deep.csv", "deep")
        _write(src / "top.csv", "top")

        summary = TransferEngine(ledger).run_task(_task(src, dst))

        assert summary.transferred == 2
        assert (dst / "x" / "y" / "deep.csv").read_text() == "deep"
        history = ledger.get_task_history("t1")
        assert history.has("x/y/deep.csv")
        assert history.has("top.csv")

    def test_missing_destination_root_is_created(self, dirs, ledger):
        src, dst = dirs
        _write(src / "f.bin", "payload")
        assert not dst.exists()

        TransferEngine(ledger).run_task(_task(src, dst))

        assert (dst / "f.bin").read_text() == "payload"

    def test_bytes_are_counted(self, dirs, ledger):
        src, dst = dirs
        _write(src / "f.bin", "12345")

        summary = TransferEngine(ledger).run_task(_task(src, dst))

        assert summary.bytes_copied == 5

    def test_ledger_saved_after_run(self, dirs, ledger):
        src, dst = dirs
        _write(src / "a.csv")

        TransferEngine(ledger).run_task(_task(src, dst))

        fresh = HistoryLedger(ledger.path)
        fresh.load()
        assert fresh.get_task_history("t1").has("a.csv")


class TestFilters:
    """Tests for the name, staleness and dedup filters."""

    def test_regex_matches_base_name_only(self, dirs, ledger):
        src, dst = dirs
        _write(src / "reports" / "a.txt")

        # The directory name would match, the file name does not
        summary = TransferEngine(ledger).run_task(_task(src, dst, source_regex=r"reports.*"))

        assert summary.transferred == 0
        assert not (dst / "reports" / "a.txt").exists()

    def test_regex_is_full_match_and_case_sensitive(self, dirs, ledger):
        src, dst = dirs
        _write(src / "data.csv")
        _write(src / "data.csv.bak")
        _write(src / "DATA.CSV")

        TransferEngine(ledger).run_task(_task(src, dst, source_regex=r"[a-z]+\.csv"))

        assert sorted(p.name for p in dst.iterdir()) == ["data.csv"]

    def test_non_matching_file_skipped_even_if_fresh(self, dirs, ledger):
        src, dst = dirs
        _write(src / "new.txt", mtime=NOW)

        summary = TransferEngine(ledger, clock=FixedClock()).run_task(
            _task(src, dst, source_regex=r".*\.csv", source_newer_days=30)
        )

        assert summary.transferred == 0

    def test_stale_file_skipped(self, dirs, ledger):
        src, dst = dirs
        _write(src / "old.csv", mtime=NOW - timedelta(days=3))
        _write(src / "new.csv", mtime=NOW - timedelta(days=1))

        TransferEngine(ledger, clock=FixedClock()).run_task(_task(src, dst, source_newer_days=2))

        assert (dst / "new.csv").exists()
        assert not (dst / "old.csv").exists()

    def test_file_exactly_at_staleness_cutoff_is_transferred(self, dirs, ledger):
        src, dst = dirs
        _write(src / "edge.csv", mtime=NOW - timedelta(days=2))

        summary = TransferEngine(ledger, clock=FixedClock()).run_task(_task(src, dst, source_newer_days=2))

        assert summary.transferred == 1
        assert (dst / "edge.csv").exists()

    def test_staleness_disabled_when_not_positive(self, dirs, ledger):
        src, dst = dirs
        _write(src / "ancient.csv", mtime=NOW - timedelta(days=3650))

        summary = TransferEngine(ledger, clock=FixedClock()).run_task(_task(src, dst, source_newer_days=-1))

        assert summary.transferred == 1

    def test_changed_file_is_not_resent(self, dirs, ledger):
        src, dst = dirs
        path = _write(src / "a.csv", "v1")
        engine = TransferEngine(ledger)
        engine.run_task(_task(src, dst))

        path.write_text("version two")
        summary = engine.run_task(_task(src, dst))

        assert summary.transferred == 0
        assert (dst / "a.csv").read_text() == "v1"

    def test_dedup_is_per_task(self, dirs, ledger):
        src, dst = dirs
        _write(src / "a.csv")
        engine = TransferEngine(ledger)
        engine.run_task(_task(src, dst))

        summary = engine.run_task(_task(src, dst, name="t2"))

        assert summary.transferred == 1


class TestRetention:
    """Tests for destination cleanup."""

    def _seed(self, ledger, dst, path, age_days):
        _write(dst / path, "x")
        ledger.get_task_history("t1").add(path, NOW - timedelta(days=age_days))

    def test_removes_only_expired_entries(self, dirs, ledger):
        src, dst = dirs
        self._seed(ledger, dst, "old.csv", 10)
        self._seed(ledger, dst, "young.csv", 1)

        summary = TransferEngine(ledger, clock=FixedClock()).run_task(_task(src, dst, retention_days=5))

        assert summary.removed == 1
        assert not (dst / "old.csv").exists()
        assert (dst / "young.csv").exists()

    def test_entry_exactly_at_retention_cutoff_is_kept(self, dirs, ledger):
        src, dst = dirs
        self._seed(ledger, dst, "edge.csv", 5)

        summary = TransferEngine(ledger, clock=FixedClock()).run_task(_task(src, dst, retention_days=5))

        assert summary.removed == 0
        assert (dst / "edge.csv").exists()

    def test_absent_destination_file_is_skipped_silently(self, dirs, ledger):
        src, dst = dirs
        dst.mkdir()
        ledger.get_task_history("t1").add("gone.csv", NOW - timedelta(days=30))

        summary = TransferEngine(ledger, clock=FixedClock()).run_task(_task(src, dst, retention_days=1))

        assert summary.removed == 0
        assert ledger.get_task_history("t1").has("gone.csv")

    def test_retention_disabled_when_zero(self, dirs, ledger):
        src, dst = dirs
        self._seed(ledger, dst, "old.csv", 100)

        TransferEngine(ledger, clock=FixedClock()).run_task(_task(src, dst, retention_days=0))

        assert (dst / "old.csv").exists()

    def test_remove_failure_does_not_stop_cleanup(self, dirs, ledger):
        src, dst = dirs
        self._seed(ledger, dst, "a.csv", 10)
        self._seed(ledger, dst, "b.csv", 10)

        def factory(kind, root, auth):
            fs = LocalFileSystem(root)
            if root == str(dst):
                real_remove = fs.remove

                def remove(path):
                    if path == "a.csv":
                        raise OSError("permission denied")
                    real_remove(path)

                fs.remove = remove
            return fs

        summary = TransferEngine(ledger, filesystem_factory=factory, clock=FixedClock()).run_task(
            _task(src, dst, retention_days=1)
        )

        assert summary.removed == 1
        assert (dst / "a.csv").exists()
        assert not (dst / "b.csv").exists()


class FakeFileSystem(FileSystem):
    """In-memory backend with injectable failures."""

    kind = "fake"

    def __init__(self, root_path="", tree=None, fail_list=(), fail_open=(), fail_init=None):
        super().__init__(root_path)
        self.tree = tree or {}
        self.fail_list = set(fail_list)
        self.fail_open = set(fail_open)
        self.fail_init = fail_init
        self.written: dict[str, bytes] = {}
        self.closed = 0

    def init(self):
        if self.fail_init is not None:
            raise self.fail_init

    def close(self):
        self.closed += 1

    def list(self, path):
        if path in self.fail_list:
            raise ListError(f"Cannot list '{path}'", path=path)
        return [
            FileEntry(name=name, size=0, mod_time=NOW, is_dir=isinstance(value, dict), path=name)
            for name, value in self._node(path).items()
        ]

    def _node(self, path):
        node = self.tree
        for part in filter(None, path.split("/")):
            node = node[part]
        return node

    def open(self, path):
        import io

        if path in self.fail_open:
            raise OpenError(f"Cannot open '{path}'", path=path)
        return io.BytesIO(self._node(path))

    def create(self, path):
        import io

        fs = self

        class Sink(io.BytesIO):
            def close(self):
                fs.written[path] = self.getvalue()
                super().close()

        return Sink()

    def mkdir_all(self, path):
        pass

    def stat(self, path):
        raise ListError("unused")

    def remove(self, path):
        pass


class TestFailureContainment:
    """Tests for failures that must not abort the whole run."""

    def test_failed_directory_does_not_block_siblings(self, ledger):
        source = FakeFileSystem(
            tree={"bad": {"x.csv": b"x"}, "good": {"y.csv": b"y"}, "z.csv": b"z"},
            fail_list={"bad"},
        )
        target = FakeFileSystem()
        backends = iter([source, target])

        summary = TransferEngine(ledger, filesystem_factory=lambda *a: next(backends)).run_task(
            _task("/src", "/dst")
        )

        assert summary.failed_dirs == 1
        assert set(target.written) == {"good/y.csv", "z.csv"}

    def test_failed_file_gets_no_ledger_entry(self, ledger):
        source = FakeFileSystem(tree={"a.csv": b"a", "b.csv": b"b"}, fail_open={"a.csv"})
        target = FakeFileSystem()
        backends = iter([source, target])

        summary = TransferEngine(ledger, filesystem_factory=lambda *a: next(backends)).run_task(
            _task("/src", "/dst")
        )

        history = ledger.get_task_history("t1")
        assert summary.failed == 1
        assert summary.transferred == 1
        assert not history.has("a.csv")
        assert history.has("b.csv")

    def test_failed_file_is_retried_next_run(self, ledger):
        source = FakeFileSystem(tree={"a.csv": b"a"}, fail_open={"a.csv"})
        engine = TransferEngine(ledger, filesystem_factory=lambda *a: source if a[1] == "/src" else FakeFileSystem())
        engine.run_task(_task("/src", "/dst"))

        source.fail_open.clear()
        summary = engine.run_task(_task("/src", "/dst"))

        assert summary.transferred == 1


class TestAbort:
    """Tests for failures that abort a run."""

    def test_invalid_regex_fails_before_any_io(self, ledger):
        factory = MagicMock()
        ledger.save = MagicMock()
        engine = TransferEngine(ledger, filesystem_factory=factory)

        with pytest.raises(ConfigurationError):
            engine.run_task(_task("/src", "/dst", source_regex="([unclosed"))

        factory.assert_not_called()
        ledger.save.assert_not_called()

    def test_source_init_failure_raises_connection_error(self, ledger):
        source = FakeFileSystem(fail_init=ConnectionError_("refused"))
        target = FakeFileSystem()
        backends = iter([source, target])

        with pytest.raises(ConnectionError_):
            TransferEngine(ledger, filesystem_factory=lambda *a: next(backends)).run_task(_task("/src", "/dst"))

        assert source.closed >= 1
        assert not target.written

    def test_target_init_failure_releases_source(self, ledger):
        source = FakeFileSystem(tree={"a.csv": b"a"})
        target = FakeFileSystem(fail_init=OSError("read-only file system"))
        backends = iter([source, target])

        with pytest.raises(ConnectionError_):
            TransferEngine(ledger, filesystem_factory=lambda *a: next(backends)).run_task(_task("/src", "/dst"))

        assert source.closed >= 1
        assert target.closed >= 1
        assert not ledger.get_task_history("t1").has("a.csv")

    def test_unknown_backend_kind_raises_connection_error(self, dirs, ledger):
        src, dst = dirs

        with pytest.raises(ConnectionError_, match="s3"):
            TransferEngine(ledger).run_task(_task(src, dst, source_type="s3"))

    def test_remote_target_without_auth_releases_source(self, dirs, ledger):
        src, dst = dirs
        source = FakeFileSystem(tree={"a.csv": b"a"})

        def factory(kind, root_path, auth):
            if kind == "local":
                return source
            from ferry.filesystems.factory import create_filesystem

            return create_filesystem(kind, root_path, auth)

        with pytest.raises(ConnectionError_, match="target"):
            TransferEngine(ledger, filesystem_factory=factory).run_task(_task(src, dst, target_type="sftp"))

        assert source.closed >= 1
        assert not ledger.get_task_history("t1").has("a.csv")

    def test_ledger_saved_even_when_run_aborts(self, ledger):
        ledger.save = MagicMock()
        backends = iter([FakeFileSystem(fail_init=ConnectionError_("down")), FakeFileSystem()])

        with pytest.raises(ConnectionError_):
            TransferEngine(ledger, filesystem_factory=lambda *a: next(backends)).run_task(_task("/src", "/dst"))

        ledger.save.assert_called_once()

    def test_ledger_save_failure_is_not_fatal(self, dirs, ledger):
        from ferry.exceptions import LedgerIOError

        src, dst = dirs
        _write(src / "a.csv")
        ledger.save = MagicMock(side_effect=LedgerIOError("disk full"))

        summary = TransferEngine(ledger).run_task(_task(src, dst))

        assert summary.transferred == 1
        assert ledger.get_task_history("t1").has("a.csv")


class TestPerTaskSerialisation:
    """Runs of one task never overlap; different tasks may."""

    def _slow_factory(self, active, peak, lock):
        class SlowFileSystem(FakeFileSystem):
            def list(self, path):
                with lock:
                    active[self.root_path] = active.get(self.root_path, 0) + 1
                    peak[self.root_path] = max(peak.get(self.root_path, 0), active[self.root_path])
                time.sleep(0.05)
                with lock:
                    active[self.root_path] -= 1
                return []

        return lambda kind, root, auth: SlowFileSystem(root)

    def test_same_task_runs_do_not_overlap(self, ledger):
        active, peak, lock = {}, {}, threading.Lock()
        engine = TransferEngine(ledger, filesystem_factory=self._slow_factory(active, peak, lock))
        task = _task("/src-a", "/dst-a")

        threads = [threading.Thread(target=engine.run_task, args=(task,)) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak["/src-a"] == 1

    def test_different_tasks_run_in_parallel(self, ledger):
        started = threading.Barrier(2, timeout=5)

        class BarrierFileSystem(FakeFileSystem):
            def list(self, path):
                # Both tasks must be inside a run at the same time to pass
                started.wait()
                return []

        engine = TransferEngine(ledger, filesystem_factory=lambda kind, root, auth: BarrierFileSystem(root))
        threads = [
            threading.Thread(target=engine.run_task, args=(_task("/s1", "/d1", name="one"),)),
            threading.Thread(target=engine.run_task, args=(_task("/s2", "/d2", name="two"),)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not started.broken
