import os
import shutil
import sys
import tempfile
import threading
import types
import unittest
from pathlib import Path
from unittest import mock

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from gmm.bookmarks import BookmarkManager
from gmm.lifecycle import Event, MountManager
from gmm.models import MountHandle, StorageKind
from gmm.state_store import StateStore
from gmm.storage import StorageDiscoverer
from gmm.symlinks import SymlinkManager


class FakeDetector:
    """Returns whatever handle the test put in .handle."""

    def __init__(self, mount_root):
        self.mount_root = mount_root
        self.handle = None
        self.calls = 0

    def detect(self):
        self.calls += 1
        return self.handle


class FakeResolver:
    def __init__(self, names=None):
        self.names = names or {}
        self.calls = []

    def resolve(self, host):
        self.calls.append(host)
        return self.names.get(host)


class LifecycleTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        root = Path(self.tmp.name)
        self.gvfs = root / "gvfs"
        self.gvfs.mkdir()
        self.base = root / "base"
        self.bookmark_file = root / "bookmarks"
        self.state_dir = root / "state"
        self.config = types.SimpleNamespace(base_dir=self.base, auto_cleanup=True,
                                            poll_interval=0.01)
        self.detector = FakeDetector(self.gvfs)
        self.resolver = FakeResolver({"10.0.0.5": "MyPhone", "10.0.0.7": "Tablet"})
        self.manager = self.make_manager()

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def make_manager(self):
        discoverer = StorageDiscoverer({StorageKind.INTERNAL: ["data"],
                                        StorageKind.EXTERNAL: ["sd"]})
        return MountManager(self.config, self.detector, discoverer,
                            SymlinkManager(self.base),
                            BookmarkManager(self.bookmark_file),
                            StateStore(self.state_dir),
                            self.resolver)

    def mount(self, host="10.0.0.5", port=1739, dirs=("data",)):
        path = self.gvfs / f"sftp:host={host},port={port}"
        for d in dirs:
            (path / d).mkdir(parents=True, exist_ok=True)
        return MountHandle(path, host, port)

    def bookmark_lines(self):
        if not self.bookmark_file.exists():
            return []
        return self.bookmark_file.read_text().splitlines()


class ConnectTests(LifecycleTestCase):
    def test_myphone_example(self):
        handle = self.mount()
        self.detector.handle = handle
        self.manager.tick()

        link = self.base / "MyPhone" / "Internal"
        self.assertTrue(link.is_symlink())
        self.assertEqual(os.readlink(link), str(handle.path / "data"))
        lines = self.bookmark_lines()
        self.assertEqual(len(lines), 1)
        self.assertIn("MyPhone", lines[0])

        record = StateStore(self.state_dir).load()
        self.assertEqual((record.display_name, record.sanitized_name, record.host),
                         ("MyPhone", "MyPhone", "10.0.0.5"))
        self.assertEqual(record.links, (str(link),))

    def test_connect_is_idempotent(self):
        self.detector.handle = self.mount()
        self.manager.tick()
        before = sorted(os.listdir(self.base / "MyPhone"))
        self.manager.tick()
        self.manager.tick()
        self.assertEqual(sorted(os.listdir(self.base / "MyPhone")), before)
        self.assertEqual(len(self.bookmark_lines()), 1)
        self.assertEqual(self.resolver.calls, ["10.0.0.5"])

    def test_connect_event_emitted(self):
        seen = []
        self.manager.connect_event.subscribe(lambda identity, entries: seen.append(
            (identity.sanitized_name, [e.label for e in entries])))
        self.detector.handle = self.mount(dirs=("data", "sd"))
        self.manager.tick()
        self.assertEqual(seen, [("MyPhone", ["Internal", "SDCard"])])

    def test_no_storage_stays_idle(self):
        self.detector.handle = self.mount(dirs=())
        with self.assertLogs(level="INFO"):
            self.manager.tick()
        self.assertFalse(self.manager.is_connected)
        self.assertFalse((self.base / "MyPhone").exists())
        self.assertIsNone(StateStore(self.state_dir).load())
        self.manager.tick()
        self.assertEqual(self.resolver.calls, ["10.0.0.5"])

    def test_partial_success(self):
        device_dir = self.base / "MyPhone"
        device_dir.mkdir(parents=True)
        (device_dir / "SDCard").write_text("user file")
        self.detector.handle = self.mount(dirs=("data", "sd"))
        self.manager.tick()

        self.assertTrue(self.manager.is_connected)
        self.assertEqual(self.manager.current.links, (str(device_dir / "Internal"),))
        self.assertEqual(len(self.bookmark_lines()), 1)
        self.assertEqual((device_dir / "SDCard").read_text(), "user file")

    def test_unresolved_name_falls_back_to_host(self):
        self.detector.handle = self.mount(host="10.0.0.99")
        with self.assertLogs(level="WARNING"):
            self.manager.tick()
        self.assertTrue((self.base / "10.0.0.99" / "Internal").is_symlink())

    def test_mount_path_change_resyncs(self):
        self.detector.handle = self.mount()
        self.manager.tick()
        moved = MountHandle(self.gvfs / "sftp:host=10.0.0.5,port=1739,user=x", "10.0.0.5", 1739)
        (moved.path / "data").mkdir(parents=True)
        self.detector.handle = moved
        self.manager.tick()
        link = self.base / "MyPhone" / "Internal"
        self.assertEqual(os.readlink(link), str(moved.path / "data"))
        self.assertEqual(StateStore(self.state_dir).load().mount_path, str(moved.path))


class DisconnectTests(LifecycleTestCase):
    def test_clean_disconnect(self):
        self.bookmark_file.write_text("file:///home/u/Music Music\nfile:///home/u/x MyPhone photos\n")
        gone = []
        self.manager.disconnect_event.subscribe(gone.append)
        self.detector.handle = self.mount(dirs=("data", "sd"))
        self.manager.tick()
        self.detector.handle = None
        self.manager.tick()

        self.assertFalse((self.base / "MyPhone").exists())
        self.assertEqual(self.bookmark_lines(),
                         ["file:///home/u/Music Music", "file:///home/u/x MyPhone photos"])
        self.assertIsNone(StateStore(self.state_dir).load())
        self.assertEqual([r.sanitized_name for r in gone], ["MyPhone"])
        self.assertTrue(self.base.is_dir())

    def test_user_files_survive_disconnect(self):
        self.detector.handle = self.mount()
        self.manager.tick()
        (self.base / "MyPhone" / "notes.txt").write_text("keep")
        self.detector.handle = None
        with self.assertLogs(level="WARNING"):
            self.manager.tick()
        self.assertEqual((self.base / "MyPhone" / "notes.txt").read_text(), "keep")
        self.assertFalse((self.base / "MyPhone" / "Internal").is_symlink())

    def test_device_swap(self):
        self.detector.handle = self.mount()
        self.manager.tick()
        self.detector.handle = self.mount(host="10.0.0.7", port=1740)
        self.manager.tick()

        self.assertFalse((self.base / "MyPhone").exists())
        self.assertTrue((self.base / "Tablet" / "Internal").is_symlink())
        self.assertEqual([line.split(" ", 1)[1] for line in self.bookmark_lines()],
                         ["Tablet Internal"])
        self.assertEqual(StateStore(self.state_dir).load().sanitized_name, "Tablet")

    def test_failing_listener_does_not_break_lifecycle(self):
        def boom(*_args):
            raise RuntimeError("listener broke")

        self.manager.connect_event.subscribe(boom)
        self.detector.handle = self.mount()
        with self.assertLogs(level="ERROR"):
            self.manager.tick()
        self.assertTrue(self.manager.is_connected)


class RecoveryTests(LifecycleTestCase):
    def test_crash_then_device_gone(self):
        self.detector.handle = self.mount()
        self.manager.tick()
        # new process, phone left while we were down
        self.detector.handle = None
        restarted = self.make_manager()
        restarted.reconcile()
        self.assertFalse((self.base / "MyPhone").exists())
        self.assertEqual(self.bookmark_lines(), [])
        self.assertIsNone(StateStore(self.state_dir).load())

    def test_recovery_with_link_already_removed(self):
        self.detector.handle = self.mount(dirs=("data", "sd"))
        self.manager.tick()
        (self.base / "MyPhone" / "SDCard").unlink()
        self.detector.handle = None
        restarted = self.make_manager()
        with self.assertNoLogs(level="ERROR"):
            restarted.reconcile()
        self.assertFalse((self.base / "MyPhone").exists())
        self.assertEqual(self.bookmark_lines(), [])
        self.assertIsNone(StateStore(self.state_dir).load())
        self.assertFalse(restarted.is_connected)

    def test_recovery_with_device_dir_already_gone(self):
        self.detector.handle = self.mount(dirs=("data", "sd"))
        self.manager.tick()
        shutil.rmtree(self.base / "MyPhone")
        self.detector.handle = None
        restarted = self.make_manager()
        with self.assertNoLogs(level="ERROR"):
            restarted.reconcile()
        self.assertFalse((self.base / "MyPhone").exists())
        self.assertEqual(self.bookmark_lines(), [])
        self.assertIsNone(StateStore(self.state_dir).load())
        self.assertFalse(restarted.is_connected)

    def test_crash_then_other_device(self):
        self.detector.handle = self.mount()
        self.manager.tick()
        self.detector.handle = self.mount(host="10.0.0.7", port=1740)
        restarted = self.make_manager()
        restarted.reconcile()
        self.assertFalse((self.base / "MyPhone").exists())
        restarted.tick()
        self.assertTrue((self.base / "Tablet" / "Internal").is_symlink())

    def test_restart_with_same_device_keeps_artifacts(self):
        self.detector.handle = self.mount()
        self.manager.tick()
        restarted = self.make_manager()
        restarted.reconcile()
        self.assertTrue(restarted.is_connected)
        self.assertTrue((self.base / "MyPhone" / "Internal").is_symlink())
        restarted.tick()
        self.assertEqual(len(self.bookmark_lines()), 1)
        self.assertEqual(self.resolver.calls, ["10.0.0.5"])

    def test_reconcile_prunes_dangling_links_of_managed_devices(self):
        handle = self.mount()
        self.detector.handle = handle
        self.manager.tick()
        # state lost, mount gone: only the managed log remembers the device
        StateStore(self.state_dir).clear()
        os.rename(handle.path, self.gvfs / "gone")
        self.detector.handle = None
        self.make_manager().reconcile()
        self.assertFalse((self.base / "MyPhone").exists())

    def test_reconcile_never_raises(self):
        self.manager.store = mock.Mock()
        self.manager.store.load.side_effect = RuntimeError("disk on fire")
        with self.assertLogs(level="ERROR"):
            self.manager.reconcile()

    def test_cleanup_all(self):
        self.detector.handle = self.mount()
        self.manager.tick()
        self.detector.handle = self.mount(host="10.0.0.7", port=1740)
        self.manager.tick()
        self.bookmark_file.write_text(self.bookmark_file.read_text() + "file:///x Other\n")

        self.assertEqual(self.manager.reconcile_and_cleanup_all(), 2)
        self.assertEqual(os.listdir(self.base), [])
        self.assertEqual(self.bookmark_lines(), ["file:///x Other"])
        self.assertIsNone(StateStore(self.state_dir).load())
        self.assertFalse(self.manager.is_connected)


class RunLoopTests(LifecycleTestCase):
    def test_tick_errors_do_not_stop_loop(self):
        stop = threading.Event()
        calls = []

        def detect():
            calls.append(1)
            if len(calls) == 2:
                raise RuntimeError("scan exploded")
            if len(calls) >= 4:
                stop.set()
            return None

        self.detector.detect = detect
        with self.assertLogs(level="ERROR"):
            self.manager.run(stop)
        self.assertGreaterEqual(len(calls), 4)

    def test_stop_event_ends_loop(self):
        stop = threading.Event()
        stop.set()
        self.detector.handle = self.mount()
        self.manager.run(stop)
        self.assertTrue(self.manager.is_connected)


class EventTests(unittest.TestCase):
    def test_all_listeners_called(self):
        ev, got = Event(), []
        ev.subscribe(lambda *a: got.append(a))
        ev.subscribe(lambda *a: got.append(a))
        ev.emit(1, 2)
        self.assertEqual(got, [(1, 2), (1, 2)])


if __name__ == "__main__":
    unittest.main()
