import argparse
import atexit
import logging
import shutil
import signal
import sys
import threading

from gmm.bookmarks import BookmarkManager
from gmm.config_loader import ManagerConfig, default_settings_file, load_settings
from gmm.device_name import DeviceNameResolver
from gmm.errors import GmmError, MissingDependencyError
from gmm.instance_lock import InstanceLock
from gmm.lifecycle import MountManager
from gmm.logger import configure_logging
from gmm.mount_detector import MountDetector, detect_mount_root
from gmm.notifier import DesktopNotifier, RedisStatusPublisher
from gmm.state_store import StateStore
from gmm.storage import StorageDiscoverer
from gmm.symlinks import SymlinkManager


def check_required_tools(tools):
    missing = [t for t in tools if shutil.which(t) is None]
    if missing:
        raise MissingDependencyError(missing)


def build_manager(config: ManagerConfig) -> MountManager:
    """Wire every component from *config*; notifiers are subscribed here."""
    mount_root = detect_mount_root(config.mount_root, config.detect_gvfs_path)
    detector = MountDetector(mount_root, scan_timeout=config.scan_timeout)
    discoverer = StorageDiscoverer(config.storage_paths,
                                   labels=config.storage_labels,
                                   max_external=config.max_external,
                                   check_timeout=config.check_timeout)
    manager = MountManager(
        config,
        detector,
        discoverer,
        SymlinkManager(config.base_dir),
        BookmarkManager(config.bookmark_file, enabled=config.bookmarks_enabled),
        StateStore(config.state_dir, max_log_bytes=config.max_log_bytes),
        DeviceNameResolver(timeout=config.name_timeout),
    )

    notifier = DesktopNotifier(config.notifications_enabled, config.notification_timeout)
    manager.connect_event.subscribe(notifier.on_connect)
    manager.disconnect_event.subscribe(notifier.on_disconnect)

    if config.redis.get("enabled"):
        publisher = RedisStatusPublisher(host=config.redis["host"],
                                         port=config.redis["port"],
                                         db=config.redis["db"],
                                         channel=config.redis["channel"],
                                         key_prefix=config.redis["key_prefix"])
        manager.connect_event.subscribe(publisher.on_connect)
        manager.disconnect_event.subscribe(publisher.on_disconnect)
        logging.info("Publishing connection state to Redis %s:%s",
                     config.redis["host"], config.redis["port"])

    return manager


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Link GSConnect SFTP mounts into a stable folder and bookmarks.")
    parser.add_argument("--settings", default=str(default_settings_file()),
                        help="Path to settings.json.")
    parser.add_argument("-debug", action="store_true", help="Enable debug logging level.")
    parser.add_argument("--uninstall-cleanup", action="store_true",
                        help="Remove every link, folder and bookmark ever created, then exit.")
    parser.add_argument("--purge", action="store_true",
                        help="With --uninstall-cleanup: also delete the state files.")
    parser.add_argument("--once", action="store_true",
                        help="Reconcile, poll once and exit.")
    args = parser.parse_args(argv)

    settings = load_settings(args.settings)
    config = ManagerConfig.from_settings(settings)

    configure_logging("DEBUG" if args.debug else config.log_level,
                      config.log_file, config.log_max_bytes, config.log_backup_count)
    logging.debug("Settings loaded from %s", args.settings)

    lock = InstanceLock(config.lock_file)
    try:
        if not args.uninstall_cleanup:
            check_required_tools(config.required_tools)
        lock.acquire()
    except GmmError as e:
        logging.error("%s", e)
        return 1

    atexit.register(lock.release)

    manager = build_manager(config)

    if args.uninstall_cleanup:
        count = manager.reconcile_and_cleanup_all()
        if args.purge:
            manager.store.purge()
        logging.info("Uninstall cleanup done (%d device(s))", count)
        lock.release()
        return 0

    if args.once:
        manager.reconcile()
        manager.tick()
        lock.release()
        return 0

    stop_event = threading.Event()

    def handle_exit(sig, frame):
        logging.info("Graceful shutdown initiated.")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        manager.run(stop_event)
    except Exception:
        logging.exception("An unexpected error occurred")
        return 1
    finally:
        lock.release()
    return 0


if __name__ == "__main__":
    sys.exit(main())
