"""
Connect / disconnect state machine.

One MountManager owns the artifacts (device directory, storage symlinks,
bookmark lines, state file) of at most one device at a time. It is driven
by tick(), called from run() every poll interval:

    Idle      --mount appears-->          Connected
    Connected --mount gone-->             Idle
    Connected --other device mounted-->   Idle --> Connected (swap)

reconcile() runs once before the loop and clears whatever a crashed
previous run left behind.
"""

import logging
import threading
from pathlib import Path
from typing import List, Optional, Sequence

from gmm.models import DeviceIdentity, DeviceRecord, MountHandle, StorageEntry
from gmm.safety import validate_deletable


# ----------------------------------------------------------------------
# Event helper
# ----------------------------------------------------------------------
class Event:
    def __init__(self) -> None:
        self._listeners = []

    def subscribe(self, fn):
        self._listeners.append(fn)

    def emit(self, *args):
        for cb in list(self._listeners):
            try:
                cb(*args)
            except Exception as exc:
                logging.exception("Device-event listener failed: %s", exc)


# ----------------------------------------------------------------------
# MountManager
# ----------------------------------------------------------------------
class MountManager:

    def __init__(self, config, detector, discoverer, symlinks, bookmarks, store, resolver):
        self.config     = config
        self.detector   = detector
        self.discoverer = discoverer
        self.symlinks   = symlinks
        self.bookmarks  = bookmarks
        self.store      = store
        self.resolver   = resolver

        self._record: Optional[DeviceRecord] = None
        # (host, port) -> identity, so a device whose storage is not visible
        # yet is not re-resolved on every poll
        self._resolved: dict = {}

        self.connect_event    = Event()
        self.disconnect_event = Event()

    @property
    def current(self) -> Optional[DeviceRecord]:
        return self._record

    @property
    def is_connected(self) -> bool:
        return self._record is not None

    # ------------------------------------------------------------------
    # identity
    # ------------------------------------------------------------------
    def identify(self, mount: MountHandle) -> DeviceIdentity:
        record = self._record
        if record is not None and record.host == mount.host and record.port == mount.port:
            return record.identity()

        key = (mount.host, mount.port)
        if key in self._resolved:
            return self._resolved[key]

        name = self.resolver.resolve(mount.host) if self.resolver else None
        if not name:
            logging.warning("Could not resolve device name for %s – using host", mount.host)
            name = mount.host
        identity = DeviceIdentity.create(name, mount.host, mount.port)
        logging.info("Device identified: %s (folder %s, host %s)",
                     identity.display_name, identity.sanitized_name, identity.host)
        self._resolved = {key: identity}
        return identity

    # ------------------------------------------------------------------
    # poll step
    # ------------------------------------------------------------------
    def tick(self) -> None:
        mount = self.detector.detect()
        record = self._record

        if mount is None:
            self._resolved = {}
            if record is not None:
                logging.info("Device disconnected: %s", record.display_name)
                self.disconnect(record)
            return

        identity = self.identify(mount)

        if record is None:
            self.connect(identity, mount)
            return

        if identity.same_device(record):
            if (record.mount_path != str(mount.path)
                    or record.host != identity.host or record.port != identity.port):
                logging.info("Mount for %s changed to %s – re-syncing links",
                             record.display_name, mount.path)
                self._resync(record, identity, mount)
            return

        logging.info("Device changed: %s -> %s", record.display_name, identity.display_name)
        self.disconnect(record)
        self.connect(identity, mount)

    # ------------------------------------------------------------------
    # connect
    # ------------------------------------------------------------------
    def _prepare_device_dir(self, identity: DeviceIdentity):
        """Returns (device_dir, created) or (None, False) when it cannot be used."""
        device_dir = self.symlinks.device_dir(identity.sanitized_name)
        if not validate_deletable(device_dir, self.config.base_dir):
            logging.error("Device directory %s failed the safety check", device_dir)
            return None, False
        existed = device_dir.is_dir()
        try:
            device_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logging.error("Cannot create device directory %s: %s", device_dir, exc)
            return None, False
        return device_dir, not existed

    def _linked_entries(self, device_dir: Path, entries: Sequence[StorageEntry],
                        links: Sequence[Path]) -> List[StorageEntry]:
        linked = set(links)
        return [e for e in entries if device_dir / e.label in linked]

    def connect(self, identity: DeviceIdentity, mount: MountHandle) -> bool:
        entries = self.discoverer.discover(mount.path)
        if not entries:
            logging.info("No accessible storage on %s yet – waiting", identity.display_name)
            return False

        device_dir, created = self._prepare_device_dir(identity)
        if device_dir is None:
            return False

        links = self.symlinks.sync(device_dir, entries)
        if not links:
            logging.error("No storage symlinks could be created for %s", identity.display_name)
            if created:
                self.symlinks.remove_device_dir(device_dir)
            return False

        linked_entries = self._linked_entries(device_dir, entries, links)
        self.bookmarks.add(identity, linked_entries, device_dir)
        self.store.record_managed(identity)

        record = DeviceRecord.from_identity(identity, str(mount.path), links)
        try:
            self.store.save(record)
        except OSError as exc:
            logging.error("Failed to persist device state: %s", exc)
        self._record = record

        logging.info("Device connected: %s (%d/%d storage linked) in %s",
                     identity.display_name, len(links), len(entries), device_dir)
        self.connect_event.emit(identity, linked_entries)
        return True

    def _resync(self, record: DeviceRecord, identity: DeviceIdentity, mount: MountHandle) -> None:
        entries = self.discoverer.discover(mount.path)
        device_dir, _ = self._prepare_device_dir(identity)
        links = self.symlinks.sync(device_dir, entries) if entries and device_dir else []
        if not links:
            logging.warning("No storage left on %s after mount change", identity.display_name)
            self.disconnect(record)
            return

        stale = [p for p in record.links if Path(p) not in set(links)]
        self.symlinks.remove_all(stale)
        if stale:
            # the stale lines point at links that are gone now
            self.bookmarks.remove(identity, self.discoverer.possible_labels(), device_dir)
        self.bookmarks.add(identity, self._linked_entries(device_dir, entries, links), device_dir)

        new_record = DeviceRecord.from_identity(identity, str(mount.path), links)
        try:
            self.store.save(new_record)
        except OSError as exc:
            logging.error("Failed to persist device state: %s", exc)
        self._record = new_record

    # ------------------------------------------------------------------
    # disconnect
    # ------------------------------------------------------------------
    def _teardown(self, record: DeviceRecord, extra_links=()) -> None:
        device_dir = self.symlinks.device_dir(record.sanitized_name)
        labels = self.discoverer.possible_labels()
        self.bookmarks.remove(record.identity(), labels, device_dir)
        links = [Path(p) for p in record.links] or self.symlinks.known_links(device_dir, labels)
        links.extend(Path(p) for p in extra_links if Path(p) not in links)
        self.symlinks.remove_all(links)
        self.symlinks.remove_device_dir(device_dir)

    def disconnect(self, record: DeviceRecord) -> None:
        self._teardown(record)
        self.store.clear()
        self._record = None
        logging.info("Device artifacts removed: %s", record.display_name)
        self.disconnect_event.emit(record)

    # ------------------------------------------------------------------
    # startup recovery
    # ------------------------------------------------------------------
    def reconcile(self) -> None:
        try:
            record = self.store.load()
            mount = self.detector.detect()
            self._record = record

            if record is not None:
                if mount is None:
                    logging.info("Cleaning up after previous run: %s is no longer mounted",
                                 record.display_name)
                    self.disconnect(record)
                else:
                    live = self.identify(mount)
                    if live.same_device(record):
                        logging.info("Resuming with %s still connected", record.display_name)
                    else:
                        logging.info("Cleaning up stale device %s (now %s)",
                                     record.display_name, live.display_name)
                        self.disconnect(record)

            if self.config.auto_cleanup:
                self._prune_managed()
        except Exception as exc:
            logging.exception("Reconciliation failed: %s", exc)

    def _prune_managed(self) -> None:
        current = self._record
        for managed in self.store.managed_devices():
            if current is not None and managed.same_device(current):
                continue
            device_dir = self.symlinks.device_dir(managed.sanitized_name)
            if not device_dir.is_dir():
                continue
            self.symlinks.prune_broken(device_dir)
            self.symlinks.remove_device_dir(device_dir)

    def reconcile_and_cleanup_all(self) -> int:
        """Remove the artifacts of every device ever managed; returns the device count."""
        records = self.store.managed_devices()
        current = self.store.load()
        if current is not None and not any(r.same_device(current) for r in records):
            records.append(current)

        for record in records:
            extra = ()
            if current is not None and record.same_device(current):
                extra = current.links
            logging.info("Cleaning up %s", record.display_name)
            self._teardown(DeviceRecord.from_identity(record.identity()), extra)

        self.store.clear()
        self._record = None
        logging.info("Cleanup finished for %d device(s)", len(records))
        return len(records)

    # ------------------------------------------------------------------
    # main loop
    # ------------------------------------------------------------------
    def run(self, stop_event: threading.Event) -> None:
        self.reconcile()
        logging.info("Watching %s every %.1fs", self.detector.mount_root, self.config.poll_interval)
        while True:
            try:
                self.tick()
            except Exception as exc:
                logging.exception("Poll iteration failed: %s", exc)
            if stop_event.wait(self.config.poll_interval):
                break
        logging.info("Mount manager stopped.")
