"""Diff the local inventory against the user's mod.io subscriptions."""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from .catalog import RemoteCatalogEntry
from .inventory import InstalledItem
from .ledger import SubscriptionLedger

logger = logging.getLogger(__name__)


def to_millis(seconds: int) -> int:
    """mod.io reports seconds; manifests store milliseconds."""
    return int(seconds) * 1000


@dataclass
class UpdateAction:
    item: InstalledItem
    entry: RemoteCatalogEntry


@dataclass
class ReconcilePlan:
    """
    What a sync run has to do.

    - to_subscribe: installed mod.io items neither in the ledger nor in the
      remote listing
    - to_install: subscriptions with no installed counterpart
    - to_update: installed items whose remote file is strictly newer
    - skipped: remote entries with no file to download
    """

    to_subscribe: list[InstalledItem] = field(default_factory=list)
    to_install: list[RemoteCatalogEntry] = field(default_factory=list)
    to_update: list[UpdateAction] = field(default_factory=list)
    skipped: list[RemoteCatalogEntry] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.to_subscribe or self.to_install or self.to_update)


def is_newer(item: InstalledItem, entry: RemoteCatalogEntry) -> bool:
    """Strictly newer only; equal timestamps count as up to date."""
    remote = entry.latest_file_updated
    if remote is None:
        return False
    return to_millis(remote) > item.updated_at


def reconcile(
    items: Iterable[InstalledItem],
    remote_entries: Iterable[RemoteCatalogEntry],
    ledger: SubscriptionLedger,
) -> ReconcilePlan:
    """Build the subscribe / install / update lists. Has no side effects."""
    installed = [item for item in items if item.syncable]
    installed_ids = {item.remote_mod_id for item in installed}
    remote_entries = list(remote_entries)
    remote_ids = {entry.id for entry in remote_entries}
    plan = ReconcilePlan()

    # a mod with a remote entry is handled by install/update, never subscribe
    plan.to_subscribe = [
        item
        for item in installed
        if item.remote_mod_id not in remote_ids and not ledger.is_subscribed(item.local_path)
    ]

    remote_by_id: dict[int, RemoteCatalogEntry] = {}
    for entry in remote_entries:
        if entry.id in remote_by_id:
            continue
        remote_by_id[entry.id] = entry
        if entry.modfile is None:
            logger.info("Skipping %s (mod %d): no file to download", entry.name, entry.id)
            plan.skipped.append(entry)
            continue
        if entry.id not in installed_ids:
            plan.to_install.append(entry)

    queued: set[int] = set()
    for item in installed:
        entry = remote_by_id.get(item.remote_mod_id)
        if entry is None or entry.modfile is None or entry.id in queued:
            continue
        if is_newer(item, entry):
            queued.add(entry.id)
            plan.to_update.append(UpdateAction(item=item, entry=entry))

    return plan
