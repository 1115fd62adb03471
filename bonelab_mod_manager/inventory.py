"""Scan the mod folder for installed pallets."""

import logging
from dataclasses import dataclass
from pathlib import Path

from .config import ConfigurationError
from .manifest import MANIFEST_SUFFIX, MalformedManifest, ManifestRecord, read_manifest

# Manifests shipped by the game itself
RESERVED_PREFIX = "SLZ"

logger = logging.getLogger(__name__)


@dataclass
class InstalledItem:
    """A pallet present in the mod folder, as described by its manifest."""

    local_path: Path
    barcode: str
    remote_mod_id: int | None
    remote_file_id: int | None
    installed_at: int
    updated_at: int
    record: ManifestRecord

    @property
    def syncable(self) -> bool:
        """Whether the item came from mod.io and can take part in syncing."""
        return self.remote_mod_id is not None

    @property
    def title(self) -> str:
        if self.record.listing and self.record.listing.title:
            return self.record.listing.title
        return self.barcode

    @classmethod
    def from_record(cls, path: Path, record: ManifestRecord) -> "InstalledItem":
        pallet = record.pallet
        try:
            installed_at = int(pallet.installed_date)
            updated_at = int(pallet.update_date)
        except ValueError as e:
            raise MalformedManifest(f"{path.name}: dates must be millisecond timestamps") from e
        target = record.target
        return cls(
            local_path=path,
            barcode=pallet.pallet_barcode,
            remote_mod_id=target.mod_id if target else None,
            remote_file_id=target.modfile_id if target else None,
            installed_at=installed_at,
            updated_at=updated_at,
            record=record,
        )


def is_manifest_name(name: str) -> bool:
    return name.endswith(MANIFEST_SUFFIX) and not name.startswith(RESERVED_PREFIX)


def scan_mod_folder(mod_dir: Path) -> list[InstalledItem]:
    """
    Load every user manifest in ``mod_dir``.

    A manifest that fails to decode aborts the scan with MalformedManifest.
    """
    mod_dir = Path(mod_dir)
    try:
        names = sorted(p.name for p in mod_dir.iterdir() if p.is_file())
    except OSError as e:
        raise ConfigurationError(f"Cannot read mod folder {mod_dir}: {e}") from e

    items = []
    for name in names:
        if not is_manifest_name(name):
            continue
        path = mod_dir / name
        items.append(InstalledItem.from_record(path, read_manifest(path)))

    logger.debug(
        "Found %d manifests in %s (%d from mod.io)",
        len(items),
        mod_dir,
        sum(1 for i in items if i.syncable),
    )
    return items


def syncable_items(items: list[InstalledItem]) -> list[InstalledItem]:
    """Items with mod.io provenance; the rest are local or foreign pallets."""
    return [item for item in items if item.syncable]
