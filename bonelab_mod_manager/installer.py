"""Download, unpack and publish one pallet into the mod folder.

Every install runs the same sequence::

    resolve file -> download -> extract -> locate descriptors
        -> derive barcode -> write manifest -> publish

Everything up to the manifest write happens in a staging directory next to
the mod folder contents, so a failure there leaves installed pallets exactly
as they were. The manifest is written before the content is moved into
place; if the move fails the previous manifest is put back.
"""

import enum
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .api import ModioAPI, ModioAPIError
from .catalog import FileDescriptor, RemoteCatalogEntry
from .downloader import DownloadError, Downloader
from .extractor import (
    ExtractionError,
    extract_archive,
    list_children,
    move_directory,
    remove_empty_directory,
    remove_tree,
)
from .inventory import InstalledItem
from .manifest import (
    GAME_MODS_ROOT,
    MalformedManifest,
    build_manifest,
    manifest_path,
    write_manifest,
)
from .reconcile import to_millis
from .retry import Retrier

DESCRIPTOR_SUFFIX = ".json"
PALLET_DESCRIPTOR_SUFFIX = "pallet.json"
STAGING_PREFIX = ".staging-"
REPLACED_PREFIX = ".replaced-"

logger = logging.getLogger(__name__)


class InstallError(Exception):
    """Raised when a pallet cannot be installed."""

    pass


class UnexpectedArchiveLayout(InstallError):
    """Raised when an archive is not one barcode directory with two descriptors."""

    pass


class Stage(enum.Enum):
    START = "start"
    RESOLVE_FILE = "resolve_file"
    DOWNLOAD = "download"
    EXTRACT = "extract"
    LOCATE_DESCRIPTORS = "locate_descriptors"
    DERIVE_IDENTITY = "derive_identity"
    WRITE_MANIFEST = "write_manifest"
    PUBLISH = "publish"
    DONE = "done"


class Outcome(enum.Enum):
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class InstallResult:
    name: str
    outcome: Outcome
    stage: Stage
    error: Exception | None = None
    barcode: str | None = None
    manifest_path: Path | None = None


# Errors that fail a single install; anything else is a bug and propagates
INSTALL_ERRORS = (
    ModioAPIError,
    DownloadError,
    ExtractionError,
    InstallError,
    MalformedManifest,
    OSError,
)


def now_millis() -> int:
    return int(time.time() * 1000)


def staging_slug(name: str) -> str:
    """Filesystem-safe form of a mod display name."""
    slug = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return slug or "mod"


def resolve_update_file(files: list[FileDescriptor], platform: str) -> FileDescriptor | None:
    """
    Pick the newest file built for ``platform``.

    mod.io hands out file ids in increasing order, so the highest id is the
    most recent upload.
    """
    eligible = [f for f in files if f.targets(platform)]
    if not eligible:
        return None
    return max(eligible, key=lambda f: f.id)


def locate_descriptors(extract_dir: Path) -> tuple[Path, str, str]:
    """
    Find the barcode directory and its pallet and catalog descriptors.

    Returns (barcode_dir, pallet_file_name, catalog_file_name).
    """
    children = list_children(extract_dir)
    if len(children) != 1 or not children[0].is_dir():
        raise UnexpectedArchiveLayout(
            f"Expected a single barcode directory, found {[c.name for c in children]}"
        )
    barcode_dir = children[0]

    descriptors = [
        c.name
        for c in list_children(barcode_dir)
        if c.is_file() and c.name.endswith(DESCRIPTOR_SUFFIX)
    ]
    if len(descriptors) != 2:
        raise UnexpectedArchiveLayout(
            f"Expected 2 descriptor files in {barcode_dir.name}, found {len(descriptors)}: "
            f"{descriptors}"
        )
    if not descriptors[0].endswith(PALLET_DESCRIPTOR_SUFFIX):
        descriptors.reverse()
    return barcode_dir, descriptors[0], descriptors[1]


class InstallPipeline:
    """Installs and updates pallets in one mod folder, one at a time."""

    def __init__(
        self,
        api: ModioAPI,
        downloader: Downloader,
        mod_dir: Path,
        cache_dir: Path,
        game_id: int,
        staging_root: Path | None = None,
        platform: str = "windows",
        retrier: Retrier | None = None,
        clock: Callable[[], int] = now_millis,
        install_root: str = GAME_MODS_ROOT,
    ):
        self.api = api
        self.downloader = downloader
        self.mod_dir = Path(mod_dir)
        self.cache_dir = Path(cache_dir)
        self.game_id = game_id
        # Staging must live on the same filesystem as mod_dir for the final rename
        self.staging_root = Path(staging_root) if staging_root else self.mod_dir
        self.platform = platform
        self.retrier = retrier or Retrier()
        self.clock = clock
        self.install_root = install_root

    def install(self, entry: RemoteCatalogEntry) -> InstallResult:
        """Install the file currently attached to a subscribed mod."""
        now = self.clock()
        return self._run(
            entry,
            resolve=lambda: entry.modfile,
            installed_at=now,
            updated_at=now,
        )

    def update(self, item: InstalledItem, entry: RemoteCatalogEntry) -> InstallResult:
        """Replace an installed pallet with the newest file for our platform."""

        def resolve() -> FileDescriptor | None:
            files = self.retrier(lambda: self.api.get_files(self.game_id, entry.id))
            return resolve_update_file(files, self.platform)

        remote = to_millis(entry.latest_file_updated or 0)
        return self._run(
            entry,
            resolve=resolve,
            installed_at=item.installed_at,
            updated_at=max(remote, item.updated_at + 1),
            previous=item,
        )

    def _run(
        self,
        entry: RemoteCatalogEntry,
        resolve: Callable[[], FileDescriptor | None],
        installed_at: int,
        updated_at: int,
        previous: InstalledItem | None = None,
    ) -> InstallResult:
        slug = staging_slug(entry.name)
        staging_dir = self.staging_root / f"{STAGING_PREFIX}{entry.id}-{slug}"
        archive = self.cache_dir / f"{entry.id}-{slug}.zip"
        stage = Stage.RESOLVE_FILE
        barcode = None
        target_manifest = None

        try:
            modfile = resolve()
            if modfile is None:
                logger.info("No %s file for %s, skipping", self.platform, entry.name)
                return InstallResult(entry.name, Outcome.SKIPPED, stage)

            stage = Stage.DOWNLOAD
            self.retrier(lambda: self.downloader.download_file(modfile, archive, label=entry.name))

            stage = Stage.EXTRACT
            remove_tree(staging_dir)
            extract_archive(archive, staging_dir)

            stage = Stage.LOCATE_DESCRIPTORS
            barcode_dir, pallet_name, catalog_name = locate_descriptors(staging_dir)

            stage = Stage.DERIVE_IDENTITY
            barcode = barcode_dir.name

            stage = Stage.WRITE_MANIFEST
            record = build_manifest(
                entry,
                modfile,
                barcode,
                pallet_name,
                catalog_name,
                installed_at=installed_at,
                updated_at=updated_at,
                install_root=self.install_root,
            )
            target_manifest = manifest_path(self.mod_dir, barcode)
            old_manifest = target_manifest.read_bytes() if target_manifest.exists() else None
            write_manifest(target_manifest, record)

            stage = Stage.PUBLISH
            try:
                self._publish(barcode_dir)
            except BaseException:
                self._restore_manifest(target_manifest, old_manifest)
                raise

        except INSTALL_ERRORS as e:
            logger.error("%s failed at %s: %s", entry.name, stage.value, e)
            return InstallResult(entry.name, Outcome.FAILED, stage, error=e, barcode=barcode)
        finally:
            remove_tree(staging_dir)
            if archive.exists():
                archive.unlink()

        if previous is not None and previous.barcode != barcode:
            self._retire(previous)

        logger.info("Installed %s as %s", entry.name, barcode)
        return InstallResult(
            entry.name,
            Outcome.DONE,
            Stage.DONE,
            barcode=barcode,
            manifest_path=target_manifest,
        )

    def _publish(self, barcode_dir: Path) -> None:
        """Move the extracted barcode directory into the mod folder, replacing any old copy."""
        staging_dir = barcode_dir.parent
        dest = self.mod_dir / barcode_dir.name
        backup = None
        if dest.exists():
            backup = self.mod_dir / f"{REPLACED_PREFIX}{dest.name}"
            remove_tree(backup)
            move_directory(dest, backup)
        try:
            move_directory(barcode_dir, dest)
        except BaseException:
            if backup is not None:
                move_directory(backup, dest)
            raise
        if backup is not None:
            remove_tree(backup)

        try:
            remove_empty_directory(staging_dir)
        except OSError as e:
            logger.warning("Could not remove staging directory %s: %s", staging_dir, e)

    def _restore_manifest(self, path: Path, old_bytes: bytes | None) -> None:
        if old_bytes is None:
            path.unlink(missing_ok=True)
        else:
            path.write_bytes(old_bytes)

    def _retire(self, item: InstalledItem) -> None:
        """Remove a pallet replaced by an update that came with a new barcode."""
        logger.warning(
            "Update of %s changed barcode; removing old pallet %s", item.title, item.barcode
        )
        item.local_path.unlink(missing_ok=True)
        remove_tree(self.mod_dir / item.barcode)
