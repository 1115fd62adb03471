"""Read and write BONELAB ``.manifest`` files.

A manifest is a small object graph rather than a nested document::

    {
      "version": 2,
      "root": {"ref": "1", "type": "pallet-manifest#0"},
      "objects": {
        "1": {... pallet ...},
        "2": {... mod listing ...},
        "3": {... mod.io target ...}
      }
    }

Objects point at each other through ``{"ref": ..., "type": ...}``
references. The object keys ``"1"``, ``"2"`` and ``"3"`` are fixed; the game
resolves references by them. Only the pallet is required: locally authored
mods have no listing and no target.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .catalog import FileDescriptor, RemoteCatalogEntry

MANIFEST_SUFFIX = ".manifest"
MANIFEST_VERSION = 2

PALLET_REF = "1"
LISTING_REF = "2"
TARGET_REF = "3"

PALLET_TYPE = "pallet-manifest#0"
LISTING_TYPE = "mod-listing#0"
TARGET_TYPE = "mod-target-modio#0"

GAME_MODS_ROOT = "C:/users/steamuser/AppData/LocalLow/Stress Level Zero/BONELAB/Mods"


class MalformedManifest(Exception):
    """Raised when a manifest cannot be decoded."""

    pass


def _field(data: dict[str, Any], key: str, kind: type | tuple, where: str, optional: bool = False) -> Any:
    if key not in data or data[key] is None:
        if optional:
            return None
        raise MalformedManifest(f"{where}: missing '{key}'")
    value = data[key]
    # bool is an int subclass; never accept it for numeric fields
    if kind is int and isinstance(value, bool):
        raise MalformedManifest(f"{where}: '{key}' must be int")
    if not isinstance(value, kind):
        name = kind.__name__ if isinstance(kind, type) else "/".join(k.__name__ for k in kind)
        raise MalformedManifest(f"{where}: '{key}' must be {name}")
    return value


def _object(data: Any, where: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedManifest(f"{where}: expected an object")
    return data


def _isa(data: dict[str, Any], where: str) -> str:
    isa = _object(_field(data, "isa", dict, where), f"{where}.isa")
    return _field(isa, "type", str, f"{where}.isa")


@dataclass
class Reference:
    ref: str
    type: str

    def to_dict(self) -> dict[str, Any]:
        return {"ref": self.ref, "type": self.type}

    @classmethod
    def from_dict(cls, data: Any, where: str = "reference") -> "Reference":
        data = _object(data, where)
        return cls(ref=_field(data, "ref", str, where), type=_field(data, "type", str, where))


@dataclass
class Pallet:
    pallet_barcode: str
    pallet_path: str
    catalog_path: str
    installed_date: str
    update_date: str
    version: str | None = None
    mod_listing: Reference | None = None
    active: bool = True
    isa_type: str = PALLET_TYPE

    def to_dict(self) -> dict[str, Any]:
        return {
            "palletBarcode": self.pallet_barcode,
            "palletPath": self.pallet_path,
            "catalogPath": self.catalog_path,
            "version": self.version,
            "installedDate": self.installed_date,
            "updateDate": self.update_date,
            "modListing": self.mod_listing.to_dict() if self.mod_listing else None,
            "active": self.active,
            "isa": {"type": self.isa_type},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Pallet":
        where = "objects.1"
        data = _object(data, where)
        listing = data.get("modListing")
        return cls(
            pallet_barcode=_field(data, "palletBarcode", str, where),
            pallet_path=_field(data, "palletPath", str, where),
            catalog_path=_field(data, "catalogPath", str, where),
            version=_field(data, "version", str, where, optional=True),
            installed_date=_field(data, "installedDate", str, where),
            update_date=_field(data, "updateDate", str, where),
            mod_listing=Reference.from_dict(listing, f"{where}.modListing") if listing is not None else None,
            active=_field(data, "active", bool, where),
            isa_type=_isa(data, where),
        )


@dataclass
class ModListing:
    barcode: str
    title: str | None = None
    description: str | None = None
    author: str | None = None
    version: str | None = None
    thumbnail_url: str | None = None
    targets: dict[str, Reference] = field(default_factory=dict)
    isa_type: str = LISTING_TYPE

    def to_dict(self) -> dict[str, Any]:
        return {
            "barcode": self.barcode,
            "title": self.title,
            "description": self.description,
            "author": self.author,
            "version": self.version,
            "thumbnailUrl": self.thumbnail_url,
            "targets": {name: ref.to_dict() for name, ref in self.targets.items()},
            "isa": {"type": self.isa_type},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ModListing":
        where = "objects.2"
        data = _object(data, where)
        targets = _field(data, "targets", dict, where)
        return cls(
            barcode=_field(data, "barcode", str, where),
            title=_field(data, "title", str, where, optional=True),
            description=_field(data, "description", str, where, optional=True),
            author=_field(data, "author", str, where, optional=True),
            version=_field(data, "version", str, where, optional=True),
            thumbnail_url=_field(data, "thumbnailUrl", str, where, optional=True),
            targets={
                name: Reference.from_dict(ref, f"{where}.targets.{name}")
                for name, ref in targets.items()
            },
            isa_type=_isa(data, where),
        )


@dataclass
class ModTarget:
    game_id: int
    mod_id: int
    modfile_id: int
    thumbnail_override: str | None = None
    isa_type: str = TARGET_TYPE

    def to_dict(self) -> dict[str, Any]:
        return {
            "thumbnailOverride": self.thumbnail_override,
            "gameId": self.game_id,
            "modId": self.mod_id,
            "modfileId": self.modfile_id,
            "isa": {"type": self.isa_type},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ModTarget":
        where = "objects.3"
        data = _object(data, where)
        return cls(
            thumbnail_override=_field(data, "thumbnailOverride", str, where, optional=True),
            game_id=_field(data, "gameId", int, where),
            mod_id=_field(data, "modId", int, where),
            modfile_id=_field(data, "modfileId", int, where),
            isa_type=_isa(data, where),
        )


@dataclass
class ManifestRecord:
    """One installed pallet plus optional display metadata and mod.io provenance."""

    pallet: Pallet
    listing: ModListing | None = None
    target: ModTarget | None = None
    version: int = MANIFEST_VERSION
    root: Reference = field(default_factory=lambda: Reference(PALLET_REF, PALLET_TYPE))
    # object keys stored as an explicit null, written back as null
    null_objects: tuple[str, ...] = ()

    @property
    def barcode(self) -> str:
        return self.pallet.pallet_barcode

    def to_dict(self) -> dict[str, Any]:
        objects: dict[str, Any] = {PALLET_REF: self.pallet.to_dict()}
        if self.listing is not None:
            objects[LISTING_REF] = self.listing.to_dict()
        elif LISTING_REF in self.null_objects:
            objects[LISTING_REF] = None
        if self.target is not None:
            objects[TARGET_REF] = self.target.to_dict()
        elif TARGET_REF in self.null_objects:
            objects[TARGET_REF] = None
        return {
            "version": self.version,
            "root": self.root.to_dict(),
            "objects": objects,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ManifestRecord":
        data = _object(data, "manifest")
        root = Reference.from_dict(_field(data, "root", dict, "manifest"), "root")
        objects = _object(_field(data, "objects", dict, "manifest"), "objects")
        if PALLET_REF not in objects:
            raise MalformedManifest("objects: missing pallet object '1'")
        listing = objects.get(LISTING_REF)
        target = objects.get(TARGET_REF)
        return cls(
            version=_field(data, "version", int, "manifest"),
            root=root,
            pallet=Pallet.from_dict(objects[PALLET_REF]),
            listing=ModListing.from_dict(listing) if listing is not None else None,
            target=ModTarget.from_dict(target) if target is not None else None,
            null_objects=tuple(
                key for key in (LISTING_REF, TARGET_REF) if key in objects and objects[key] is None
            ),
        )


def decode_manifest(text: str | bytes) -> ManifestRecord:
    """Parse manifest text, raising MalformedManifest on any structural problem."""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedManifest(f"Invalid JSON: {e}") from e
    return ManifestRecord.from_dict(data)


def encode_manifest(record: ManifestRecord) -> str:
    """Serialize a manifest the way the game writes them (two-space pretty JSON)."""
    return json.dumps(record.to_dict(), indent=2, ensure_ascii=False)


def read_manifest(path: Path) -> ManifestRecord:
    """Read and decode one manifest file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise MalformedManifest(f"Cannot read {path}: {e}") from e
    try:
        return decode_manifest(text)
    except MalformedManifest as e:
        raise MalformedManifest(f"{Path(path).name}: {e}") from e


def write_manifest(path: Path, record: ManifestRecord) -> None:
    """Write a manifest, replacing any existing file in one step."""
    path = Path(path)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(encode_manifest(record))
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def manifest_path(mod_dir: Path, barcode: str) -> Path:
    return Path(mod_dir) / f"{barcode}{MANIFEST_SUFFIX}"


def build_manifest(
    entry: RemoteCatalogEntry,
    modfile: FileDescriptor,
    barcode: str,
    pallet_name: str,
    catalog_name: str,
    installed_at: int,
    updated_at: int,
    install_root: str = GAME_MODS_ROOT,
) -> ManifestRecord:
    """
    Build a fresh manifest for a pallet installed from mod.io.

    ``installed_at`` and ``updated_at`` are milliseconds since the epoch.
    Paths are written the way the game sees them, rooted at ``install_root``.
    """
    return ManifestRecord(
        pallet=Pallet(
            pallet_barcode=barcode,
            pallet_path=f"{install_root}/{barcode}/{pallet_name}",
            catalog_path=f"{install_root}/{barcode}/{catalog_name}",
            version=modfile.version,
            installed_date=str(installed_at),
            update_date=str(updated_at),
            mod_listing=Reference(LISTING_REF, LISTING_TYPE),
            active=True,
        ),
        listing=ModListing(
            barcode=barcode,
            title=entry.name,
            description=entry.description,
            author=entry.author,
            version=modfile.version,
            thumbnail_url=entry.thumbnail_url,
            targets={"pc": Reference(TARGET_REF, TARGET_TYPE)},
        ),
        target=ModTarget(
            game_id=entry.game_id,
            mod_id=entry.id,
            modfile_id=modfile.id,
        ),
    )
