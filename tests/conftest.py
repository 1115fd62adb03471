"""Shared test fixtures for bonelab-mod-manager."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest

from bonelab_mod_manager.api import ModioAPIError
from bonelab_mod_manager.catalog import FileDescriptor, RemoteCatalogEntry
from bonelab_mod_manager.config import Settings
from bonelab_mod_manager.inventory import InstalledItem
from bonelab_mod_manager.manifest import (
    ManifestRecord,
    Pallet,
    build_manifest,
    manifest_path,
    write_manifest,
)

GAME_ID = 3809


def make_zip(files: dict[str, bytes | str]) -> bytes:
    """Build an in-memory zip archive from ``{member name: content}``."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def pallet_zip(barcode: str, extra: dict[str, str] | None = None) -> bytes:
    """A well-formed pallet archive: one barcode directory, two descriptors."""
    files = {
        f"{barcode}/_Catalog.json": '{"catalog": true}',
        f"{barcode}/_Pallet.pallet.json": '{"pallet": true}',
        f"{barcode}/bundles/content.bundle": "bundle-bytes",
    }
    files.update(extra or {})
    return make_zip(files)


def make_file(
    file_id: int,
    date_added: int = 2000,
    version: str = "1.0.0",
    platforms: list[str] | None = None,
) -> FileDescriptor:
    return FileDescriptor(
        id=file_id,
        version=version,
        platforms=["windows"] if platforms is None else platforms,
        date_added=date_added,
        filename=f"file{file_id}.zip",
        filesize=0,
        download_url=f"https://files.example/{file_id}.zip",
    )


def make_entry(
    mod_id: int,
    name: str = "Cool Mod",
    modfile: FileDescriptor | None = None,
    date_updated: int = 2000,
) -> RemoteCatalogEntry:
    return RemoteCatalogEntry(
        id=mod_id,
        game_id=GAME_ID,
        name=name,
        author="someone",
        description="A mod",
        thumbnail_url="https://thumbs.example/1.png",
        date_updated=date_updated,
        modfile=modfile,
    )


def write_installed(
    mod_dir: Path,
    barcode: str,
    mod_id: int | None = 42,
    file_id: int = 100,
    installed_at: int = 500,
    updated_at: int = 1000,
    content: bytes | None = b"old-bundle",
) -> InstalledItem:
    """Place a manifest (and optionally pallet content) in the mod folder."""
    if mod_id is None:
        record = ManifestRecord(
            pallet=Pallet(
                pallet_barcode=barcode,
                pallet_path=f"{barcode}/_Pallet.pallet.json",
                catalog_path=f"{barcode}/_Catalog.json",
                installed_date=str(installed_at),
                update_date=str(updated_at),
            )
        )
    else:
        entry = make_entry(mod_id, name=barcode)
        record = build_manifest(
            entry,
            make_file(file_id),
            barcode,
            "_Pallet.pallet.json",
            "_Catalog.json",
            installed_at=installed_at,
            updated_at=updated_at,
        )
    path = manifest_path(mod_dir, barcode)
    write_manifest(path, record)
    if content is not None:
        (mod_dir / barcode).mkdir(exist_ok=True)
        (mod_dir / barcode / "content.bundle").write_bytes(content)
    return InstalledItem.from_record(path, record)


class FakeResponse:
    def __init__(self, payload: bytes):
        self.payload = payload
        self.headers = {"content-length": str(len(payload))}

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc) -> None:
        pass

    def iter_content(self, chunk_size: int = 8192):
        for i in range(0, len(self.payload), chunk_size):
            yield self.payload[i : i + chunk_size]


class FakeAPI:
    """In-memory stand-in for ModioAPI."""

    def __init__(self) -> None:
        self.subscriptions: list[RemoteCatalogEntry] = []
        self.mods: dict[int, RemoteCatalogEntry] = {}
        self.files: dict[int, list[FileDescriptor]] = {}
        self.downloads: dict[str, bytes] = {}
        self.subscribed: list[int] = []
        self.failures: dict[str, list[Exception]] = {}
        self.calls: list[str] = []
        self.access_token: str | None = None

    def fail(self, method: str, *errors: Exception) -> None:
        """Queue errors raised by the next calls to ``method``."""
        self.failures.setdefault(method, []).extend(errors)

    def _maybe_fail(self, method: str) -> None:
        self.calls.append(method)
        queued = self.failures.get(method)
        if queued:
            raise queued.pop(0)

    def set_token(self, token: str) -> None:
        self.access_token = token

    def request_code(self, email: str) -> None:
        self._maybe_fail("request_code")

    def exchange_code(self, code: str) -> str:
        self._maybe_fail("exchange_code")
        self.access_token = f"token-for-{code}"
        return self.access_token

    def current_user(self) -> dict:
        self._maybe_fail("current_user")
        return {"username": "tester"}

    def get_subscriptions(self, game_id: int) -> list[RemoteCatalogEntry]:
        self._maybe_fail("get_subscriptions")
        return list(self.subscriptions)

    def subscribe(self, game_id: int, mod_id: int) -> None:
        self._maybe_fail("subscribe")
        self.subscribed.append(mod_id)

    def get_mod(self, game_id: int, mod_id: int) -> RemoteCatalogEntry:
        self._maybe_fail("get_mod")
        if mod_id not in self.mods:
            raise ModioAPIError(f"404 mod {mod_id} not found", status_code=404)
        return self.mods[mod_id]

    def get_files(self, game_id: int, mod_id: int) -> list[FileDescriptor]:
        self._maybe_fail("get_files")
        return sorted(self.files.get(mod_id, []), key=lambda f: f.id)

    def open_download(self, url: str) -> FakeResponse:
        self._maybe_fail("open_download")
        return FakeResponse(self.downloads[url])


@pytest.fixture
def mod_dir(tmp_path: Path) -> Path:
    path = tmp_path / "Mods"
    path.mkdir()
    return path


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def fake_api() -> FakeAPI:
    return FakeAPI()


@pytest.fixture
def settings(tmp_path: Path, mod_dir: Path, cache_dir: Path) -> Settings:
    return Settings(
        config_dir=tmp_path / "config",
        cache_dir=cache_dir,
        mod_folder=mod_dir,
        api_key="test-key",
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []
