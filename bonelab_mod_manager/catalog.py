"""Read-only views of mod.io catalog data."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class FileDescriptor:
    """One downloadable modfile."""

    id: int
    version: str | None = None
    platforms: list[str] = field(default_factory=list)
    date_added: int = 0
    filename: str = ""
    filesize: int = 0
    download_url: str = ""

    def targets(self, platform: str) -> bool:
        """True if the file is built for ``platform`` (untagged files match any)."""
        if not self.platforms:
            return True
        return platform in self.platforms

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "FileDescriptor":
        platforms = []
        for entry in data.get("platforms") or []:
            name = entry.get("platform") if isinstance(entry, dict) else entry
            if name:
                platforms.append(str(name))
        download = data.get("download") or {}
        return cls(
            id=int(data["id"]),
            version=data.get("version"),
            platforms=platforms,
            date_added=int(data.get("date_added") or 0),
            filename=data.get("filename") or "",
            filesize=int(data.get("filesize") or 0),
            download_url=download.get("binary_url") or "",
        )


@dataclass
class RemoteCatalogEntry:
    """One mod as returned by the subscriptions or mod endpoints."""

    id: int
    game_id: int
    name: str
    author: str | None = None
    description: str | None = None
    thumbnail_url: str | None = None
    date_updated: int = 0
    modfile: FileDescriptor | None = None

    @property
    def latest_file_id(self) -> int | None:
        return self.modfile.id if self.modfile else None

    @property
    def latest_file_updated(self) -> int | None:
        """Update time of the attached file in seconds, or None without a file."""
        if self.modfile is None:
            return None
        return self.modfile.date_added or self.date_updated

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RemoteCatalogEntry":
        modfile = data.get("modfile")
        submitted_by = data.get("submitted_by") or {}
        logo = data.get("logo") or {}
        return cls(
            id=int(data["id"]),
            game_id=int(data.get("game_id") or 0),
            name=data.get("name") or f"Mod {data['id']}",
            author=submitted_by.get("username"),
            description=data.get("description_plaintext"),
            thumbnail_url=logo.get("thumb_320x180"),
            date_updated=int(data.get("date_updated") or 0),
            modfile=FileDescriptor.from_api(modfile) if modfile else None,
        )
