"""Stream modfiles from mod.io to the local cache."""

from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from .api import ModioAPI, ModioRateLimited
from .catalog import FileDescriptor


class DownloadError(Exception):
    """Raised when a modfile cannot be fetched."""

    pass


class Downloader:
    """Streams modfiles to disk with optional progress reporting."""

    def __init__(self, api: ModioAPI, progress: Progress | None = None):
        self.api = api
        self.progress = progress

    def download_file(
        self,
        modfile: FileDescriptor,
        target: Path,
        label: str | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> Path:
        """
        Download a modfile to ``target``.

        The data is written to a ``.downloading_`` sibling first and renamed
        on success. ModioRateLimited is raised unchanged so callers can back
        off; every other failure becomes DownloadError.

        Args:
            on_progress: Optional callback(bytes_downloaded, total_bytes).
        """
        if not modfile.download_url:
            raise DownloadError(f"File {modfile.id} has no download URL")

        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_name(f".downloading_{target.name}")
        task_id: TaskID | None = None
        if self.progress is not None:
            task_id = self.progress.add_task(
                "download",
                filename=(label or target.name)[:40],
                total=modfile.filesize or None,
            )

        try:
            response = self.api.open_download(modfile.download_url)
            with response:
                total_size = int(response.headers.get("content-length", 0)) or modfile.filesize
                if task_id is not None:
                    self.progress.update(task_id, total=total_size)

                bytes_downloaded = 0
                with open(temp_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=65536):
                        if chunk:
                            f.write(chunk)
                            bytes_downloaded += len(chunk)
                            if task_id is not None:
                                self.progress.update(task_id, advance=len(chunk))
                            if on_progress:
                                on_progress(bytes_downloaded, total_size)

            temp_path.replace(target)
            return target

        except ModioRateLimited:
            raise
        except Exception as e:
            raise DownloadError(f"Failed to download {modfile.filename or modfile.id}: {e}") from e
        finally:
            if temp_path.exists():
                temp_path.unlink()
            if task_id is not None:
                self.progress.remove_task(task_id)


def create_download_progress(console: Console | None = None) -> Progress:
    """Transient per-file progress display used by ``sync``."""
    return Progress(
        TextColumn("[bold blue]{task.fields[filename]}", justify="right"),
        BarColumn(bar_width=30),
        "[progress.percentage]{task.percentage:>3.0f}%",
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
        transient=True,
    )
