"""Archive extraction and directory moves for pallet installs."""

import errno
import os
import shutil
import subprocess
import zipfile
from pathlib import Path

import py7zr
import rarfile


class ExtractionError(Exception):
    """Raised when a pallet archive cannot be unpacked."""

    pass


def detect_archive_type(filepath: Path) -> str | None:
    """
    Identify a pallet archive from its header, or its suffix when the header is unknown.

    Returns "zip", "7z", "rar" or None.
    """
    try:
        with open(filepath, "rb") as f:
            header = f.read(8)

        if header[:2] == b"PK":
            return "zip"
        if header[:6] == b"7z\xbc\xaf'\x1c":
            return "7z"
        if header[:4] == b"Rar!":
            return "rar"
    except OSError:
        pass

    suffix = filepath.suffix.lower()
    if suffix == ".zip":
        return "zip"
    elif suffix == ".7z":
        return "7z"
    elif suffix == ".rar":
        return "rar"

    return None


def _check_members(names: list[str], target_dir: Path) -> None:
    """Refuse archives with members that would land outside target_dir."""
    root = target_dir.resolve()
    for name in names:
        dest = (root / name).resolve()
        if dest != root and root not in dest.parents:
            raise ExtractionError(f"Archive member escapes destination: {name}")


def extract_archive(archive_path: Path, target_dir: Path) -> None:
    """Extract an archive into target_dir, creating it if needed."""
    archive_type = detect_archive_type(archive_path)
    if archive_type is None:
        raise ExtractionError(f"Unknown archive type: {archive_path}")

    target_dir.mkdir(parents=True, exist_ok=True)

    try:
        if archive_type == "zip":
            _extract_zip(archive_path, target_dir)
        elif archive_type == "7z":
            _extract_7z(archive_path, target_dir)
        elif archive_type == "rar":
            _extract_rar(archive_path, target_dir)
    except ExtractionError:
        raise
    except Exception as e:
        raise ExtractionError(f"Failed to extract {archive_path}: {e}") from e


def _extract_zip(archive_path: Path, target_dir: Path) -> None:
    with zipfile.ZipFile(archive_path, "r") as zf:
        _check_members(zf.namelist(), target_dir)
        zf.extractall(target_dir)


def _extract_7z(archive_path: Path, target_dir: Path) -> None:
    """py7zr first; codecs it lacks (BCJ2 and friends) go to the 7z binary."""
    try:
        with py7zr.SevenZipFile(archive_path, "r") as szf:
            _check_members(szf.getnames(), target_dir)
            szf.extractall(target_dir)
    except (py7zr.UnsupportedCompressionMethodError, py7zr.Bad7zFile):
        _extract_7z_system(archive_path, target_dir)


def _extract_7z_system(archive_path: Path, target_dir: Path) -> None:
    sz_bin = shutil.which("7z") or shutil.which("7zz")
    if not sz_bin:
        raise ExtractionError(
            f"py7zr cannot extract {archive_path.name} (unsupported compression). "
            "Install p7zip-full for broader 7z support."
        )

    _check_members(_list_7z_system(sz_bin, archive_path), target_dir)

    result = subprocess.run(
        [sz_bin, "x", str(archive_path), f"-o{target_dir}", "-y"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise ExtractionError(
            f"7z extraction failed for {archive_path.name}: {result.stderr.strip()}"
        )


def _list_7z_system(sz_bin: str, archive_path: Path) -> list[str]:
    """Member names from ``7z l -slt``; entries follow the first dashed separator line."""
    result = subprocess.run(
        [sz_bin, "l", "-slt", str(archive_path)],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise ExtractionError(
            f"7z listing failed for {archive_path.name}: {result.stderr.strip()}"
        )

    names = []
    in_entries = False
    for line in result.stdout.splitlines():
        if line.startswith("----------"):
            in_entries = True
        elif in_entries and line.startswith("Path = "):
            names.append(line[len("Path = "):])
    return names


def _extract_rar(archive_path: Path, target_dir: Path) -> None:
    with rarfile.RarFile(archive_path, "r") as rf:
        _check_members(rf.namelist(), target_dir)
        rf.extractall(target_dir)


def list_children(directory: Path) -> list[Path]:
    """Direct children of a directory, sorted by name."""
    return sorted(Path(directory).iterdir(), key=lambda p: p.name)


def move_directory(src: Path, dst: Path) -> None:
    """Move a directory to dst, which must not exist yet."""
    try:
        os.replace(src, dst)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        shutil.move(str(src), str(dst))


def remove_empty_directory(directory: Path) -> None:
    Path(directory).rmdir()


def remove_tree(directory: Path) -> None:
    """Delete a directory tree if it exists."""
    if Path(directory).exists():
        shutil.rmtree(directory)
