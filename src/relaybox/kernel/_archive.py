"""Archive extraction and filesystem helpers for engine installs.

All functions here block and are meant to run in a worker thread.
"""

import shutil
import tarfile
import zipfile
from pathlib import Path

from relaybox.exceptions import ExtractError


def extract_archive(archive: Path, destination: Path) -> None:
    """Extract a ``.zip`` or ``.tar.gz`` archive.

    Args:
        archive: Archive file.
        destination: Directory to extract into; created if missing.

    Raises:
        ExtractError: If the archive is corrupt or of an unknown type.
    """
    destination.mkdir(parents=True, exist_ok=True)
    try:
        if zipfile.is_zipfile(archive):
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(destination)
        elif tarfile.is_tarfile(archive):
            with tarfile.open(archive) as tf:
                tf.extractall(destination, filter="data")
        else:
            msg = f"Unsupported archive format: {archive.name}"
            raise ExtractError(msg)
    except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
        msg = f"Failed to extract {archive.name}: {e}"
        raise ExtractError(msg) from e


def find_executable(root: Path, name: str) -> Path | None:
    """Find a file named ``name`` below ``root``.

    When several files match, the shallowest wins and ties are broken by
    lexical path order, so the result does not depend on directory
    listing order.

    Args:
        root: Directory to search.
        name: Exact file name.

    Returns:
        The chosen file, or None if nothing matches.
    """
    matches = [path for path in root.rglob(name) if path.is_file()]
    if not matches:
        return None
    return min(matches, key=lambda path: (len(path.relative_to(root).parts), path.as_posix()))


def path_size(path: Path) -> int:
    """Return the size of a file or the total size of a directory tree."""
    if path.is_file() or path.is_symlink():
        return path.lstat().st_size
    return sum(child.lstat().st_size for child in path.rglob("*") if child.is_file())


def remove_path(path: Path) -> None:
    """Delete a file or directory tree if it exists.

    Raises:
        OSError: If the deletion fails.
    """
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)


def make_executable(path: Path) -> None:
    """Add execute permission for everyone who can read the file."""
    mode = path.stat().st_mode
    path.chmod(mode | ((mode & 0o444) >> 2))
