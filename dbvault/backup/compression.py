"""
Compression handlers for database dumps.

Each archive holds exactly one entry: the dump file, stored under its
base name. Supported formats:
- zip: Standard zip compression
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
"""

import os
import tarfile
import zipfile
from datetime import datetime
from pathlib import Path

from dbvault.models import Artifact, ArtifactKind


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


EXTENSIONS = {
    'zip': 'zip',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
}


def create_archive(
    source_path: str,
    output_path: str,
    compression_format: str = 'zip'
) -> str:
    """
    Create a compressed archive holding a single file.

    Args:
        source_path: File to include in the archive
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('zip', 'tar.gz', 'tar.bz2', 'tar.xz')

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If the source is missing or empty, or writing fails
        ValueError: If compression_format is invalid
    """
    format_map = {
        'zip': _create_zip,
        'tar.gz': _create_tar,
        'tar.bz2': _create_tar,
        'tar.xz': _create_tar,
    }

    if compression_format not in format_map:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(format_map.keys())}"
        )

    source = Path(source_path)
    if not source.is_file():
        raise CompressionError(f"Source file does not exist: {source_path}")
    if source.stat().st_size == 0:
        raise CompressionError(f"Source file is empty: {source_path}")

    archive_path = f"{output_path}.{EXTENSIONS[compression_format]}"

    try:
        format_map[compression_format](source, archive_path, compression_format)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")


def _create_zip(source: Path, archive_path: str, compression_format: str):
    """
    Create a ZIP archive.

    Args:
        source: File to add
        archive_path: Output archive path
        compression_format: Not used for zip, kept for interface consistency
    """
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED, allowZip64=True) as zipf:
        zipf.write(source, source.name)


def _create_tar(source: Path, archive_path: str, compression_format: str):
    """
    Create a compressed TAR archive.

    Args:
        source: File to add
        archive_path: Output archive path
        compression_format: Compression format ('tar.gz', 'tar.bz2', 'tar.xz')
    """
    mode_map = {
        'tar.gz': 'w:gz',
        'tar.bz2': 'w:bz2',
        'tar.xz': 'w:xz',
    }

    with tarfile.open(archive_path, mode_map[compression_format]) as tar:
        # Basename only, so local directories do not leak into the archive
        tar.add(source, arcname=source.name, recursive=False)


def archive_dump(dump: Artifact, compression_format: str = 'zip') -> Artifact:
    """
    Compress a dump artifact next to the dump file.

    Args:
        dump: Dump artifact produced by the dumper
        compression_format: Archive format

    Returns:
        Archive artifact

    Raises:
        CompressionError: If archive creation fails
    """
    if dump.kind != ArtifactKind.DUMP:
        raise CompressionError(f"Expected a dump artifact, got {dump.kind.value}")

    output_base = os.path.splitext(dump.path)[0]
    archive_path = create_archive(dump.path, output_base, compression_format)

    return Artifact(
        path=archive_path,
        database=dump.database,
        created_at=datetime.now(),
        kind=ArtifactKind.ARCHIVE
    )


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
