import re
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import IO, Iterable, Iterator, List, Tuple

# Archives up to this size stay in memory; larger ones roll over to a temp file
SPOOL_MAX_MEMORY = 10 * 1024 * 1024
CHUNK_SIZE = 1024 * 1024


def safe_entry_name(name: str) -> str:
    """
    Archive entry name for a user-supplied filename.

    Directory components are stripped so entries cannot escape the archive
    root on extraction; control characters are replaced.
    """
    base = PurePosixPath(name.replace("\\", "/")).name
    base = re.sub(r'[\x00-\x1f<>:"|?*]', "_", base).strip()
    if base in ("", ".", ".."):
        return "file"
    return base


def dedupe_entry_name(name: str, used: set) -> str:
    """'photo.jpg' -> 'photo (1).jpg' when the name is already taken"""
    if name not in used:
        return name
    stem, suffix = Path(name).stem, Path(name).suffix
    counter = 1
    while f"{stem} ({counter}){suffix}" in used:
        counter += 1
    return f"{stem} ({counter}){suffix}"


def create_zip_archive(entries: Iterable[Tuple[str, Path]]) -> Tuple[IO[bytes], List[int]]:
    """
    Creates a zip archive from (entry name, path on disk) pairs.

    :param entries: original filename and stored file location per item.
    :return: the archive as a file object rewound to the start (the caller
             closes it), and the positions (in `entries`) that were skipped
             because their file was missing on disk.
    """
    archive = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
    used: set = set()
    skipped: List[int] = []
    try:
        with zipfile.ZipFile(archive, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zip_file:
            for position, (name, path) in enumerate(entries):
                if not path.is_file():
                    skipped.append(position)
                    continue
                entry_name = dedupe_entry_name(safe_entry_name(name), used)
                used.add(entry_name)
                zip_file.write(path, arcname=entry_name)
    except Exception:
        archive.close()
        raise
    archive.seek(0)
    return archive, skipped


def iter_file_chunks(fileobj: IO[bytes], chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield the file in chunks and close it once exhausted"""
    try:
        while True:
            chunk = fileobj.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        fileobj.close()
