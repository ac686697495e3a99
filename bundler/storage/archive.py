import hashlib
import io
import zipfile
from typing import Iterable, Tuple


def calculate_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_zip(entries: Iterable[Tuple[str, bytes]], compression_level: int = 6) -> bytes:
    """Deflate each (name, data) pair into one in-memory ZIP and return its bytes."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(
        buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=compression_level
    ) as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return buffer.getvalue()
