"""Archive builders and constants shared by the test modules."""

import io
import tarfile
import zipfile

# Bytes the slow endpoint sends before stalling
SLOW_PREFIX = 100

PAYLOAD = bytes(range(256)) + b"strudel"


def make_zip(files: dict[str, bytes]) -> bytes:
    """Builds an in-memory zip archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def make_tar_gz(files: dict[str, bytes]) -> bytes:
    """Builds an in-memory gzip-compressed tar archive."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buffer.getvalue()
