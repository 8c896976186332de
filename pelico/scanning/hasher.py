import hashlib
from pathlib import Path

from .. import config
from ..exceptions import FileHashError
from ..models import ContentIdentity


class FileHasher:
    def __init__(self, chunk_size: int = config.HASH_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def compute_identity(self, path: Path) -> ContentIdentity:
        """
        Streams the file through SHA-256 and pairs the digest with the byte count.

        Memory stays bounded by the chunk size, so multi-GB disc images are fine.
        Any read failure (vanished file, permission change, device removal)
        raises FileHashError; the partial digest is thrown away.
        """
        h = hashlib.sha256()
        size = 0
        try:
            with open(path, 'rb') as f:
                while chunk := f.read(self.chunk_size):
                    h.update(chunk)
                    size += len(chunk)
        except OSError as e:
            raise FileHashError(path, e.strerror or str(e)) from e
        return ContentIdentity(h.hexdigest(), size)
