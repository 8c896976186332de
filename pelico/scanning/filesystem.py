import os
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set

from .. import config
from ..exceptions import InvalidRootError
from ..models import FileDescriptor


class DirectoryWalker:
    """
    Lazy, restartable walk over a library root.

    Every iteration starts a fresh traversal, so the same walker can be reused
    for a second scan. Symlinks are followed, but each real path is visited at
    most once, which also breaks symlink cycles.
    """

    def __init__(self,
                 root: Path,
                 extensions: Optional[Iterable[str]] = None,
                 skip_dirs: Optional[Set[Path]] = None):
        root = Path(root)
        if not root.exists() or not root.is_dir():
            raise InvalidRootError(root)

        self.root = root.resolve()
        exts = config.ROM_EXTS if extensions is None else extensions
        self.extensions = {self._normalize_ext(e) for e in exts}
        self.skip_dirs = {Path(p).resolve() for p in (skip_dirs or set())}
        self.warnings: List[str] = []

    def __iter__(self) -> Iterator[FileDescriptor]:
        return self.walk()

    def walk(self) -> Iterator[FileDescriptor]:
        """Depth-first walker using os.scandir for speed."""
        self.warnings = []
        seen_dirs: Set[str] = set()
        seen_files: Set[str] = set()

        stack = [self.root]
        while stack:
            current = stack.pop()

            real_dir = os.path.realpath(current)
            if real_dir in seen_dirs:
                continue
            seen_dirs.add(real_dir)

            if self.skip_dirs and any(sd == current or sd in current.parents for sd in self.skip_dirs):
                continue

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                self._warn(f"Cannot read directory {current}: {e.strerror or e}")
                continue

            for entry in entries:
                try:
                    if entry.is_dir():
                        stack.append(Path(entry.path))
                        continue
                    if not entry.is_file():
                        continue
                except OSError as e:
                    self._warn(f"Cannot stat {entry.path}: {e.strerror or e}")
                    continue

                path = Path(entry.path)
                ext = path.suffix.lower()
                if ext not in self.extensions:
                    continue

                real_file = os.path.realpath(path)
                if real_file in seen_files:
                    continue
                seen_files.add(real_file)

                descriptor = self._describe(path, entry)
                if descriptor:
                    yield descriptor

    def _describe(self, path: Path, entry: os.DirEntry) -> Optional[FileDescriptor]:
        if not os.access(path, os.R_OK):
            self._warn(f"Permission denied: {path}")
            return None
        try:
            st = entry.stat()
        except OSError as e:
            self._warn(f"Cannot stat {path}: {e.strerror or e}")
            return None
        return FileDescriptor(
            path=path.absolute(),
            size_bytes=st.st_size,
            mtime=st.st_mtime,
            ext=path.suffix.lower(),
        )

    def _warn(self, message: str):
        logging.warning(message)
        self.warnings.append(message)

    @staticmethod
    def _normalize_ext(ext: str) -> str:
        ext = ext.strip().lower()
        return ext if ext.startswith(".") else f".{ext}"
