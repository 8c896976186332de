import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional, Set, Union

from .catalog.offline import OfflineCatalog
from .config import ReconcilerSettings
from .database.db import DBManager
from .database.ops import LibraryStore
from .exceptions import ResolutionError, PersistenceError, ScanInProgressError
from .metadata.cache import MetadataCache
from .metadata.resolver import Catalog, MetadataResolver
from .models import CacheStats, ReconciliationResult, RefreshResult, UnresolvedReason
from .reconciler import BatchReconciler
from . import config


class LibraryService:
    """
    Owns the long-lived pieces of the engine (store, catalog cache and
    resolver) and runs one scan at a time on top of them.
    """

    def __init__(self,
                 db_path: Union[Path, str],
                 catalog: Optional[Catalog] = None,
                 settings: Optional[ReconcilerSettings] = None):
        self.settings = settings or ReconcilerSettings()
        self.db_manager = DBManager(db_path)
        conn = self.db_manager.connect()
        self.store = LibraryStore(conn, self.db_manager.lock)

        self.catalog = catalog if catalog is not None else OfflineCatalog()
        self.cache = MetadataCache(ttl=self.settings.cache_ttl, sweep_interval=self.settings.sweep_interval)
        self.cache.start()
        self.resolver = MetadataResolver(
            self.catalog,
            self.cache,
            max_in_flight=self.settings.catalog_workers,
            timeout=self.settings.catalog_timeout,
        )

        # Held for the whole scan; backup/restore take it through `exclusive`
        self._scan_lock = threading.Lock()
        self.last_reconciler: Optional[BatchReconciler] = None

    def start_scan(self,
                   root: Union[Path, str],
                   extensions: Optional[Iterable[str]] = None,
                   cancel_event: Optional[threading.Event] = None,
                   platform: Optional[str] = None,
                   server_location: str = config.DEFAULT_SERVER_LOCATION,
                   skip_dirs: Optional[Set[Path]] = None) -> ReconciliationResult:
        """
        Runs a reconciliation synchronously. Raises ScanInProgressError when
        another scan (or an exclusive section) holds the library.
        """
        if not self._scan_lock.acquire(blocking=False):
            raise ScanInProgressError("a scan is already in progress")
        try:
            reconciler = BatchReconciler(self.store, self.resolver, settings=self.settings)
            self.last_reconciler = reconciler
            return reconciler.run(
                Path(root),
                extensions=extensions,
                cancel_event=cancel_event,
                platform=platform,
                server_location=server_location,
                skip_dirs=skip_dirs,
            )
        finally:
            self._scan_lock.release()

    def refresh_metadata(self,
                         limit: Optional[int] = None,
                         cancel_event: Optional[threading.Event] = None) -> RefreshResult:
        """
        Resolves games that were created without catalog data and folds the
        accepted candidates into them. Same acceptance rule as a scan.
        """
        if not self._scan_lock.acquire(blocking=False):
            raise ScanInProgressError("a scan is already in progress")
        try:
            result = RefreshResult()
            games = self.store.list_games_needing_metadata(limit)
            logging.info(f"Refreshing metadata for {len(games)} games")

            for game, platform in games:
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    break
                try:
                    candidates = self.resolver.resolve(game.title, platform)
                except ResolutionError as e:
                    logging.warning(f"Catalog lookup failed for game {game.id}: {e}")
                    result.unresolved[game.id] = UnresolvedReason.CATALOG_ERROR
                    continue

                if not candidates:
                    result.unresolved[game.id] = UnresolvedReason.NO_MATCH
                    continue
                if candidates[0].confidence < self.settings.confidence_threshold:
                    result.unresolved[game.id] = UnresolvedReason.LOW_CONFIDENCE
                    continue

                try:
                    self.store.apply_metadata_update(game.id, candidates[0])
                except PersistenceError as e:
                    logging.error(f"Metadata update failed for game {game.id}: {e}")
                    result.errors[game.id] = str(e)
                    continue
                result.updated.append(game.id)

            logging.info(
                f"Metadata refresh complete: {len(result.updated)} updated, "
                f"{len(result.unresolved)} unresolved, {len(result.errors)} errors"
            )
            return result
        finally:
            self._scan_lock.release()

    @property
    def scanning(self) -> bool:
        return self._scan_lock.locked()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self):
        self.cache.clear()
        logging.info("Metadata cache cleared")

    @contextmanager
    def exclusive(self, invalidate_cache: bool = True) -> Iterator[LibraryStore]:
        """
        Blocks scans while the body runs (backup/restore). Cached catalog
        answers are dropped afterwards since the collection may have changed.
        """
        if not self._scan_lock.acquire(blocking=False):
            raise ScanInProgressError("cannot take the library while a scan is running")
        try:
            yield self.store
        finally:
            if invalidate_cache:
                self.cache.clear()
            self._scan_lock.release()

    def close(self):
        self.cache.close()
        self.resolver.close()
        close_catalog = getattr(self.catalog, "close", None)
        if close_catalog is not None:
            close_catalog()
        self.db_manager.close()

    def __enter__(self) -> "LibraryService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
