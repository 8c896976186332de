"""
Batch reconciliation of a library root against the collection.

One run walks the root, identifies every file by content, reports duplicates,
resolves unknown files against the catalog and commits accepted metadata.
Commits are best effort: each item is its own transaction and a failing item
never stops the batch.
"""
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from tqdm import tqdm

from . import config
from .config import ReconcilerSettings
from .database.ops import LibraryStore
from .exceptions import FileHashError, InvalidRootError, PersistenceError, ResolutionError
from .metadata.naming import extract_game_title, guess_platform
from .metadata.resolver import MetadataResolver
from .models import (
    AppliedUpdate, ContentIdentity, FileDescriptor, FileError, FileLocation,
    MetadataCandidate, ReconciliationResult, UnresolvedFile, UnresolvedReason,
)
from .scanning.duplicates import AlreadyIndexed, DuplicateIndex, KnownDuplicate, RegistrationOutcome
from .scanning.filesystem import DirectoryWalker
from .scanning.hasher import FileHasher

COMMIT_RETRY_BACKOFF_SECONDS = 0.1


class ScanState(str, Enum):
    IDLE = "idle"
    WALKING = "walking"
    IDENTIFYING = "identifying"
    RESOLVING = "resolving"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class _Identified:
    descriptor: FileDescriptor
    identity: Optional[ContentIdentity] = None
    outcome: Optional[RegistrationOutcome] = None
    error: Optional[str] = None


@dataclass
class _Pending:
    """A file waiting for catalog resolution."""
    location: FileLocation
    title: str
    platform: Optional[str]
    candidates: List[MetadataCandidate] = field(default_factory=list)


class BatchReconciler:
    def __init__(self,
                 store: LibraryStore,
                 resolver: MetadataResolver,
                 index: Optional[DuplicateIndex] = None,
                 settings: Optional[ReconcilerSettings] = None,
                 hasher: Optional[FileHasher] = None):
        self.store = store
        self.resolver = resolver
        self.index = index if index is not None else DuplicateIndex()
        self.settings = settings or ReconcilerSettings()
        self.hasher = hasher or FileHasher()
        self.state = ScanState.IDLE
        self.history: List[ScanState] = [ScanState.IDLE]

    def run(self,
            root: Path,
            extensions: Optional[Iterable[str]] = None,
            cancel_event: Optional[threading.Event] = None,
            platform: Optional[str] = None,
            server_location: str = config.DEFAULT_SERVER_LOCATION,
            skip_dirs: Optional[Set[Path]] = None) -> ReconciliationResult:
        """
        Reconciles one root. Only an invalid root aborts the run; per-file
        failures end up in the result.
        """
        cancel_event = cancel_event or threading.Event()
        self.history = [ScanState.IDLE]
        self.state = ScanState.IDLE
        self.index.clear()

        self._enter(ScanState.WALKING)
        try:
            walker = DirectoryWalker(
                root,
                extensions=extensions if extensions is not None else self.settings.extensions,
                skip_dirs=skip_dirs,
            )
        except InvalidRootError:
            self._enter(ScanState.FAILED)
            raise

        result = ReconciliationResult(root=walker.root)
        logging.info(f"Reconciling {walker.root} (server={server_location})")

        try:
            self._enter(ScanState.IDENTIFYING)
            identified = self._identify(walker, server_location, cancel_event, result)
            result.skipped = list(walker.warnings)

            queue = self._classify(identified, platform, result)

            if cancel_event.is_set():
                self._mark_cancelled(queue, result)
            else:
                self._enter(ScanState.RESOLVING)
                accepted = self._resolve(queue, cancel_event, result)

                self._enter(ScanState.COMMITTING)
                self._commit(accepted, cancel_event, result)
        except Exception:
            self._enter(ScanState.FAILED)
            logging.exception(f"Reconciliation of {walker.root} failed")
            raise

        result.cancelled = cancel_event.is_set()
        self._enter(ScanState.DONE)

        summary = result.summary()
        logging.info(
            f"Reconciliation complete: {summary['walked']} files, "
            f"{summary['new_files_registered']} new, "
            f"{summary['duplicate_groups']} duplicate groups, "
            f"{summary['unresolved']} need confirmation, "
            f"{summary['errors']} errors"
            + (" (cancelled)" if result.cancelled else "")
        )
        return result

    # --- Stage 1: Identify ---

    def _identify(self,
                  walker: DirectoryWalker,
                  server_location: str,
                  cancel_event: threading.Event,
                  result: ReconciliationResult) -> List[_Identified]:
        identified: List[_Identified] = []
        progress = tqdm(desc="Identifying", unit="file", disable=not self.settings.show_progress)

        def on_done(descriptor: FileDescriptor, item: _Identified):
            result.walked += 1
            progress.update(1)
            if item.error is not None:
                result.errors.append(FileError(descriptor.path, "identify", item.error))
            else:
                identified.append(item)

        try:
            self._run_bounded(
                walker,
                lambda d: self._identify_one(d, server_location),
                self.settings.hash_workers,
                cancel_event,
                on_done,
                "hash",
            )
        finally:
            progress.close()

        logging.info(f"Identified {len(identified)} files ({len(result.errors)} errors)")
        return identified

    def _identify_one(self, descriptor: FileDescriptor, server_location: str) -> _Identified:
        """Runs on a hashing worker."""
        try:
            identity = self.hasher.compute_identity(descriptor.path)
        except FileHashError as e:
            logging.warning(f"Cannot hash {descriptor.path}: {e}")
            return _Identified(descriptor, error=str(e))

        try:
            self.index.seed(identity, self.store.find_locations_by_identity(identity))
        except PersistenceError as e:
            logging.warning(f"Lookup failed for {descriptor.path}: {e}")
            return _Identified(descriptor, identity=identity, error=str(e))

        location = FileLocation(path=descriptor.path, identity=identity, server_location=server_location)
        return _Identified(descriptor, identity, self.index.register(identity, location))

    # --- Stage 2: Classify ---

    def _classify(self,
                  identified: List[_Identified],
                  platform: Optional[str],
                  result: ReconciliationResult) -> List[_Pending]:
        """
        Runs after every registration so each file sees the final duplicate
        graph. Duplicates are reported, never resolved or merged. A copy of
        a known game kept on another server is linked to that game instead.
        """
        linked = self._link_copies(identified, result)

        recorded = {item.identity for item in identified}
        result.duplicates = [g for g in self.index.duplicate_groups() if g.identity in recorded]
        duplicate_identities = {g.identity for g in result.duplicates}

        queue: List[_Pending] = []
        for item in identified:
            path = item.descriptor.path
            outcome = item.outcome

            if id(item) in linked:
                continue

            if item.identity in duplicate_identities or isinstance(outcome, KnownDuplicate):
                result.duplicate_paths.append(path)
                continue

            if isinstance(outcome, AlreadyIndexed) and outcome.location.is_linked:
                result.registered.append(path)
                continue

            location = outcome.location
            queue.append(_Pending(
                location=location,
                title=extract_game_title(path.name),
                platform=guess_platform(path, platform),
            ))

        if result.duplicates:
            logging.info(
                f"Found {len(result.duplicates)} duplicate groups "
                f"covering {len(result.duplicate_paths)} files from this run"
            )
        return queue

    def _link_copies(self, identified: List[_Identified], result: ReconciliationResult) -> Set[int]:
        """
        Links each new location whose content is already held, entirely by
        one game, on other servers only. Returns the ids of linked items.
        """
        copies = []
        for item in identified:
            if not isinstance(item.outcome, KnownDuplicate):
                continue
            location = item.outcome.location
            others = [loc for loc in self.index.locations(item.identity) if loc is not location]
            game_ids = {loc.game_id for loc in others}
            if len(game_ids) != 1 or None in game_ids:
                continue
            if any(loc.server_location == location.server_location for loc in others):
                continue
            copies.append((item, game_ids.pop()))

        # Eligibility is judged on the pre-link view of every location
        linked: Set[int] = set()
        for item, game_id in copies:
            location = item.outcome.location
            try:
                self.store.link_location(game_id, location)
            except PersistenceError as e:
                logging.error(f"Linking {location.path} to game {game_id} failed: {e}")
                result.errors.append(FileError(location.path, "commit", str(e)))
            else:
                logging.info(f"Linked {location.path} ({location.server_location}) to game {game_id}")
                result.registered.append(location.path)
            linked.add(id(item))
        return linked

    # --- Stage 3: Resolve ---

    def _resolve(self,
                 queue: List[_Pending],
                 cancel_event: threading.Event,
                 result: ReconciliationResult) -> List[_Pending]:
        accepted: List[_Pending] = []
        finished: Set[int] = set()
        threshold = self.settings.confidence_threshold
        progress = tqdm(total=len(queue), desc="Resolving", unit="file",
                        disable=not self.settings.show_progress)

        def on_done(pending: _Pending, outcome):
            candidates, error = outcome
            finished.add(id(pending))
            progress.update(1)

            if error is not None:
                result.unresolved.append(UnresolvedFile(
                    pending.location, UnresolvedReason.CATALOG_ERROR, error=error))
            elif not candidates:
                result.unresolved.append(UnresolvedFile(pending.location, UnresolvedReason.NO_MATCH))
            elif candidates[0].confidence >= threshold:
                pending.candidates = candidates
                accepted.append(pending)
            else:
                result.unresolved.append(UnresolvedFile(
                    pending.location, UnresolvedReason.LOW_CONFIDENCE, candidates=candidates))

        try:
            self._run_bounded(
                queue,
                self._resolve_one,
                self.settings.catalog_workers,
                cancel_event,
                on_done,
                "resolve",
            )
        finally:
            progress.close()

        if cancel_event.is_set():
            self._mark_cancelled([p for p in queue if id(p) not in finished], result)

        logging.info(f"Resolved {len(queue)} files: {len(accepted)} accepted")
        return accepted

    def _resolve_one(self, pending: _Pending):
        try:
            return self.resolver.resolve(pending.title, pending.platform), None
        except ResolutionError as e:
            logging.warning(f"Catalog lookup failed for {pending.location.path}: {e}")
            return [], str(e)

    # --- Stage 4: Commit ---

    def _commit(self,
                accepted: List[_Pending],
                cancel_event: threading.Event,
                result: ReconciliationResult):
        for i, pending in enumerate(tqdm(accepted, desc="Committing", unit="file",
                                         disable=not self.settings.show_progress)):
            if cancel_event.is_set():
                for rest in accepted[i:]:
                    result.unresolved.append(UnresolvedFile(
                        rest.location, UnresolvedReason.CANCELLED, candidates=rest.candidates))
                break

            top = pending.candidates[0]
            try:
                game = self._apply_with_retry(top, pending.location)
            except PersistenceError as e:
                logging.error(f"Commit failed for {pending.location.path}: {e}")
                result.errors.append(FileError(pending.location.path, "commit", str(e)))
                continue

            result.registered.append(pending.location.path)
            result.applied_updates.append(AppliedUpdate(pending.location, game.id, top))
            logging.info(f"Registered {pending.location.path.name} as {game.title!r} (game {game.id})")

    def _apply_with_retry(self, candidate: MetadataCandidate, location: FileLocation):
        attempt = 0
        while True:
            try:
                return self.store.apply_metadata_update(None, candidate, location)
            except PersistenceError as e:
                if not e.transient or attempt >= self.settings.commit_retries:
                    raise
                attempt += 1
                logging.warning(f"Retrying commit for {location.path} ({attempt}/{self.settings.commit_retries}): {e}")
                time.sleep(COMMIT_RETRY_BACKOFF_SECONDS * attempt)

    # --- Helpers ---

    def _run_bounded(self,
                     items: Iterable,
                     fn: Callable,
                     workers: int,
                     cancel_event: threading.Event,
                     on_done: Callable,
                     prefix: str):
        """
        Runs `fn` over `items` with at most `workers` calls in flight and
        hands each result to `on_done` on the calling thread. Once
        `cancel_event` is set nothing new is submitted and queued calls are
        dropped. Calls already running finish and still reach `on_done`, so
        every started item is accounted for.
        """
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=prefix)
        pending: Dict[Future, object] = {}
        try:
            for item in items:
                if cancel_event.is_set():
                    break
                pending[executor.submit(fn, item)] = item
                if len(pending) >= workers:
                    self._drain(pending, on_done)

            while pending:
                if cancel_event.is_set():
                    for fut in [f for f in pending if f.cancel()]:
                        del pending[fut]
                    if not pending:
                        break
                self._drain(pending, on_done)
        finally:
            executor.shutdown(wait=not pending, cancel_futures=True)

    @staticmethod
    def _drain(pending: Dict[Future, object], on_done: Callable):
        done, _ = wait(pending, return_when=FIRST_COMPLETED)
        for fut in done:
            item = pending.pop(fut)
            on_done(item, fut.result())

    def _mark_cancelled(self, queue: List[_Pending], result: ReconciliationResult):
        for pending in queue:
            result.unresolved.append(UnresolvedFile(pending.location, UnresolvedReason.CANCELLED))
        if queue:
            logging.warning(f"Scan cancelled; {len(queue)} files left unresolved")

    def _enter(self, state: ScanState):
        logging.debug(f"Reconciler state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
