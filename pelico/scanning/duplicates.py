"""
In-run index of content identities to the locations they were seen at.
"""
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Set, Tuple, Union

from ..models import ContentIdentity, DuplicateGroup, FileLocation


@dataclass(frozen=True)
class NewLocation:
    """First location for this identity."""
    location: FileLocation


@dataclass(frozen=True)
class KnownDuplicate:
    """Identity already sits at other locations (possibly other games)."""
    location: FileLocation
    existing: Tuple[FileLocation, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AlreadyIndexed:
    """This exact (identity, server, path) triple was registered or seeded before; nothing changed."""
    location: FileLocation


RegistrationOutcome = Union[NewLocation, KnownDuplicate, AlreadyIndexed]


class DuplicateIndex:
    """
    Append-only within a run. `register` is a single check-and-insert under
    one lock, so hashing workers can call it concurrently.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._locations: Dict[ContentIdentity, List[FileLocation]] = {}
        self._paths: Dict[ContentIdentity, Set[Tuple[str, Path]]] = {}
        # Identities this run registered or re-observed (as opposed to only seeded)
        self._observed: Set[ContentIdentity] = set()

    def seed(self, identity: ContentIdentity, locations: Iterable[FileLocation]):
        """Preloads persisted locations for an identity. Already-known locations are ignored."""
        with self._lock:
            for loc in locations:
                self._insert(identity, loc)

    def register(self, identity: ContentIdentity, location: FileLocation) -> RegistrationOutcome:
        with self._lock:
            self._observed.add(identity)
            known_paths = self._paths.get(identity)
            if known_paths and _key(location) in known_paths:
                return AlreadyIndexed(self._find(identity, _key(location)))

            existing = tuple(self._locations.get(identity, ()))
            self._insert(identity, location)

            if existing:
                return KnownDuplicate(location, existing)
            return NewLocation(location)

    def duplicate_groups(self) -> List[DuplicateGroup]:
        """
        The duplicate graph of this run: identities seen by the run whose
        locations span more than one game, or include a path not linked to
        any game. Several linked paths of a single game are a legitimate
        multi-server copy, not a duplicate.
        """
        with self._lock:
            groups = []
            for ident in self._observed:
                locs = self._locations.get(ident, [])
                if len(locs) < 2:
                    continue
                game_ids = {loc.game_id for loc in locs if loc.game_id is not None}
                if len(game_ids) > 1 or any(loc.game_id is None for loc in locs):
                    groups.append(DuplicateGroup(identity=ident, locations=list(locs)))
            return groups

    def locations(self, identity: ContentIdentity) -> List[FileLocation]:
        with self._lock:
            return list(self._locations.get(identity, ()))

    def clear(self):
        with self._lock:
            self._locations.clear()
            self._paths.clear()
            self._observed.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._locations)

    # --- Internal (caller holds the lock) ---

    def _insert(self, identity: ContentIdentity, location: FileLocation):
        paths = self._paths.setdefault(identity, set())
        if _key(location) in paths:
            return
        paths.add(_key(location))
        self._locations.setdefault(identity, []).append(location)

    def _find(self, identity: ContentIdentity, key: Tuple[str, Path]) -> FileLocation:
        for loc in self._locations[identity]:
            if _key(loc) == key:
                return loc
        raise KeyError(key)


def _key(location: FileLocation) -> Tuple[str, Path]:
    return location.server_location, Path(location.path)
