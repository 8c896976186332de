from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class FileDescriptor:
    """
    Represents a candidate file found during a walk. Never persisted.
    """
    path: Path              # Absolute path
    size_bytes: int
    mtime: float
    ext: str                # Lower-cased, with leading dot


@dataclass(frozen=True)
class ContentIdentity:
    """
    Content fingerprint: SHA-256 of the bytes plus their length.
    Equal identities mean equal content, wherever the files live.
    """
    digest: str
    size_bytes: int

    @property
    def key(self) -> str:
        return f"{self.digest}:{self.size_bytes}"

    def __str__(self) -> str:
        return f"{self.digest[:12]}...({self.size_bytes} B)"


@dataclass
class FileLocation:
    path: Path
    identity: ContentIdentity
    game_id: Optional[int] = None          # None until linked to a Game
    server_location: str = "local"
    id: Optional[int] = None               # Store row id, None if not persisted

    @property
    def is_linked(self) -> bool:
        return self.game_id is not None


@dataclass
class Game:
    id: int
    title: str
    platform_id: Optional[int] = None
    igdb_id: Optional[int] = None
    year: Optional[int] = None
    genre: Optional[str] = None
    rating: Optional[float] = None
    description: Optional[str] = None
    cover_art_url: Optional[str] = None

    @property
    def needs_metadata(self) -> bool:
        return not self.description or not self.cover_art_url


@dataclass
class DuplicateGroup:
    """
    Locations sharing one ContentIdentity. Computed per scan, reported, never merged.
    """
    identity: ContentIdentity
    locations: List[FileLocation] = field(default_factory=list)

    @property
    def game_ids(self) -> set:
        return {loc.game_id for loc in self.locations if loc.game_id is not None}

    @property
    def paths(self) -> List[Path]:
        return [loc.path for loc in self.locations]


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float      # Clock reading (monotonic seconds) at insert time


@dataclass(frozen=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    entries: int = 0


@dataclass
class MetadataCandidate:
    """
    A catalog's proposed match. Transient until the reconciler accepts it.
    """
    title: str
    platform: Optional[str] = None
    confidence: float = 0.0
    artwork_urls: List[str] = field(default_factory=list)
    external_id: Optional[int] = None

    # Enrichment copied onto the Game when accepted
    year: Optional[int] = None
    genre: Optional[str] = None
    rating: Optional[float] = None
    description: Optional[str] = None
    platforms: List[str] = field(default_factory=list)

    @property
    def cover_art_url(self) -> Optional[str]:
        return self.artwork_urls[0] if self.artwork_urls else None


class UnresolvedReason(str, Enum):
    NO_MATCH = "no_match"
    LOW_CONFIDENCE = "low_confidence"
    CATALOG_ERROR = "catalog_error"
    CANCELLED = "cancelled"


@dataclass
class UnresolvedFile:
    location: FileLocation
    reason: UnresolvedReason
    candidates: List[MetadataCandidate] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class FileError:
    path: Path
    stage: str              # identify/commit
    message: str


@dataclass
class AppliedUpdate:
    location: FileLocation
    game_id: int
    candidate: MetadataCandidate


@dataclass
class ReconciliationResult:
    """
    Summary of one scan run. Every walked file lands in exactly one of
    registered, duplicates, unresolved or errors.
    """
    root: Path
    registered: List[Path] = field(default_factory=list)
    duplicates: List[DuplicateGroup] = field(default_factory=list)
    unresolved: List[UnresolvedFile] = field(default_factory=list)
    applied_updates: List[AppliedUpdate] = field(default_factory=list)
    errors: List[FileError] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)    # Walker warnings
    walked: int = 0
    cancelled: bool = False

    # Paths of this run that sit in a duplicate group
    duplicate_paths: List[Path] = field(default_factory=list)

    @property
    def new_files_registered(self) -> int:
        return len(self.applied_updates)

    @property
    def duplicates_found(self) -> int:
        return len(self.duplicates)

    @property
    def needs_confirmation(self) -> int:
        return len(self.unresolved)

    def summary(self) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "walked": self.walked,
            "registered": len(self.registered),
            "new_files_registered": self.new_files_registered,
            "duplicate_groups": self.duplicates_found,
            "duplicate_files": len(self.duplicate_paths),
            "unresolved": self.needs_confirmation,
            "errors": len(self.errors),
            "cancelled": self.cancelled,
        }


@dataclass
class RefreshResult:
    """Outcome of a metadata refresh over games that still lack catalog data."""
    updated: List[int] = field(default_factory=list)               # Game ids
    unresolved: Dict[int, UnresolvedReason] = field(default_factory=dict)
    errors: Dict[int, str] = field(default_factory=dict)
    cancelled: bool = False
