"""
Configuration constants for the library reconciliation engine.
"""
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Optional

# --- File Type Definitions ---
ROM_EXTS = {
    '.rom', '.bin', '.iso', '.cue', '.img', '.zip', '.7z', '.rar',
    '.nes', '.smc', '.sfc', '.gb', '.gbc', '.gba', '.n64', '.z64',
    '.psx', '.ps2', '.gcm', '.wad', '.cia', '.3ds',
}

# Extension to Platform Mapping
# Only extensions that pin down a single system; containers (.zip, .iso) don't.
EXT_TO_PLATFORM = {}
for ext in ('.nes',): EXT_TO_PLATFORM[ext] = 'NES'
for ext in ('.smc', '.sfc'): EXT_TO_PLATFORM[ext] = 'SNES'
for ext in ('.n64', '.z64'): EXT_TO_PLATFORM[ext] = 'N64'
for ext in ('.gb',): EXT_TO_PLATFORM[ext] = 'Game Boy'
for ext in ('.gbc',): EXT_TO_PLATFORM[ext] = 'Game Boy Color'
for ext in ('.gba',): EXT_TO_PLATFORM[ext] = 'GBA'
for ext in ('.psx',): EXT_TO_PLATFORM[ext] = 'PS1'
for ext in ('.ps2',): EXT_TO_PLATFORM[ext] = 'PS2'
for ext in ('.gcm',): EXT_TO_PLATFORM[ext] = 'GameCube'
for ext in ('.wad',): EXT_TO_PLATFORM[ext] = 'Wii'
for ext in ('.cia', '.3ds'): EXT_TO_PLATFORM[ext] = 'Nintendo 3DS'

# Platform names as users type them -> IGDB platform ids
IGDB_PLATFORM_IDS = {
    "nintendo entertainment system": 18, "nes": 18,
    "super nintendo entertainment system": 19, "snes": 19,
    "nintendo 64": 4, "n64": 4,
    "nintendo gamecube": 21, "gamecube": 21,
    "nintendo wii": 5, "wii": 5,
    "game boy": 33,
    "game boy color": 22,
    "game boy advance": 24, "gameboy advance": 24, "gba": 24,
    "nintendo ds": 20,
    "nintendo 3ds": 37,
    "sega master system": 64,
    "sega genesis": 29, "genesis": 29, "mega drive": 29,
    "sega saturn": 32,
    "sega dreamcast": 23, "dreamcast": 23,
    "sony playstation": 7, "playstation": 7, "ps1": 7,
    "sony playstation 2": 8, "playstation 2": 8, "ps2": 8,
    "sony playstation 3": 9, "playstation 3": 9, "ps3": 9,
    "sony playstation 4": 48, "playstation 4": 48, "ps4": 48,
    "sony playstation 5": 167, "playstation 5": 167, "ps5": 167,
    "sony playstation portable": 38, "playstation portable": 38, "psp": 38,
    "sony playstation vita": 46, "playstation vita": 46, "ps vita": 46,
    "microsoft xbox": 11, "xbox": 11,
    "microsoft xbox 360": 12, "xbox 360": 12,
    "microsoft xbox one": 49, "xbox one": 49,
    "microsoft xbox series x/s": 169, "xbox series x/s": 169,
    "xbox series x": 169, "xbox series s": 169,
    "atari 2600": 59, "atari 5200": 66, "atari 7800": 60,
    "pc": 6, "windows": 6,
    "arcade": 52,
}

# --- Hashing & Performance ---
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading
DEFAULT_HASH_WORKERS = 4     # Disk-bound; more threads just thrash the heads
DEFAULT_CATALOG_WORKERS = 2  # IGDB throttles at 4 req/s

# --- Metadata Cache ---
CACHE_TTL_SECONDS = 30 * 60
CACHE_SWEEP_INTERVAL_SECONDS = 5 * 60

# --- Resolution ---
# Rank tiers for catalog matches. Tiers never overlap, so platform agreement
# only reorders results inside a tier.
EXACT_MATCH_SCORE = 0.95
PREFIX_MATCH_SCORE = 0.75
FUZZY_MATCH_WEIGHT = 0.6
FUZZY_MATCH_MIN_RATIO = 0.2
PLATFORM_MATCH_BONUS = 0.05
AUTO_ACCEPT_CONFIDENCE = 0.9
CATALOG_TIMEOUT_SECONDS = 5.0
COMMIT_RETRIES = 2

# --- IGDB / Twitch ---
IGDB_API_URL = "https://api.igdb.com/v4"
TWITCH_TOKEN_URL = "https://id.twitch.tv/oauth2/token"
TWITCH_CLIENT_ID = os.environ.get("TWITCH_CLIENT_ID", "").strip()
TWITCH_CLIENT_SECRET = os.environ.get("TWITCH_CLIENT_SECRET", "").strip()
TOKEN_EXPIRY_MARGIN_SECONDS = 300
IGDB_SEARCH_FIELDS = "name,summary,first_release_date,rating,cover.url,genres.name,platforms.name"

DEFAULT_SERVER_LOCATION = "local"


def _env_float(name: str, default: float) -> float:
    """Returns a positive float from the environment, or ``default`` when unset/invalid."""
    text = os.environ.get(name, "").strip()
    if not text:
        return default
    try:
        value = float(text)
    except ValueError:
        logging.warning(f"Ignoring invalid {name}={text!r}")
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    text = os.environ.get(name, "").strip()
    if not text:
        return default
    try:
        value = int(float(text))
    except ValueError:
        logging.warning(f"Ignoring invalid {name}={text!r}")
        return default
    return value if value > 0 else default


def _env_flag(name: str, default: bool) -> bool:
    text = os.environ.get(name)
    if text is None or not text.strip():
        return default
    return text.strip().lower() in {"1", "true", "yes", "on"}


def _env_extensions(name: str, default: frozenset) -> frozenset:
    text = os.environ.get(name, "").strip()
    if not text:
        return default
    exts = set()
    for part in text.split(","):
        part = part.strip().lower()
        if part:
            exts.add(part if part.startswith(".") else f".{part}")
    return frozenset(exts) or default


@dataclass(frozen=True)
class ReconcilerSettings:
    """
    Tunables consumed by the reconciler. The engine never loads these itself;
    the caller builds them (defaults, ``from_env`` or ``with_overrides``).
    """
    cache_ttl: float = CACHE_TTL_SECONDS
    sweep_interval: float = CACHE_SWEEP_INTERVAL_SECONDS
    confidence_threshold: float = AUTO_ACCEPT_CONFIDENCE
    hash_workers: int = DEFAULT_HASH_WORKERS
    catalog_workers: int = DEFAULT_CATALOG_WORKERS
    catalog_timeout: float = CATALOG_TIMEOUT_SECONDS
    commit_retries: int = COMMIT_RETRIES
    extensions: frozenset = field(default_factory=lambda: frozenset(ROM_EXTS))
    show_progress: bool = False

    @classmethod
    def from_env(cls) -> "ReconcilerSettings":
        """Builds settings from ``PELICO_*`` environment variables."""
        defaults = cls()
        threshold = _env_float("PELICO_CONFIDENCE_THRESHOLD", defaults.confidence_threshold)
        if threshold > 1.0:
            threshold = defaults.confidence_threshold
        return cls(
            cache_ttl=_env_float("PELICO_CACHE_TTL", defaults.cache_ttl),
            sweep_interval=_env_float("PELICO_CACHE_SWEEP_INTERVAL", defaults.sweep_interval),
            confidence_threshold=threshold,
            hash_workers=_env_int("PELICO_HASH_WORKERS", defaults.hash_workers),
            catalog_workers=_env_int("PELICO_CATALOG_WORKERS", defaults.catalog_workers),
            catalog_timeout=_env_float("PELICO_CATALOG_TIMEOUT", defaults.catalog_timeout),
            commit_retries=_env_int("PELICO_COMMIT_RETRIES", defaults.commit_retries),
            extensions=_env_extensions("PELICO_EXTENSIONS", defaults.extensions),
            show_progress=_env_flag("PELICO_PROGRESS", defaults.show_progress),
        )

    def with_overrides(self, **overrides: Optional[object]) -> "ReconcilerSettings":
        """Returns a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
