"""
Title and platform guessing from ROM file names.
"""
import re
from pathlib import Path
from typing import Optional

from .. import config

# "(USA)", "[v1.1]", "[!]", "{Hack}" and nested variants
_TAG_RE = re.compile(r'\([^()]*\)|\[[^\[\]]*\]|\{[^{}]*\}')
_SEPARATOR_RE = re.compile(r'[_\-.\s]+')
_NON_WORD_RE = re.compile(r"[^\w\s&+']")


def strip_tags(text: str) -> str:
    """Removes bracketed region/version/dump tags, innermost first."""
    prev = None
    while prev != text:
        prev = text
        text = _TAG_RE.sub(' ', text)
    # Unbalanced leftovers
    return text.replace('(', ' ').replace(')', ' ').replace('[', ' ').replace(']', ' ')


def extract_game_title(filename: str) -> str:
    """
    "Super_Mario-World (USA) [!].sfc" -> "Super Mario World".
    Case is preserved; use normalize_title for comparisons.
    """
    stem = Path(filename).stem
    stem = stem.replace('_', ' ').replace('-', ' ')
    stem = strip_tags(stem)
    return ' '.join(stem.split())


def normalize_title(title: str) -> str:
    """Case-folded, tag-free, punctuation-light form used for matching and cache keys."""
    text = strip_tags(title or '').casefold()
    text = _SEPARATOR_RE.sub(' ', text)
    text = _NON_WORD_RE.sub('', text)
    return ' '.join(text.split())


def normalize_platform(platform: Optional[str]) -> str:
    if not platform:
        return ''
    return ' '.join(platform.casefold().split())


def guess_platform(path: Path, explicit: Optional[str] = None) -> Optional[str]:
    """
    Platform guess for a file, in order: explicit scan platform, extension,
    then a parent folder named after a known platform ("roms/snes/x.zip").
    """
    if explicit:
        return explicit
    by_ext = config.EXT_TO_PLATFORM.get(path.suffix.lower())
    if by_ext:
        return by_ext
    for part in reversed(path.parent.parts):
        if normalize_platform(part) in config.IGDB_PLATFORM_IDS:
            return part
    return None


def platforms_agree(guess: Optional[str], names) -> bool:
    """
    True when any catalog platform name matches the guess, allowing for
    abbreviations ("SNES" vs "Super Nintendo Entertainment System").
    """
    wanted = normalize_platform(guess)
    if not wanted:
        return False
    wanted_id = config.IGDB_PLATFORM_IDS.get(wanted)
    for name in names or ():
        have = normalize_platform(name)
        if not have:
            continue
        if have == wanted:
            return True
        if wanted_id is not None and config.IGDB_PLATFORM_IDS.get(have) == wanted_id:
            return True
    return False
