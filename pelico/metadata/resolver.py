import difflib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import replace
from typing import List, Optional, Protocol, Sequence

from .. import config
from ..exceptions import ResolutionError
from ..models import MetadataCandidate
from .cache import MetadataCache
from .naming import normalize_platform, normalize_title, platforms_agree


class Catalog(Protocol):
    def search(self, title: str, platform: Optional[str]) -> Sequence[MetadataCandidate]:
        ...


class MetadataResolver:
    """
    Turns a (title, platform) guess into ranked catalog candidates.

    The cache is consulted before every catalog call, and the full ranked
    list (empty included) is cached under the normalized guess. At most
    `max_in_flight` catalog calls run at once; each gets `timeout` seconds.
    """

    def __init__(self,
                 catalog: Catalog,
                 cache: MetadataCache,
                 max_in_flight: int = config.DEFAULT_CATALOG_WORKERS,
                 timeout: float = config.CATALOG_TIMEOUT_SECONDS):
        self.catalog = catalog
        self.cache = cache
        self.timeout = timeout
        self._slots = threading.BoundedSemaphore(max_in_flight)
        self._executor = ThreadPoolExecutor(max_workers=max_in_flight, thread_name_prefix="catalog")

    @staticmethod
    def cache_key(title_guess: str, platform_guess: Optional[str] = None) -> str:
        return f"{normalize_title(title_guess)}|{normalize_platform(platform_guess)}"

    def resolve(self, title_guess: str, platform_guess: Optional[str] = None) -> List[MetadataCandidate]:
        key = self.cache_key(title_guess, platform_guess)
        cached, found = self.cache.get(key)
        if found:
            logging.debug(f"Catalog cache hit for {key!r}")
            return list(cached)

        raw = self._search(title_guess, platform_guess)
        ranked = self.rank(title_guess, platform_guess, raw)
        self.cache.set(key, ranked)
        return list(ranked)

    def rank(self,
             title_guess: str,
             platform_guess: Optional[str],
             results: Sequence[MetadataCandidate]) -> List[MetadataCandidate]:
        """
        Exact normalized title beats prefix match beats fuzzy match.
        Platform agreement only breaks ties; other platforms still surface
        (remasters and ports keep their original name).
        """
        wanted = normalize_title(title_guess)
        ranked = []
        for cand in results:
            have = normalize_title(cand.title)
            if not have or not wanted:
                continue
            if have == wanted:
                score = config.EXACT_MATCH_SCORE
            elif have.startswith(wanted) or wanted.startswith(have):
                score = config.PREFIX_MATCH_SCORE
            else:
                ratio = difflib.SequenceMatcher(None, wanted, have).ratio()
                if ratio < config.FUZZY_MATCH_MIN_RATIO:
                    continue
                score = config.FUZZY_MATCH_WEIGHT * ratio

            platform = cand.platform or (cand.platforms[0] if cand.platforms else None)
            if platforms_agree(platform_guess, cand.platforms or [cand.platform]):
                score += config.PLATFORM_MATCH_BONUS
                platform = platform_guess

            ranked.append(replace(cand, confidence=round(min(score, 1.0), 4), platform=platform))

        ranked.sort(key=lambda c: (-c.confidence, c.title.casefold()))
        return ranked

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _search(self, title: str, platform: Optional[str]) -> Sequence[MetadataCandidate]:
        self._slots.acquire()
        try:
            future = self._executor.submit(self.catalog.search, title, platform)
        except RuntimeError:
            self._slots.release()
            raise ResolutionError("resolver is closed")
        # The slot is held until the call really ends, timed out or not,
        # so slow calls still count against the rate limit.
        future.add_done_callback(lambda _: self._slots.release())

        try:
            results = future.result(timeout=self.timeout)
        except FutureTimeout:
            raise ResolutionError(f"catalog timed out after {self.timeout}s for {title!r}")
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(f"catalog lookup failed for {title!r}: {e}") from e

        if results is None or isinstance(results, (str, bytes)):
            raise ResolutionError(f"catalog returned malformed data for {title!r}")
        results = list(results)
        for item in results:
            if not isinstance(item, MetadataCandidate) or not item.title:
                raise ResolutionError(f"catalog returned malformed data for {title!r}")
        return results
