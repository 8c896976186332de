"""
IGDB catalog client.

Authenticates with Twitch client credentials and searches the IGDB v4
`games` endpoint. Results come back as unranked MetadataCandidates; ranking
is the resolver's job.
"""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional

import httpx

from .. import config
from ..exceptions import CatalogConfigurationError, ResolutionError
from ..models import MetadataCandidate


class IGDBCatalog:
    def __init__(self,
                 client_id: str = config.TWITCH_CLIENT_ID,
                 client_secret: str = config.TWITCH_CLIENT_SECRET,
                 timeout: float = config.CATALOG_TIMEOUT_SECONDS,
                 transport: Optional[httpx.BaseTransport] = None,
                 clock: Callable[[], float] = time.time):
        if not client_id or not client_secret:
            raise CatalogConfigurationError(
                "IGDB needs TWITCH_CLIENT_ID and TWITCH_CLIENT_SECRET"
            )
        self.client_id = client_id
        self.client_secret = client_secret
        self._clock = clock
        self._client = httpx.Client(timeout=timeout, transport=transport)

        self._token_lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._token_expiry = 0.0

    def search(self, title: str, platform: Optional[str] = None) -> List[MetadataCandidate]:
        """
        Raw catalog search. Network errors, timeouts and bad payloads all
        surface as ResolutionError.
        """
        query = self._build_query(title, platform)
        try:
            resp = self._client.post(
                f"{config.IGDB_API_URL}/games",
                content=query,
                headers={
                    "Client-ID": self.client_id,
                    "Authorization": f"Bearer {self._token()}",
                    "Content-Type": "text/plain",
                },
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as e:
            raise ResolutionError(f"IGDB request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                # Token revoked early; force a refresh on the next call
                self._invalidate_token()
            raise ResolutionError(f"IGDB request failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ResolutionError(f"IGDB request failed: {e}") from e
        except ValueError as e:
            raise ResolutionError(f"IGDB returned invalid JSON: {e}") from e

        if not isinstance(payload, list):
            raise ResolutionError("IGDB returned an unexpected payload")

        candidates = []
        for row in payload:
            if not isinstance(row, Mapping) or not row.get("name"):
                raise ResolutionError("IGDB returned a game without a name")
            candidates.append(self._to_candidate(row))
        return candidates

    def close(self):
        self._client.close()

    def __enter__(self) -> "IGDBCatalog":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # --- Auth ---

    def _token(self) -> str:
        with self._token_lock:
            if self._access_token and self._clock() < self._token_expiry:
                return self._access_token

            logging.debug("Requesting Twitch access token")
            try:
                resp = self._client.post(config.TWITCH_TOKEN_URL, data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                })
                resp.raise_for_status()
                body = resp.json()
                token = body["access_token"]
                expires_in = int(body.get("expires_in", 0))
            except httpx.HTTPStatusError as e:
                raise ResolutionError(
                    f"Twitch authentication failed with status {e.response.status_code}"
                ) from e
            except httpx.HTTPError as e:
                raise ResolutionError(f"Twitch authentication failed: {e}") from e
            except (ValueError, KeyError, TypeError) as e:
                raise ResolutionError(f"Twitch returned a malformed token response: {e}") from e

            self._access_token = token
            self._token_expiry = self._clock() + max(expires_in - config.TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            return token

    def _invalidate_token(self):
        with self._token_lock:
            self._access_token = None
            self._token_expiry = 0.0

    # --- Query / Parsing ---

    def _build_query(self, title: str, platform: Optional[str]) -> str:
        escaped = title.replace('\\', '\\\\').replace('"', '\\"')
        # No platform filter: ports and remasters live on other platforms and
        # must still come back. Platform only matters when ranking.
        return f'search "{escaped}"; fields {config.IGDB_SEARCH_FIELDS}; limit 20;'

    def _to_candidate(self, row: Mapping[str, Any]) -> MetadataCandidate:
        platforms = [p.get("name") for p in row.get("platforms") or [] if isinstance(p, Mapping) and p.get("name")]
        genres = [g.get("name") for g in row.get("genres") or [] if isinstance(g, Mapping) and g.get("name")]

        year = None
        released = row.get("first_release_date")
        if isinstance(released, (int, float)) and released > 0:
            year = datetime.fromtimestamp(released, tz=timezone.utc).year

        rating = row.get("rating")
        if isinstance(rating, (int, float)):
            rating = round(float(rating) / 10.0, 2)  # IGDB is 0-100, we keep 0-10
        else:
            rating = None

        artwork = []
        cover = row.get("cover")
        if isinstance(cover, Mapping) and cover.get("url"):
            artwork.append(cover_url(str(cover["url"])))

        return MetadataCandidate(
            title=str(row["name"]),
            platform=platforms[0] if platforms else None,
            artwork_urls=artwork,
            external_id=row.get("id") if isinstance(row.get("id"), int) else None,
            year=year,
            genre=genres[0] if genres else None,
            rating=rating,
            description=row.get("summary") or None,
            platforms=platforms,
        )


def cover_url(url: str, size: str = "t_cover_big") -> str:
    """IGDB hands out protocol-relative thumbnail URLs; upgrade to https and a larger size."""
    if url.startswith("//"):
        url = "https:" + url
    return url.replace("t_thumb", size, 1)
