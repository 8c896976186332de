from typing import List, Optional

from ..models import MetadataCandidate


class OfflineCatalog:
    """Catalog with no entries. Scans still identify and deduplicate; nothing resolves."""

    def search(self, title: str, platform: Optional[str] = None) -> List[MetadataCandidate]:
        return []

    def close(self):
        pass
