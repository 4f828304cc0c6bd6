"""
Storage Cleanup Advisor

Ranks an owner's live files by a retention score and suggests which ones to
delete to free a target amount of space. Advisory only: nothing is deleted.

Score per file:
- size in MB
- days since last access x 0.1, capped at 30 (or 50 if never accessed)
- max(0, 10 - downloads)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from cloudnest.models.base import as_utc, utcnow
from cloudnest.models.file import FileRecord
from cloudnest.storage.catalog import FileCatalog

logger = logging.getLogger(__name__)

STALE_ACCESS_DAYS = 90
AGE_FACTOR_PER_DAY = 0.1
AGE_FACTOR_CAP = 30
NEVER_ACCESSED_BONUS = 50
DOWNLOAD_SCARCITY_BASE = 10


@dataclass
class CleanupSuggestion:
    """
    One file recommended for deletion
    """
    file_id: str
    name: str
    size: int
    reason: str
    score: float

    @property
    def size_mb(self) -> float:
        """Get size in MB"""
        return self.size / (1024 ** 2)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "file_id": self.file_id,
            "name": self.name,
            "size": self.size,
            "size_mb": round(self.size_mb, 2),
            "reason": self.reason,
            "score": round(self.score, 2),
        }


def retention_score(record: FileRecord, now: Optional[datetime] = None) -> float:
    """Higher scores are better deletion candidates."""
    now = now or utcnow()
    score = record.size / (1024 * 1024)

    last_accessed = as_utc(record.last_accessed_at)
    if last_accessed is not None:
        days = (now - last_accessed).total_seconds() / 86400
        score += min(max(days, 0) * AGE_FACTOR_PER_DAY, AGE_FACTOR_CAP)
    else:
        score += NEVER_ACCESSED_BONUS

    score += max(0, DOWNLOAD_SCARCITY_BASE - (record.downloads or 0))
    return score


def suggestion_reason(record: FileRecord, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    last_accessed = as_utc(record.last_accessed_at)
    if last_accessed is None or (now - last_accessed).total_seconds() > STALE_ACCESS_DAYS * 86400:
        return f"Not accessed in {STALE_ACCESS_DAYS}+ days"
    if not record.downloads:
        return "Never downloaded"
    return "Large file"


class CleanupAdvisor:
    """
    Storage cleanup advisor
    """

    def __init__(self, catalog: FileCatalog):
        self.catalog = catalog

    def suggest(
        self,
        owner_id: str,
        target_bytes_to_free: int,
        now: Optional[datetime] = None,
    ) -> List[CleanupSuggestion]:
        """
        Suggest files in descending score order until their combined size
        meets or exceeds ``target_bytes_to_free``.
        """
        now = now or utcnow()
        files = self.catalog.list_live(owner_id)
        ranked = sorted(
            ((retention_score(f, now), f) for f in files),
            key=lambda pair: pair[0],
            reverse=True,
        )

        suggestions: List[CleanupSuggestion] = []
        freed = 0
        for score, record in ranked:
            if freed >= target_bytes_to_free:
                break
            suggestions.append(
                CleanupSuggestion(
                    file_id=record.id,
                    name=record.name,
                    size=record.size,
                    reason=suggestion_reason(record, now),
                    score=score,
                )
            )
            freed += record.size

        logger.info(
            f"Cleanup suggestions for '{owner_id}': {len(suggestions)} files, "
            f"{freed / (1024 ** 2):.2f}MB toward {target_bytes_to_free / (1024 ** 2):.2f}MB"
        )
        return suggestions
