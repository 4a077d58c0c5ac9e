# Data models for the manuals service.
#
# Pydantic models are the records we persist and the wire format of the query
# API; plain dataclasses carry per-run bookkeeping that never leaves the process.

from dataclasses import dataclass, field, asdict
from datetime import date
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel


# -----------------------------------------------------------------------------
# Catalog record (one row of <schema>.manuals)
# -----------------------------------------------------------------------------
class CatalogRecord(BaseModel):
    """
    One discovered manual.

    id is the number in the detail page URL and never changes once assigned.
    local_path is owned by the downloader: relative to FILES_ROOT, set only
    after the PDF is confirmed on disk.
    """
    id: int
    detail_path: Optional[str] = None   # href exactly as found on the listing page
    detail_url: Optional[str] = None
    pdf_url: str                        # {origin}/pdf/{id}.pdf, unique
    name_native: Optional[str] = None   # Japanese name
    name_foreign: Optional[str] = None  # English name
    grade: Optional[str] = None         # HG, MG, RG, ... inferred from the name
    release_date: Optional[date] = None # only when a full, valid date was parsed
    release_date_text: Optional[str] = None  # raw text, kept even if unparseable
    image_url: Optional[str] = None
    local_path: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        return self.name_foreign or self.name_native


# -----------------------------------------------------------------------------
# Query API response models
# -----------------------------------------------------------------------------
class Suggestion(BaseModel):
    """Autocomplete entry: label shown to the user, value is the manual id."""
    name: str
    value: str


class SearchResponse(BaseModel):
    query: str
    grade: Optional[str] = None
    count: int
    results: List[CatalogRecord]


class HealthResponse(BaseModel):
    status: str  # "ok" | "degraded"
    service: str
    manuals: Optional[int] = None


class AcceptedResponse(BaseModel):
    """
    Response for POST /populate and POST /download: the run happens in the
    background, so we only acknowledge it.
    """
    accepted: bool = True
    job_id: str


# -----------------------------------------------------------------------------
# Run bookkeeping
# -----------------------------------------------------------------------------
@dataclass
class ListingPage:
    """
    One fetch of the paginated listing.
    actual_page is the `page` parameter of the final (possibly redirected) url,
    None when the server did not echo one.
    """
    requested_page: int
    actual_page: Optional[int]
    records: List[CatalogRecord] = field(default_factory=list)

    @property
    def overflowed(self) -> bool:
        """The server clamped us onto another page: we are past the end."""
        return self.actual_page is not None and self.actual_page != self.requested_page


class Outcome(str, Enum):
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DownloadResult:
    manual_id: int
    outcome: Outcome
    local_path: Optional[str] = None  # relative path persisted (or kept) for this manual
    error: Optional[str] = None

    @property
    def downloaded(self) -> bool:
        return self.outcome is Outcome.DOWNLOADED


@dataclass
class RunSummary:
    pages_visited: int = 0
    items_processed: int = 0
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, result: DownloadResult) -> None:
        if result.outcome is Outcome.DOWNLOADED:
            self.downloaded += 1
        elif result.outcome is Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)
