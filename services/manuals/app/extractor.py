"""
Field extraction for one listing page of the manuals catalog.

Pure functions only: HTML in, CatalogRecord out. No network, no database.

Listing markup we rely on (one block per manual):

    <div class="bl_result_item">
      <a href="/menus/detail/4321">
        <div class="bl_result_img"><img src="/img/4321.jpg"></div>
        <p class="bl_result_name">HG 1/144 ガンダム
          <span class="bl_result_name_en">HG 1/144 GUNDAM</span></p>
      </a>
      <dl class="bl_result_caption"><dt>発売日</dt><dd>2024年11月8日</dd></dl>
    </div>
"""

import copy
import logging
import re
from datetime import date
from typing import List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .models import CatalogRecord

logger = logging.getLogger("extractor")

ITEM_SELECTOR = "div.bl_result_item"
DETAIL_LINK_SELECTOR = 'a[href*="/menus/detail/"]'
RELEASE_DATE_LABEL = "発売日"

# Checked top to bottom as a prefix of the upper-cased name; the first hit wins.
# Order matters: "HG" sits before "HGUC" & co, so an "HGUC ..." name resolves
# to HG, and "MG Ex ..." resolves to MG.
GRADE_PREFIXES: Tuple[str, ...] = (
    "PG",
    "MG",
    "RG",
    "HG",
    "EG",
    "SD",
    "FM",
    "RE/100",
    "30MM",
    "30MS",
    "ENTRY GRADE",
    "HGUC",
    "HGBF",
    "HGCE",
    "HGBC",
)

# Tried in order; the first pattern that matches decides.
#   1) 2024年11月8日発売 (day optional, spaces tolerated)
#   2) 2024-11-08 / 2024/11/08
DATE_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"(\d{4})年\s*(\d{1,2})月(?:\s*(\d{1,2})日)?"),
    re.compile(r"(\d{4})[-/](\d{1,2})[-/](\d{1,2})"),
)

_WS = re.compile(r"\s+")
_DIGITS = re.compile(r"(\d+)")


def clean_text(value: Optional[str]) -> str:
    """Collapse every whitespace run to one space and trim."""
    return _WS.sub(" ", value or "").strip()


def infer_grade(name_foreign: Optional[str], name_native: Optional[str]) -> Optional[str]:
    """
    Grade code from the product name (English name preferred).
    Falls back to the first word of the name, None for an empty name.
    """
    source = (name_foreign or name_native or "").strip()
    if not source:
        return None
    upper = source.upper()
    for prefix in GRADE_PREFIXES:
        if upper.startswith(prefix):
            return prefix
    return upper.split()[0]


def parse_release_date(text: Optional[str]) -> Tuple[Optional[date], str]:
    """
    Returns (date or None, cleaned raw text).

    A date is only produced when year, month AND day are present and form a
    real calendar day; "2024年2月30日" and "2024年11月" both give None. The raw
    text is returned untouched either way so it can be stored as is.
    """
    raw = clean_text(text)
    match = None
    for pattern in DATE_PATTERNS:
        match = pattern.search(raw)
        if match:
            break
    if not match:
        return None, raw

    year, month, day = int(match.group(1)), int(match.group(2)), match.group(3)
    if not 1 <= month <= 12 or day is None:
        return None, raw
    try:
        return date(year, month, int(day)), raw
    except ValueError:
        # month-end overflow (Feb 30, Apr 31, ...) or year 0
        return None, raw


def manual_id_from_href(href: str) -> Optional[int]:
    """First run of digits in the href, wherever it sits."""
    match = _DIGITS.search(href or "")
    return int(match.group(1)) if match else None


def pdf_url_for(manual_id: int, origin: str) -> str:
    return urljoin(origin, f"/pdf/{manual_id}.pdf")


def _names(item: Tag) -> Tuple[str, str]:
    """(native, foreign) names; the English name is a child of the name node."""
    node = item.select_one(".bl_result_name")
    if node is None:
        return "", ""
    node = copy.copy(node)
    en = node.select_one(".bl_result_name_en")
    name_foreign = ""
    if en is not None:
        name_foreign = clean_text(en.get_text())
        en.decompose()
    return clean_text(node.get_text()), name_foreign


def _release_date_text(item: Tag) -> Optional[str]:
    text = None
    for dt in item.select(".bl_result_caption dt"):
        if RELEASE_DATE_LABEL in clean_text(dt.get_text()):
            dd = dt.find_next_sibling("dd")
            text = clean_text(dd.get_text()) if dd is not None else ""
    return text


def extract_item(item: Tag, origin: str) -> Optional[CatalogRecord]:
    """
    Build a CatalogRecord from one listing block, or None when the block has no
    detail link with a numeric id (ads, placeholders, ...).
    """
    link = item.select_one(DETAIL_LINK_SELECTOR)
    href = (link.get("href") or "").strip() if link is not None else ""
    manual_id = manual_id_from_href(href)
    if manual_id is None:
        return None

    name_native, name_foreign = _names(item)
    release_date_text = _release_date_text(item)
    release_date, _ = parse_release_date(release_date_text or "")

    img = item.select_one(".bl_result_img img")
    src = (img.get("src") or "").strip() if img is not None else ""

    return CatalogRecord(
        id=manual_id,
        detail_path=href,
        detail_url=urljoin(origin, href),
        pdf_url=pdf_url_for(manual_id, origin),
        name_native=name_native or None,
        name_foreign=name_foreign or None,
        grade=infer_grade(name_foreign, name_native),
        release_date=release_date,
        release_date_text=release_date_text or None,
        image_url=urljoin(origin, src) if src else None,
    )


def extract_page(html: str, origin: str) -> List[CatalogRecord]:
    """Every extractable record on a listing page, in page order."""
    soup = BeautifulSoup(html, "html.parser")
    records: List[CatalogRecord] = []
    for item in soup.select(ITEM_SELECTOR):
        record = extract_item(item, origin)
        if record is None:
            logger.debug("skipping listing item without a detail id")
            continue
        records.append(record)
    return records
