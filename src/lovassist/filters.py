"""Best-effort inference of search filters from free-text queries."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import date
from typing import Optional

from .types import LAW_TYPES, SearchFilters

logger = logging.getLogger(__name__)

# Checked in order: "forskrift til lov om ..." must resolve to Forskrift.
LAW_TYPE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bforskrift(?:en|er|ene)?\b", re.IGNORECASE), "Forskrift"),
    (re.compile(r"\bvedtak(?:et|ene)?\b", re.IGNORECASE), "Vedtak"),
    (re.compile(r"\binstruks(?:en|er)?\b", re.IGNORECASE), "Instruks"),
    (re.compile(r"\breglement(?:et|er)?\b", re.IGNORECASE), "Reglement"),
    (re.compile(r"\bvedlegg(?:et)?\b", re.IGNORECASE), "Vedlegg"),
    (re.compile(r"\blov(?:en|er|ene|a)?\b", re.IGNORECASE), "Lov"),
]

MINISTRY_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(arbeids-?\s*og\s*sosialdepartementet|arbeidsdepartementet)\b", re.IGNORECASE),
     "Arbeids- og sosialdepartementet"),
    (re.compile(r"\b(barne-?\s*og\s*familiedepartementet|barnefamiliedepartementet)\b", re.IGNORECASE),
     "Barne- og familiedepartementet"),
    (re.compile(r"\bdigitaliserings-?\s*og\s*forvaltningsdepartementet\b", re.IGNORECASE),
     "Digitaliserings- og forvaltningsdepartementet"),
    (re.compile(r"\bfinansdepartementet\b", re.IGNORECASE), "Finansdepartementet"),
    (re.compile(r"\bforsvarsdepartementet\b", re.IGNORECASE), "Forsvarsdepartementet"),
    (re.compile(r"\bhelse-?\s*og\s*omsorgsdepartementet\b", re.IGNORECASE), "Helse- og omsorgsdepartementet"),
    (re.compile(r"\bjustis-?\s*og\s*beredskapsdepartementet\b", re.IGNORECASE), "Justis- og beredskapsdepartementet"),
    (re.compile(r"\bklima-?\s*og\s*miljødepartementet\b", re.IGNORECASE), "Klima- og miljødepartementet"),
    (re.compile(r"\bkommunal-?\s*og\s*distriktsdepartementet\b", re.IGNORECASE), "Kommunal- og distriktsdepartementet"),
    (re.compile(r"\bkultur-?\s*og\s*likestillingsdepartementet\b", re.IGNORECASE), "Kultur- og likestillingsdepartementet"),
    (re.compile(r"\bnærings-?\s*og\s*fiskeridepartementet\b", re.IGNORECASE), "Nærings- og fiskeridepartementet"),
    (re.compile(r"\bolje-?\s*og\s*energidepartementet\b", re.IGNORECASE), "Olje- og energidepartementet"),
    (re.compile(r"\bsamferdselsdepartementet\b", re.IGNORECASE), "Samferdselsdepartementet"),
    (re.compile(r"\butdannings-?\s*og\s*forskningsdepartementet\b", re.IGNORECASE), "Utdannings- og forskningsdepartementet"),
    (re.compile(r"\butenriksdepartementet\b", re.IGNORECASE), "Utenriksdepartementet"),
]

_GENERIC_MINISTRY = re.compile(r"\b([A-ZÆØÅ][a-zæøå]+(?:-?\s*og\s*[a-zæøå]+)?departementet)\b")
_EXPLICIT_YEAR = re.compile(r"\b(?:år|year)[:\s]+(\d{4})\b", re.IGNORECASE)
_BARE_YEAR = re.compile(r"\b((?:19|20)\d{2})\b")


def infer_law_type(query: str) -> Optional[str]:
    """First document type named in the query, or None."""
    for pattern, law_type in LAW_TYPE_PATTERNS:
        if pattern.search(query or ""):
            return law_type
    return None


def infer_year(query: str) -> Optional[int]:
    match = _EXPLICIT_YEAR.search(query or "") or _BARE_YEAR.search(query or "")
    if not match:
        return None
    return int(match.group(1))


def infer_ministry(query: str) -> Optional[str]:
    for pattern, name in MINISTRY_PATTERNS:
        if pattern.search(query or ""):
            return name
    generic = _GENERIC_MINISTRY.search(query or "")
    if generic:
        return generic.group(1)
    return None


def infer_filters(query: str) -> SearchFilters:
    """Infer year, law type and ministry from a free-text query. May return empty filters."""
    return SearchFilters(
        year=infer_year(query),
        law_type=infer_law_type(query),
        ministry=infer_ministry(query),
    )


def normalize_law_type(value: Optional[str]) -> Optional[str]:
    """Map a caller-supplied law type onto the canonical spelling, or None if unknown."""
    if not value:
        return None
    for law_type in LAW_TYPES:
        if law_type.lower() == value.strip().lower():
            return law_type
    logger.debug("Ignoring unknown law type %r", value)
    return None


def merge_filters(explicit: SearchFilters | None, inferred: SearchFilters | None) -> SearchFilters:
    """Combine filters field by field; explicit values always win."""
    explicit = explicit or SearchFilters()
    inferred = inferred or SearchFilters()
    return SearchFilters(
        year=explicit.year if explicit.year is not None else inferred.year,
        law_type=explicit.law_type or inferred.law_type,
        ministry=explicit.ministry or inferred.ministry,
        min_year=explicit.min_year if explicit.min_year is not None else inferred.min_year,
    )


def apply_default_year(filters: SearchFilters, window: int, today: Optional[date] = None) -> SearchFilters:
    """
    Restrict Lov/Forskrift (or untyped) searches without a year to the last ``window`` years.

    The restriction is a lower bound, so older documents are excluded but every
    newer year still matches.
    """
    if filters.year is not None or filters.min_year is not None:
        return filters
    if filters.law_type not in (None, "Lov", "Forskrift"):
        return filters
    current_year = (today or date.today()).year
    return replace(filters, min_year=current_year - window)
