"""Field-level helpers shared by the reader, the orchestrator, and migration."""

from __future__ import annotations

import re
from dataclasses import dataclass

from cutoff_ingest.models.enums import CourseLevel
from cutoff_ingest.parsing.vocab import CITY_STATE, QUOTA_CODES, lookup_state

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_SPACES = re.compile(r"\s+")
_ROUND = re.compile(r"^(?:ROUND|R)?\s*[-_]?\s*(\d+)$")
_WORDS = re.compile(r"[A-Z]+")
_PARENS = re.compile(r"\(([^)]+)\)")


def normalize_text(value: str | None) -> str:
    """Lowercase, punctuation → space, whitespace collapsed. Used for dedup keys."""
    if not value:
        return ""
    text = _NON_ALNUM.sub(" ", value.lower())
    return _SPACES.sub(" ", text).strip()


@dataclass(frozen=True)
class CollegeInfo:
    name: str
    address: str
    city: str
    state: str


def parse_location(location: str | None) -> tuple[str, str]:
    """Split "City, State" into (CITY, STATE); a lone known city infers its state."""
    if not location:
        return "", ""
    parts = [p.strip().upper() for p in location.split(",") if p.strip()]
    if not parts:
        return "", ""
    if len(parts) == 1:
        city = parts[0]
        return city, CITY_STATE.get(city, "")
    return parts[0], lookup_state(parts[-1])


def parse_college_info(college_name: str, college_location: str | None = None) -> CollegeInfo:
    """Split "NAME, ADDRESS" on the first comma and attach the location.

    Without an explicit location, the last address segment is tried as a
    known city.
    """
    name, _, address = college_name.partition(",")
    name = name.strip()
    address = address.strip()
    city, state = parse_location(college_location)
    if not city and address:
        candidate = address.split(",")[-1].strip().upper()
        if candidate in CITY_STATE:
            city, state = candidate, CITY_STATE[candidate]
    return CollegeInfo(name=name, address=address, city=city, state=state)


@dataclass(frozen=True)
class CourseInfo:
    name: str
    level: str | None
    specialization: str | None


def course_level(course_name: str) -> str | None:
    """UG, PG, DIPLOMA, DNB, or FELLOWSHIP from the degree words in the name."""
    words = set(_WORDS.findall(course_name.upper()))
    if words & {"MBBS", "BDS"}:
        return CourseLevel.UG.value
    if words & {"MD", "MS", "MDS"}:
        return CourseLevel.PG.value
    if "DIPLOMA" in words:
        return CourseLevel.DIPLOMA.value
    if "DNB" in words:
        return CourseLevel.DNB.value
    if "FELLOWSHIP" in words:
        return CourseLevel.FELLOWSHIP.value
    return None


def parse_course_info(course_name: str) -> CourseInfo:
    upper = course_name.upper().strip()
    specialization = None
    match = _PARENS.search(upper)
    if match:
        specialization = match.group(1).strip()
    elif " IN " in upper:
        specialization = upper.split(" IN ", 1)[1].strip()
    return CourseInfo(name=upper, level=course_level(upper), specialization=specialization)


def normalize_round(value: str | int | None) -> str | None:
    """"1", "R1", "Round 1", "round-2" → "r1" / "r2". Unparseable → None."""
    if value is None:
        return None
    text = str(value).strip().upper()
    if not text:
        return None
    if text.endswith(".0"):
        text = text[:-2]
    match = _ROUND.match(text)
    if not match:
        return None
    return f"r{int(match.group(1))}"


def round_name(round_code: str | None) -> str:
    """"r1" → "Round 1"."""
    normalized = normalize_round(round_code)
    if normalized is None:
        return round_code or ""
    return f"Round {normalized[1:]}"


def normalize_quota(value: str | None) -> str | None:
    """Map free-text quota onto a canonical code.

    Containment checks come first (STATE, MANAGEMENT/PAID, AIQ/ALL INDIA,
    CENTRAL), then the vocabulary, then the uppercased text.
    """
    if not value:
        return None
    upper = " ".join(value.upper().split())
    if "STATE" in upper:
        return "STATE"
    if "MANAGEMENT" in upper or "PAID" in upper:
        return "MANAGEMENT"
    if "AIQ" in upper or "ALL INDIA" in upper:
        return "AIQ"
    if "CENTRAL" in upper:
        return "CENTRAL"
    return QUOTA_CODES.get(upper, upper)
