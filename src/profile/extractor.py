"""Deterministic profile extraction used when the AI parser fails.

Pulls fields straight from a cleaned (or raw) scraped profile by alias and
estimates total experience from the free-text role durations.
"""

import logging
import re
from datetime import date
from typing import Any

from pydantic import ValidationError

from src.core.schemas import EducationEntry, ExperienceEntry, ParsedProfile, skill_names

logger = logging.getLogger(__name__)

MAX_SKILLS = 10

_YEARS = re.compile(r"(\d+)\s*(?:yrs?|years?)\b", re.IGNORECASE)
_MONTHS = re.compile(r"(\d+)\s*(?:mos?|months?)\b", re.IGNORECASE)
_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_RANGE = re.compile(
    r"(?:(?P<m1>[A-Za-z]{3,9})\.?\s+)?(?P<y1>(?:19|20)\d{2})\s*(?:-|–|—|to)\s*"
    r"(?:(?P<present>present|current|now)"
    r"|(?:(?P<m2>[A-Za-z]{3,9})\.?\s+)?(?P<y2>(?:19|20)\d{2}))",
    re.IGNORECASE,
)
_MONTH_NUMBERS = {
    name: i + 1
    for i, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]
    )
}


def _month_number(name: str | None) -> int | None:
    if not name:
        return None
    return _MONTH_NUMBERS.get(name[:3].lower())


def parse_duration_months(text: str | None, *, today: date | None = None) -> int:
    """Months covered by a duration string, 0 when it cannot be read.

    Understands "N yrs M mos" style durations and year ranges such as
    "2019 - Present", "2016 – 2020" or "Jan 2019 - Mar 2021". The explicit
    "yrs/mos" form wins when both appear.
    """
    if not text:
        return 0

    years = _YEARS.search(text)
    months = _MONTHS.search(text)
    if years or months:
        return (int(years.group(1)) if years else 0) * 12 + (int(months.group(1)) if months else 0)

    match = _RANGE.search(text)
    if not match:
        return 0

    start_month = _month_number(match.group("m1"))
    start = int(match.group("y1")) * 12 + (start_month or 1) - 1
    if match.group("present"):
        today = today or date.today()
        end = today.year * 12 + today.month - 1
    else:
        end_month = _month_number(match.group("m2"))
        end = int(match.group("y2")) * 12 + (end_month or 1) - 1
        if start_month and end_month:
            # "Jan 2020 - Dec 2020" is twelve months, not eleven
            end += 1
    return max(0, end - start)


def total_experience_years(experience: list[dict[str, Any]], *, today: date | None = None) -> int | None:
    """Sum role durations and round to whole years. None when nothing parses."""
    total = sum(parse_duration_months(str(e.get("duration") or ""), today=today) for e in experience)
    if total <= 0:
        return None
    return round(total / 12)


def _first(profile: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = profile.get(key)
        if value:
            return value
    return None


def _numeric_years(value: Any) -> int | None:
    """Whole years from values like 5, "7.5" or "5+ years". None when no number is present."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return round(value)
    match = _NUMBER.search(str(value))
    return round(float(match.group(0))) if match else None


def _experience_entries(profile: dict[str, Any]) -> list[dict[str, Any]]:
    entries = profile.get("experience") or profile.get("experiences") or []
    return [e for e in entries if isinstance(e, dict)]


def manual_extract(
    profile: dict[str, Any],
    *,
    max_skills: int = MAX_SKILLS,
    today: date | None = None,
) -> ParsedProfile | None:
    """Build a ParsedProfile from field-presence rules.

    Returns None when the full name or profile URL cannot be derived.
    """
    name = _first(profile, "fullName", "name")
    if not name:
        name = f"{profile.get('firstName') or ''} {profile.get('lastName') or ''}".strip()
    url = _first(profile, "profileUrl", "linkedinUrl", "linkedinPublicUrl", "url")
    if not name or not url:
        logger.warning("Manual extraction impossible: missing name or URL (%s)", url or "no url")
        return None

    experience = _experience_entries(profile)
    current = experience[0] if experience else {}

    years = _numeric_years(profile.get("experienceYears"))
    if years is None:
        years = total_experience_years(experience, today=today)

    try:
        return ParsedProfile(
            full_name=str(name),
            profile_url=str(url),
            headline=profile.get("headline"),
            location=profile.get("location"),
            photo_url=_first(profile, "photoUrl", "photo"),
            current_position=_first(profile, "currentPosition", "jobTitle", "position")
            or current.get("title")
            or None,
            current_company=_first(profile, "currentCompany", "companyName", "company")
            or current.get("company")
            or None,
            experience_years=years,
            skills=skill_names(profile.get("skills"))[:max_skills],
            experience=[
                ExperienceEntry(
                    title=str(e.get("title") or ""),
                    company=str(e.get("company") or ""),
                    duration=str(e.get("duration") or ""),
                    description=e.get("description"),
                )
                for e in experience
            ],
            education=[
                EducationEntry(
                    degree=str(e.get("degree") or ""),
                    school=str(e.get("school") or ""),
                    year=str(e["year"]) if e.get("year") else None,
                )
                for e in profile.get("education") or []
                if isinstance(e, dict)
            ],
            email=profile.get("email"),
            phone=profile.get("phone"),
            parse_method="manual",
        )
    except ValidationError:
        logger.warning("Manual extraction kept only the core fields of %s", url, exc_info=True)
        return ParsedProfile(
            full_name=str(name), profile_url=str(url), experience_years=years, parse_method="manual",
        )
