"""Reduce raw scraper payloads to the fields the parse stage needs."""

from typing import Any

from src.core.schemas import normalize_profile_url


def _pick(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value:
            return value
    return None


def _clean_experience(entries: Any) -> list[dict[str, Any]]:
    if not isinstance(entries, list):
        return []
    cleaned: list[dict[str, Any]] = []
    for exp in entries:
        if not isinstance(exp, dict):
            continue
        duration = _pick(exp, "duration", "currentJobDuration", "caption")
        if not duration:
            start = _pick(exp, "jobStartedOn", "startDate") or ""
            end = _pick(exp, "jobEndedOn", "endDate") or "Present"
            duration = f"{start} - {end}" if start else ""
        cleaned.append(
            {
                "title": _pick(exp, "title", "jobTitle", "position") or "",
                "company": _pick(exp, "companyName", "company", "subtitle") or "",
                "duration": duration,
                "description": _pick(exp, "jobDescription", "description"),
                "location": _pick(exp, "jobLocation", "location"),
            }
        )
    return cleaned


def _clean_education(entries: Any) -> list[dict[str, Any]]:
    if not isinstance(entries, list):
        return []
    cleaned: list[dict[str, Any]] = []
    for edu in entries:
        if not isinstance(edu, dict):
            continue
        cleaned.append(
            {
                "degree": _pick(edu, "degree", "degreeName", "subtitle") or "",
                "school": _pick(edu, "school", "schoolName", "title") or "",
                "year": _pick(edu, "year", "endDate", "period"),
            }
        )
    return cleaned


def clean_profile(raw: dict[str, Any], url: str | None = None) -> dict[str, Any]:
    """Map a raw scraped profile to a compact camelCase dict.

    ``url`` is the normalized URL the profile was scraped under; when given
    it wins over whatever URL field the scraper returned.
    """
    name = _pick(raw, "fullName", "name")
    if not name:
        name = f"{raw.get('firstName') or ''} {raw.get('lastName') or ''}".strip() or None

    profile_url = url or _pick(raw, "linkedinUrl", "linkedinPublicUrl", "profileUrl", "url")

    return {
        "fullName": name,
        "headline": raw.get("headline"),
        "location": _pick(raw, "location", "addressWithCountry", "jobLocation"),
        "profileUrl": normalize_profile_url(profile_url) if profile_url else None,
        "photoUrl": _pick(raw, "photoUrl", "photo", "profilePic"),
        "currentPosition": _pick(raw, "jobTitle", "position", "currentPosition"),
        "currentCompany": _pick(raw, "companyName", "company", "currentCompany"),
        "experienceYears": raw.get("experienceYears"),
        "experience": _clean_experience(raw.get("experiences") or raw.get("experience")),
        "skills": raw.get("skills") or [],
        "education": _clean_education(raw.get("educations") or raw.get("education")),
        "email": raw.get("email"),
        "phone": _pick(raw, "mobileNumber", "phone", "phoneNumber"),
    }


def is_valid_profile(profile: dict[str, Any]) -> bool:
    """A cleaned profile is worth parsing when it has a name, a URL and
    at least one of headline, current position or experience."""
    return bool(
        profile.get("fullName")
        and profile.get("profileUrl")
        and (profile.get("headline") or profile.get("currentPosition") or profile.get("experience"))
    )
