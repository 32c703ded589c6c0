"""AI structured extraction of scraped profiles.

The model is asked for one JSON object with two mandatory fields
(fullName, profileUrl). Its reply is interpreted into an ExtractionResult:
either a validated ParsedProfile or a failure carrying the raw text, so the
caller can fall back to the manual extractor.
"""

import json
import logging
from typing import Any

from pydantic import ValidationError

from src.core.errors import ConfigurationError
from src.core.schemas import ParsedProfile
from src.profile.llm.base import LLMProvider, parse_response

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = (
    "You are an expert data parser for LinkedIn profiles. Convert the profile "
    "data you are given into ONE JSON object with these fields:\n"
    "  fullName (string, REQUIRED), profileUrl (string, REQUIRED),\n"
    "  headline, location, photoUrl, currentPosition, currentCompany (strings),\n"
    "  experienceYears (integer, computed from the experience list if absent),\n"
    "  skills (list of strings),\n"
    "  experience (list of {title, company, duration, description}),\n"
    "  education (list of {degree, school, year}),\n"
    "  email, phone (strings).\n\n"
    "Rules:\n"
    "1. Return a single JSON object, never an array, no markdown, no extra text.\n"
    "2. Omit fields that are missing or unclear. Do not invent data.\n"
    "3. Normalize company and school names to proper capitalization.\n"
    "4. Keep skills, experience and education complete and in their original order."
)

_REQUIRED = ("fullName", "profileUrl")


class ExtractionResult:
    """Outcome of one AI extraction attempt."""

    def __init__(
        self,
        profile: ParsedProfile | None = None,
        raw_text: str = "",
        error: str | None = None,
        recovered_from_array: bool = False,
    ) -> None:
        self.profile = profile
        self.raw_text = raw_text
        self.error = error
        self.recovered_from_array = recovered_from_array

    @property
    def ok(self) -> bool:
        return self.profile is not None

    def __repr__(self) -> str:
        if self.ok:
            return f"ExtractionResult(ok, recovered_from_array={self.recovered_from_array})"
        return f"ExtractionResult(failed: {self.error})"


def build_extraction_prompt(profile: dict[str, Any]) -> str:
    return (
        "Parse this LinkedIn profile into the structured format:\n\n"
        f"{json.dumps(profile, indent=2, default=str)}\n\n"
        "fullName and profileUrl must be present."
    )


def _has_required(data: Any) -> bool:
    return isinstance(data, dict) and all(data.get(key) for key in _REQUIRED)


def interpret_extraction(raw_text: str) -> ExtractionResult:
    """Turn raw model output into an ExtractionResult. Pure, no I/O.

    A JSON array is recovered by taking its first element when that element
    carries both mandatory fields.
    """
    try:
        data = parse_response(raw_text)
    except ValueError as e:
        return ExtractionResult(raw_text=raw_text, error=str(e))

    recovered = False
    if isinstance(data, list):
        if not data or not _has_required(data[0]):
            return ExtractionResult(
                raw_text=raw_text,
                error="model returned an array without a usable first element",
            )
        data = data[0]
        recovered = True

    if not _has_required(data):
        return ExtractionResult(raw_text=raw_text, error="missing fullName or profileUrl")

    try:
        profile = ParsedProfile.model_validate({**data, "parseMethod": "ai"})
    except ValidationError as e:
        return ExtractionResult(raw_text=raw_text, error=f"schema validation failed: {e}")

    return ExtractionResult(profile=profile, raw_text=raw_text, recovered_from_array=recovered)


def extract_with_ai(
    profile: dict[str, Any],
    provider: LLMProvider,
    model: str | None = None,
) -> ExtractionResult:
    """Run the extraction model on one cleaned profile.

    Provider failures become a failed result. Missing credentials are not
    an item-level problem and propagate as ConfigurationError.
    """
    try:
        raw = provider.complete(
            build_extraction_prompt(profile),
            model=model,
            system=EXTRACTION_SYSTEM_PROMPT,
        )
    except ConfigurationError:
        raise
    except Exception as e:
        logger.warning("Extraction call failed for %s: %s", profile.get("profileUrl"), e)
        return ExtractionResult(error=f"model call failed: {e}")

    result = interpret_extraction(raw)
    if result.recovered_from_array:
        logger.info("Recovered array response for %s", profile.get("profileUrl"))
    elif not result.ok:
        logger.warning("Unusable extraction for %s: %s", profile.get("profileUrl"), result.error)
    return result
