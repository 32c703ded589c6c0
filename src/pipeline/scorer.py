"""SCORE stage: rubric scoring of saved candidates with bounded concurrency.

Rubric (100 points nominal):
  skills match      0-25
  experience fit    0-25
  industry          0-20
  title/seniority   0-15
  nice-to-have      0-10

Subscores returned by the model are clamped to their maxima and the
total is recomputed as their sum, so stored scores always satisfy the
rubric bounds whatever the model replies.
"""

import asyncio
import json
import logging
import sqlite3
from typing import Any

from pydantic.alias_generators import to_camel

from src.core.config import PipelineConfig
from src.core.db import count_candidates, fetch_unscored, save_score, update_job
from src.core.schemas import (
    RUBRIC_MAXIMA,
    Candidate,
    CandidateScore,
    JobStatus,
    SeniorityLevel,
    SourcingJob,
)
from src.pipeline.batch import raise_configuration_errors, settle_all
from src.profile.llm.base import LLMProvider, parse_response

logger = logging.getLogger(__name__)

SCORING_VERSION = "v2.0"

_MAX_EXPERIENCE_ENTRIES = 6

SCORING_SYSTEM_PROMPT = (
    "You are an experienced technical recruiter scoring how well a candidate "
    "fits a job. Public profiles are often incomplete, so be generous: give "
    "credit for transferable and adjacent skills and for experience that "
    "implies a skill even when it is not listed.\n\n"
    "RUBRIC:\n"
    "  skillsScore (0-25): share of required skills the candidate has or clearly could apply\n"
    "  experienceScore (0-25): fit of years in similar roles with the requirement\n"
    "  industryScore (0-20): same (high), adjacent (medium) or transferable (low) industry\n"
    "  titleScore (0-15): how close the current title and seniority are to the role\n"
    "  niceToHaveScore (0-10): bonus for nice-to-have skills\n"
    "  totalScore: the sum of the five subscores\n\n"
    "Return ONLY a JSON object with: skillsScore, experienceScore, industryScore, "
    "titleScore, niceToHaveScore, totalScore, reasoning (2-3 sentences), "
    "matchedSkills (required skills the candidate has), missingSkills (required "
    "skills the candidate lacks), bonusSkills (nice-to-have skills the candidate has), "
    "relevantYears (years in similar roles, not total career, or null), "
    'seniorityLevel (one of "Entry", "Mid", "Senior", "Lead", "Executive"), '
    "industryMatch (the candidate's industry, or null)."
)


def build_scoring_prompt(candidate: Candidate, job: SourcingJob) -> str:
    req = job.requirements
    history = json.dumps(candidate.experience[:_MAX_EXPERIENCE_ENTRIES], indent=2, default=str)
    years = candidate.experience_years if candidate.experience_years is not None else "Unknown"
    return (
        f"JOB: {job.title}\n{job.raw_job_description}\n\n"
        "REQUIREMENTS\n"
        f"Required skills: {req.required_skills}\n"
        f"Nice to have: {req.nice_to_have or 'None'}\n"
        f"Years of experience: {req.years_of_experience or 'Not specified'}\n"
        f"Industry: {req.industry or 'Not specified'}\n"
        f"Location: {req.location or 'Not specified'}\n\n"
        "CANDIDATE\n"
        f"Name: {candidate.full_name}\n"
        f"Headline: {candidate.headline or 'N/A'}\n"
        f"Current position: {candidate.current_position or 'N/A'}\n"
        f"Company: {candidate.current_company or 'N/A'}\n"
        f"Location: {candidate.location or 'N/A'}\n"
        f"Experience: {years} years\n"
        f"Skills: {', '.join(candidate.skills) or 'None listed'}\n"
        f"Experience history:\n{history}"
    )


def _clamp(value: Any, upper: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(upper, number))


def _seniority(value: Any) -> SeniorityLevel | None:
    if not value:
        return None
    wanted = str(value).strip().lower()
    for level in SeniorityLevel:
        if level.value.lower() == wanted:
            return level
    return None


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def interpret_score(raw_text: str) -> CandidateScore:
    """Parse and normalize a scoring reply. Raises ValueError on bad shape."""
    data = parse_response(raw_text)
    if isinstance(data, list) and data and isinstance(data[0], dict):
        data = data[0]
    if not isinstance(data, dict):
        msg = "scoring reply is not a JSON object"
        raise ValueError(msg)
    if not any(to_camel(name) in data for name in RUBRIC_MAXIMA):
        msg = "scoring reply has no subscores"
        raise ValueError(msg)

    subscores = {
        name: round(_clamp(data.get(to_camel(name)), upper), 2)
        for name, upper in RUBRIC_MAXIMA.items()
    }
    relevant = data.get("relevantYears")
    return CandidateScore(
        **subscores,
        total_score=round(sum(subscores.values()), 2),
        reasoning=str(data.get("reasoning") or ""),
        matched_skills=_strings(data.get("matchedSkills")),
        missing_skills=_strings(data.get("missingSkills")),
        bonus_skills=_strings(data.get("bonusSkills")),
        relevant_years=_clamp(relevant, 80.0) if relevant is not None else None,
        seniority_level=_seniority(data.get("seniorityLevel")),
        industry_match=str(data["industryMatch"]) if data.get("industryMatch") else None,
    )


async def score_candidate(
    candidate: Candidate,
    job: SourcingJob,
    provider: LLMProvider,
    model: str | None = None,
) -> CandidateScore:
    raw = await asyncio.to_thread(
        provider.complete,
        build_scoring_prompt(candidate, job),
        model,
        system=SCORING_SYSTEM_PROMPT,
    )
    return interpret_score(raw)


async def run_scoring(
    conn: sqlite3.Connection,
    job: SourcingJob,
    provider: LLMProvider,
    config: PipelineConfig,
    model: str | None = None,
) -> int:
    """Score saved candidates until none are left to pull.

    A candidate failing ``max_score_attempts`` times is left unscored for
    the rest of this run. Returns the job's scored count.
    """
    failures: dict[int, int] = {}
    excluded: set[int] = set()
    saved = count_candidates(conn, job.id, saved=True)

    while True:
        batch = fetch_unscored(conn, job.id, config.score_batch_size, excluded)
        if not batch:
            break

        logger.info("Job %s: scoring %d candidates", job.id, len(batch))
        outcomes = await settle_all(
            batch,
            lambda c: score_candidate(c, job, provider, model),
            concurrency=config.concurrency,
        )
        raise_configuration_errors(outcomes)

        for outcome in outcomes:
            candidate = outcome.item
            if candidate.id is None:
                continue
            if outcome.ok and outcome.value is not None:
                try:
                    save_score(conn, candidate.id, outcome.value, version=SCORING_VERSION)
                    logger.debug(
                        "%s: %.1f/100 (%s)",
                        candidate.full_name, outcome.value.total_score, outcome.value.seniority_level,
                    )
                    continue
                except Exception:
                    logger.warning("Failed to store score for %s", candidate.profile_url, exc_info=True)
            failures[candidate.id] = failures.get(candidate.id, 0) + 1
            if failures[candidate.id] >= config.max_score_attempts:
                logger.warning(
                    "Giving up on %s after %d scoring failures", candidate.profile_url, failures[candidate.id],
                )
                excluded.add(candidate.id)

        scored = count_candidates(conn, job.id, scored=True)
        update_job(
            conn,
            job.id,
            profiles_scored=scored,
            status=JobStatus.SCORING_PROFILES,
            current_stage=f"SCORED_{scored}_OF_{saved}",
        )

    scored = count_candidates(conn, job.id, scored=True)
    logger.info("Job %s scoring done: %d/%d scored, %d gave up", job.id, scored, saved, len(excluded))
    return scored
