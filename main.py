"""CLI entry point for the candidate sourcing pipeline."""

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

from pydantic import ValidationError

from src.core.config import Settings
from src.core.db import count_candidates, get_job, init_db, list_candidates, list_job_errors, list_jobs
from src.core.errors import SourcingError
from src.core.schemas import JobRequirements, JobStatus, JobSubmission
from src.pipeline.orchestrator import (
    PipelineContext,
    recover_stuck_jobs,
    resume,
    retry_job,
    submit_job,
)
from src.pipeline.reporting import export_candidates_csv, export_candidates_json, job_progress

_SORTS = ["match_score", "full_name", "created_at", "relevant_years", "experience_years"]


def _common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Candidate sourcing - turn a job description into ranked, contactable candidates",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- submit ---
    submit = subparsers.add_parser("submit", help="Create a sourcing job and run it")
    _common(submit)
    submit.add_argument("--owner", required=True, help="Owner (recruiter) id")
    submit.add_argument("--title", required=True, help="Job title")
    desc = submit.add_mutually_exclusive_group(required=True)
    desc.add_argument("--description", help="Job description text")
    desc.add_argument("--description-file", help="Read the job description from a file")
    submit.add_argument("--required-skills", required=True, help="Comma-separated required skills")
    submit.add_argument("--nice-to-have", default="", help="Comma-separated nice-to-have skills")
    submit.add_argument("--years", default="", help="Years of experience (e.g. 5-8)")
    submit.add_argument("--location", default="", help="Location requirement")
    submit.add_argument("--industry", default="", help="Industry (e.g. SaaS, FinTech)")
    submit.add_argument("--education", default="", help="Education level")
    submit.add_argument("--company-type", default="", help="Company type")
    submit.add_argument(
        "--max-candidates", type=int, default=50, help="Target candidate count, 10-100 (default: 50)",
    )
    submit.add_argument("--no-run", action="store_true", help="Only create the job")

    # --- resume / retry ---
    resume_parser = subparsers.add_parser("resume", help="Resume a job from its last checkpoint")
    _common(resume_parser)
    resume_parser.add_argument("job_id")

    retry_parser = subparsers.add_parser("retry", help="Retry a failed job from its checkpoint")
    _common(retry_parser)
    retry_parser.add_argument("job_id")

    # --- status ---
    status = subparsers.add_parser("status", help="Show job progress")
    _common(status)
    status.add_argument("job_id")
    status.add_argument("--watch", action="store_true", help="Poll until the job finishes")
    status.add_argument(
        "--interval", type=float, default=2.0, help="Poll interval in seconds (default: 2)",
    )
    status.add_argument("--errors", action="store_true", help="Also print the job error log")

    # --- jobs ---
    jobs = subparsers.add_parser("jobs", help="List an owner's jobs")
    _common(jobs)
    jobs.add_argument("--owner", required=True)
    jobs.add_argument("--status", choices=[s.value for s in JobStatus])
    jobs.add_argument("--limit", type=int, default=20)
    jobs.add_argument("--offset", type=int, default=0)

    # --- candidates / export ---
    for name, help_text in (
        ("candidates", "List a job's candidates"),
        ("export", "Export a job's candidates"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        _common(sub)
        sub.add_argument("job_id")
        sub.add_argument("--sort", choices=_SORTS, default="match_score")
        sub.add_argument("--ascending", action="store_true")
        sub.add_argument("--min-score", type=float)
        sub.add_argument("--scored-only", action="store_true")
        sub.add_argument("--contactable-only", action="store_true")
        dup = sub.add_mutually_exclusive_group()
        dup.add_argument("--duplicates-only", action="store_true")
        dup.add_argument("--exclude-duplicates", action="store_true")
        sub.add_argument("--seniority", choices=["Entry", "Mid", "Senior", "Lead", "Executive"])
        sub.add_argument("--limit", type=int, default=50 if name == "candidates" else 1000)
        sub.add_argument("--offset", type=int, default=0)
        if name == "export":
            sub.add_argument("--format", choices=["json", "csv"], default="json")
            sub.add_argument("--output", help="Write to this file instead of stdout")

    # --- recover-stuck ---
    recover = subparsers.add_parser(
        "recover-stuck", help="Resume jobs with no recent activity, fail exhausted ones",
    )
    _common(recover)

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _print_progress(progress: dict) -> None:
    p = progress["progress"]
    print(
        f"[{progress['percentage']:3d}%] {progress['status']} / {progress['currentStage']} - "
        f"found {p['found']}, scraped {p['scraped']}, parsed {p['parsed']}, "
        f"saved {p['saved']}, scored {p['scored']}"
    )
    if progress["errorMessage"]:
        print(f"  error: {progress['errorMessage']}")


def _read_description(args: argparse.Namespace) -> str:
    if args.description_file:
        return Path(args.description_file).read_text()
    return args.description


def cmd_submit(args: argparse.Namespace, settings: Settings) -> None:
    submission = JobSubmission(
        owner_id=args.owner,
        title=args.title,
        job_description=_read_description(args),
        max_candidates=args.max_candidates,
        requirements=JobRequirements(
            required_skills=args.required_skills,
            nice_to_have=args.nice_to_have,
            years_of_experience=args.years,
            location=args.location,
            industry=args.industry,
            education_level=args.education,
            company_type=args.company_type,
        ),
    )
    conn = init_db(settings.database.path)
    job = submit_job(conn, submission, settings)
    print(f"Created job {job.id}")
    if not args.no_run:
        job = asyncio.run(resume(PipelineContext(conn, settings), job.id))
        _print_progress(job_progress(job, count_candidates(conn, job.id, contactable=True)))
    conn.close()


def cmd_run(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    ctx = PipelineContext(conn, settings)
    runner = retry_job if args.command == "retry" else resume
    job = asyncio.run(runner(ctx, args.job_id))
    _print_progress(job_progress(job, count_candidates(conn, job.id, contactable=True)))
    conn.close()


def cmd_status(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    last: dict | None = None
    while True:
        job = get_job(conn, args.job_id)
        if job is None:
            print(f"Error: job {args.job_id} not found", file=sys.stderr)
            sys.exit(1)
        progress = job_progress(job, count_candidates(conn, job.id, contactable=True))
        if progress != last:
            _print_progress(progress)
            last = progress
        if not args.watch or job.is_terminal:
            break
        time.sleep(args.interval)

    if args.errors:
        for error in list_job_errors(conn, args.job_id):
            flag = "retryable" if error.retryable else "fatal"
            print(f"  {error.timestamp.isoformat(timespec='seconds')} {error.stage} ({flag}): {error.message}")
    conn.close()


def cmd_jobs(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    status = JobStatus(args.status) if args.status else None
    jobs, total = list_jobs(conn, args.owner, status=status, limit=args.limit, offset=args.offset)
    print(f"{total} job(s) for {args.owner}")
    for job in jobs:
        print(
            f"  {job.id}  {job.status.value:<20} {job.current_stage:<24} "
            f"saved {job.profiles_saved:>3}  scored {job.profiles_scored:>3}  {job.title}"
        )
    conn.close()


def _query_candidates(args: argparse.Namespace, settings: Settings):  # noqa: ANN202
    conn = init_db(settings.database.path)
    duplicates = True if args.duplicates_only else (False if args.exclude_duplicates else None)
    result = list_candidates(
        conn,
        args.job_id,
        sort=args.sort,
        descending=not args.ascending,
        min_score=args.min_score,
        scored_only=args.scored_only,
        contactable_only=args.contactable_only,
        duplicates=duplicates,
        seniority=args.seniority,
        limit=args.limit,
        offset=args.offset,
    )
    conn.close()
    return result


def cmd_candidates(args: argparse.Namespace, settings: Settings) -> None:
    candidates, total = _query_candidates(args, settings)
    print(f"{total} candidate(s), showing {len(candidates)}")
    for c in candidates:
        score = f"{c.match_score:5.1f}" if c.is_scored and c.match_score is not None else "  -  "
        dup = " (dup)" if c.is_duplicate else ""
        print(
            f"  {score}  {c.full_name}{dup} - {c.current_position or c.headline or 'n/a'}"
            f" | {c.email or 'no email'} | {c.profile_url}"
        )


def cmd_export(args: argparse.Namespace, settings: Settings) -> None:
    candidates, _ = _query_candidates(args, settings)
    if args.format == "csv":
        output = export_candidates_csv(candidates)
    else:
        output = export_candidates_json(candidates)
    if args.output:
        Path(args.output).write_text(output)
        print(f"Exported {len(candidates)} candidates to {args.output}")
    else:
        print(output)


def cmd_recover(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    actions = asyncio.run(recover_stuck_jobs(PipelineContext(conn, settings)))
    print(json.dumps([{"job_id": job_id, "action": action} for job_id, action in actions], indent=2))
    conn.close()


_COMMANDS = {
    "submit": cmd_submit,
    "resume": cmd_run,
    "retry": cmd_run,
    "status": cmd_status,
    "jobs": cmd_jobs,
    "candidates": cmd_candidates,
    "export": cmd_export,
    "recover-stuck": cmd_recover,
}


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        _COMMANDS[args.command](args, settings)
    except (SourcingError, ValidationError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
