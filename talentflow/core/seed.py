"""Demo data set: jobs, candidates with stage histories, and assessments.

Generation is driven by one ``random.Random`` so a fixed ``random_seed``
reproduces the same data set.
"""

import logging
import random
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import Any

from talentflow.core.config import SeedConfig
from talentflow.core.db import bulk_put, count_records
from talentflow.core.schemas import (
    STAGE_SEQUENCE,
    Assessment,
    AssessmentQuestion,
    AssessmentSection,
    Candidate,
    CandidateStage,
    Job,
    JobStatus,
    QuestionType,
    QuestionValidation,
    TimelineEvent,
    TimelineEventType,
    slugify,
    utc_now,
)

logger = logging.getLogger(__name__)

JOB_TITLES = [
    "Senior Frontend Engineer", "Backend Developer", "Full Stack Developer",
    "DevOps Engineer", "Product Designer", "UX Researcher", "Data Scientist",
    "Machine Learning Engineer", "Product Manager", "Engineering Manager",
    "QA Engineer", "Security Engineer", "Mobile Developer", "Technical Writer",
    "Solutions Architect", "Cloud Architect", "Data Engineer",
    "Site Reliability Engineer", "Platform Engineer", "Engineering Director",
    "Principal Engineer", "Staff Engineer", "Tech Lead", "Growth Engineer",
    "Infrastructure Engineer",
]

TAGS = [
    "Remote", "Hybrid", "Onsite", "Senior", "Mid-Level", "Junior",
    "Full-Time", "Contract", "Urgent", "Flexible Hours",
]

FIRST_NAMES = [
    "Ada", "Alan", "Grace", "Linus", "Margaret", "Dennis", "Barbara", "Ken",
    "Frances", "Edsger", "Radia", "Guido", "Hedy", "Tim", "Katherine", "Donald",
    "Sophie", "Yukihiro", "Anita", "Bjarne",
]

LAST_NAMES = [
    "Lovelace", "Turing", "Hopper", "Torvalds", "Hamilton", "Ritchie", "Liskov",
    "Thompson", "Allen", "Dijkstra", "Perlman", "Rossum", "Lamarr", "Berners-Lee",
    "Johnson", "Knuth", "Wilson", "Matsumoto", "Borg", "Stroustrup",
]

WORDS = (
    "team product data service design review scale deliver support build "
    "system customer quality release feature platform growth impact process "
    "insight stack workflow roadmap metric"
).split()

STAGE_STEP = timedelta(days=3)


def _uuid(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def _words(rng: random.Random, count: int) -> str:
    return " ".join(rng.choice(WORDS) for _ in range(count))


def _sentence(rng: random.Random, count: int = 8) -> str:
    text = _words(rng, count)
    return text[:1].upper() + text[1:]


def _past(rng: random.Random, now: datetime, days: int) -> datetime:
    return now - timedelta(seconds=rng.uniform(0, days * 86400))


def generate_jobs(rng: random.Random, count: int, now: datetime) -> list[Job]:
    jobs = []
    for i in range(count):
        title = JOB_TITLES[i] if i < len(JOB_TITLES) else f"{rng.choice(JOB_TITLES)} {i + 1}"
        created_at = _past(rng, now, 365)
        jobs.append(Job(
            id=_uuid(rng),
            title=title,
            slug=f"{slugify(title)}-{_uuid(rng)[:6]}",
            status=JobStatus.ACTIVE if rng.random() > 0.3 else JobStatus.ARCHIVED,
            tags=rng.sample(TAGS, rng.randint(2, 4)),
            description=f"{_sentence(rng, 12)}. {_sentence(rng, 10)}.",
            order=i,
            created_at=created_at,
            updated_at=created_at,
        ))
    return jobs


def generate_candidates(
    rng: random.Random,
    jobs: list[Job],
    count: int,
    now: datetime,
) -> tuple[list[Candidate], list[TimelineEvent]]:
    """Candidates spread over active jobs, each with its stage history.

    A candidate in stage ``s`` gets an "Application submitted" event plus one
    stage_change per step of the pipeline up to ``s``, three days apart.
    """
    pool = [j for j in jobs if j.status == JobStatus.ACTIVE] or jobs
    candidates: list[Candidate] = []
    events: list[TimelineEvent] = []
    for _ in range(count):
        job = rng.choice(pool)
        stage = rng.choice(STAGE_SEQUENCE)
        steps = STAGE_SEQUENCE.index(stage)
        # The whole history must end before ``now``.
        applied_at = _past(rng, now - steps * STAGE_STEP, 182)
        first, last = rng.choice(FIRST_NAMES), rng.choice(LAST_NAMES)
        candidate = Candidate(
            id=_uuid(rng),
            name=f"{first} {last}",
            email=f"{first.lower()}.{last.lower()}{rng.randint(1, 999)}@example.com",
            stage=stage,
            job_id=job.id,
            applied_at=applied_at,
            updated_at=applied_at,
        )
        candidates.append(candidate)
        events.append(TimelineEvent(
            id=_uuid(rng),
            candidate_id=candidate.id,
            type=TimelineEventType.STAGE_CHANGE,
            content=f"Application submitted for {job.title}",
            to_stage=CandidateStage.APPLIED,
            created_at=applied_at,
        ))
        for step in range(1, steps + 1):
            events.append(TimelineEvent(
                id=_uuid(rng),
                candidate_id=candidate.id,
                type=TimelineEventType.STAGE_CHANGE,
                content=f"Moved to {STAGE_SEQUENCE[step].value}",
                from_stage=STAGE_SEQUENCE[step - 1],
                to_stage=STAGE_SEQUENCE[step],
                created_at=applied_at + step * STAGE_STEP,
            ))
    return candidates, events


def _question(rng: random.Random) -> AssessmentQuestion:
    kind = rng.choice([
        QuestionType.SINGLE_CHOICE, QuestionType.MULTI_CHOICE, QuestionType.SHORT_TEXT,
        QuestionType.LONG_TEXT, QuestionType.NUMERIC,
    ])
    fields: dict[str, Any] = {}
    if kind in (QuestionType.SINGLE_CHOICE, QuestionType.MULTI_CHOICE):
        fields["options"] = [_words(rng, 3) for _ in range(4)]
    elif kind == QuestionType.NUMERIC:
        fields["validation"] = QuestionValidation(min=0, max=100)
    elif kind == QuestionType.SHORT_TEXT:
        fields["validation"] = QuestionValidation(max_length=200)
    return AssessmentQuestion(
        id=_uuid(rng),
        type=kind,
        text=f"{_sentence(rng)}?",
        required=rng.random() > 0.3,
        **fields,
    )


def generate_assessments(
    rng: random.Random,
    jobs: list[Job],
    count: int,
    now: datetime,
) -> list[Assessment]:
    assessments = []
    for _ in range(count):
        job = rng.choice(jobs)
        sections = [
            AssessmentSection(
                id=_uuid(rng),
                title=f"Section {j + 1}: {_words(rng, 3)}",
                description=f"{_sentence(rng)}.",
                questions=[_question(rng) for _ in range(rng.randint(4, 6))],
                order=j,
            )
            for j in range(rng.randint(2, 3))
        ]
        assessments.append(Assessment(
            id=_uuid(rng),
            job_id=job.id,
            title=f"{job.title} Assessment",
            description=f"{_sentence(rng, 14)}.",
            sections=sections,
            created_at=_past(rng, now, 182),
            updated_at=now,
        ))
    return assessments


def seed_database(
    conn: sqlite3.Connection,
    config: SeedConfig,
    now: datetime | None = None,
) -> dict[str, int]:
    """Write a fresh demo data set. Returns the number of records per collection."""
    rng = random.Random(config.random_seed)
    now = now or utc_now()

    jobs = generate_jobs(rng, config.jobs, now)
    candidates, events = generate_candidates(rng, jobs, config.candidates, now)
    assessments = generate_assessments(rng, jobs, config.assessments, now)

    counts = {
        "jobs": bulk_put(conn, "jobs", jobs),
        "candidates": bulk_put(conn, "candidates", candidates),
        "timeline": bulk_put(conn, "timeline", events),
        "assessments": bulk_put(conn, "assessments", assessments),
    }
    logger.info(
        "Seeded %d jobs, %d candidates (%d timeline events), %d assessments",
        counts["jobs"], counts["candidates"], counts["timeline"], counts["assessments"],
    )
    return counts


def initialize_database(conn: sqlite3.Connection, config: SeedConfig) -> bool:
    """Seed the store on first use. Returns True if seeding happened."""
    if count_records(conn, "jobs") > 0:
        logger.debug("Store already has jobs - skipping seed")
        return False
    seed_database(conn, config)
    return True
