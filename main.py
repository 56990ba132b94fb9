"""CLI entry point for the TalentFlow hiring pipeline core."""

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError as PydanticValidationError

from talentflow.core.config import Settings
from talentflow.core.context import AppContext
from talentflow.core.db import clear_all, count_records, init_db
from talentflow.core.errors import TalentFlowError
from talentflow.core.ordering import check_collection_order
from talentflow.core.seed import initialize_database, seed_database
from talentflow.pipeline.coordinator import MutationResult


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    parser = argparse.ArgumentParser(
        description="TalentFlow - hiring pipeline store with optimistic updates",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- seed ---
    seed_parser = subparsers.add_parser("seed", parents=[common], help="Seed the store with demo data")
    seed_parser.add_argument(
        "--force",
        action="store_true",
        help="Wipe existing records and seed again",
    )

    # --- jobs ---
    jobs_parser = subparsers.add_parser("jobs", parents=[common], help="List jobs in board order")
    jobs_parser.add_argument("--status", choices=["active", "archived"], help="Filter by status")
    jobs_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    jobs_parser.add_argument("--page-size", type=int, default=20, help="Jobs per page (default: 20)")

    # --- reorder ---
    reorder_parser = subparsers.add_parser(
        "reorder", parents=[common], help="Move the job at FROM to position TO",
    )
    reorder_parser.add_argument("from_order", type=int, metavar="FROM")
    reorder_parser.add_argument("to_order", type=int, metavar="TO")

    # --- move-candidate ---
    move_parser = subparsers.add_parser(
        "move-candidate", parents=[common], help="Move a candidate to another stage",
    )
    move_parser.add_argument("candidate_id", metavar="ID")
    move_parser.add_argument("stage", metavar="STAGE")

    # --- check-order ---
    subparsers.add_parser(
        "check-order", parents=[common], help="Verify job positions are dense (0..N-1)",
    )

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def cmd_seed(settings: Settings, force: bool) -> None:
    """Handle seed subcommand."""
    conn = init_db(settings.database.path)
    try:
        if force:
            clear_all(conn)
            seed_database(conn, settings.seed)
        elif not initialize_database(conn, settings.seed):
            print(f"Store already holds {count_records(conn, 'jobs')} jobs "
                  "(use --force to reseed)")
            return
        print(f"Seeded {count_records(conn, 'jobs')} jobs and "
              f"{count_records(conn, 'candidates')} candidates into {settings.database.path}")
    finally:
        conn.close()


def cmd_check_order(settings: Settings) -> int:
    """Handle check-order subcommand. Returns the exit code."""
    conn = init_db(settings.database.path)
    try:
        violations = check_collection_order(conn, "jobs")
    finally:
        conn.close()
    if violations.ok:
        print("Job order OK")
        return 0
    print(f"Job order needs repair: duplicates={violations.duplicates} "
          f"missing={violations.missing}")
    return 1


def report(result: MutationResult) -> None:
    """Print the settled phase, then re-raise the error of a rolled-back mutation."""
    print(f"{result.name}: {result.phase.value.upper()}")
    result.unwrap()


async def cmd_jobs(settings: Settings, args: argparse.Namespace) -> None:
    async with AppContext(settings) as app:
        page = await app.jobs.list_jobs(status=args.status, page=args.page, page_size=args.page_size)
    print(f"{page['total']} jobs (page {page['page']}, {page['pageSize']} per page)")
    for job in page["data"]:
        tags = ", ".join(job.get("tags", []))
        print(f"  [{job['order']:>3}] {job['title']} ({job['status']}) {job['slug']}  {tags}")


async def cmd_reorder(settings: Settings, from_order: int, to_order: int) -> None:
    async with AppContext(settings) as app:
        report(await app.jobs.reorder_jobs(from_order, to_order))


async def cmd_move_candidate(settings: Settings, candidate_id: str, stage: str) -> None:
    async with AppContext(settings) as app:
        report(await app.candidates.move_candidate(candidate_id, stage))


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, PydanticValidationError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "seed":
            cmd_seed(settings, args.force)
        elif args.command == "check-order":
            sys.exit(cmd_check_order(settings))
        elif args.command == "jobs":
            asyncio.run(cmd_jobs(settings, args))
        elif args.command == "reorder":
            asyncio.run(cmd_reorder(settings, args.from_order, args.to_order))
        elif args.command == "move-candidate":
            asyncio.run(cmd_move_candidate(settings, args.candidate_id, args.stage))
    except TalentFlowError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
