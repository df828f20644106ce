"""
Job scheduler - operator command line.

Runs lifecycle operations against the scheduler database without the API
layer, e.g. to restart a stuck cluster or inspect a job.

Examples:
  python main.py show 42 --assets --deps
  python main.py cancel 42
  python main.py restart 42 43
  python main.py done 42 --result failed
  python main.py allocate-network 42 fixed
"""

import argparse
import json
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from src.infra import ensure_data_directories, setup_logging
from src.scheduler import JobResult, Outcome, SchedulerService


EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def _print_outcome(outcome: Outcome) -> int:
    if not outcome:
        print(f"Error: {outcome.message} ({outcome.reason.value})", file=sys.stderr)
        return EXIT_FAILURE
    return EXIT_SUCCESS


def cmd_show(service: SchedulerService, args: argparse.Namespace) -> int:
    outcome = service.job_summary(args.job_id, include_assets=args.assets, include_deps=args.deps)
    if outcome:
        print(json.dumps(outcome.value.model_dump(exclude_none=True), indent=2, ensure_ascii=False))
    return _print_outcome(outcome)


def cmd_cancel(service: SchedulerService, args: argparse.Namespace) -> int:
    outcome = service.cancel(args.job_id, obsoleted=args.obsoleted)
    if outcome:
        print(f"Cancelled {outcome.value} job(s)")
    return _print_outcome(outcome)


def cmd_restart(service: SchedulerService, args: argparse.Namespace) -> int:
    outcome = service.restart_jobs(args.job_ids)
    if outcome:
        for original, clone in outcome.value.items():
            print(f"{original} -> {clone}")
        if len(outcome.value) < len(args.job_ids):
            return EXIT_FAILURE
    return _print_outcome(outcome)


def cmd_done(service: SchedulerService, args: argparse.Namespace) -> int:
    result = JobResult(args.result) if args.result else None
    outcome = service.done(args.job_id, force_new_build=args.newbuild, result=result)
    if outcome:
        print(f"Job {args.job_id}: {outcome.value.value}")
    return _print_outcome(outcome)


def cmd_allocate_network(service: SchedulerService, args: argparse.Namespace) -> int:
    outcome = service.allocate_network(args.job_id, args.name)
    if outcome:
        print(outcome.value)
    return _print_outcome(outcome)


def cmd_set_priority(service: SchedulerService, args: argparse.Namespace) -> int:
    return _print_outcome(service.set_priority(args.job_id, args.priority))


def cmd_delete(service: SchedulerService, args: argparse.Namespace) -> int:
    return _print_outcome(service.delete_job(args.job_id))


COMMANDS = {
    "show": cmd_show,
    "cancel": cmd_cancel,
    "restart": cmd_restart,
    "done": cmd_done,
    "allocate-network": cmd_allocate_network,
    "set-priority": cmd_set_priority,
    "delete": cmd_delete,
}


def create_parser() -> argparse.ArgumentParser:
    """
    Create argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="scheduler",
        description="Job scheduler - operator commands",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite database (default: SCHEDULER_DB_PATH)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    show_parser = subparsers.add_parser("show", help="Print a job summary")
    show_parser.add_argument("job_id", type=int)
    show_parser.add_argument("--assets", action="store_true", help="Include assets")
    show_parser.add_argument("--deps", action="store_true", help="Include dependencies")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a job")
    cancel_parser.add_argument("job_id", type=int)
    cancel_parser.add_argument(
        "--obsoleted",
        action="store_true",
        help="Mark as obsoleted instead of user_cancelled"
    )

    restart_parser = subparsers.add_parser("restart", help="Restart jobs with their dependencies")
    restart_parser.add_argument("job_ids", type=int, nargs="+")

    done_parser = subparsers.add_parser("done", help="Finalize a job")
    done_parser.add_argument("job_id", type=int)
    done_parser.add_argument(
        "--result",
        choices=[r.value for r in JobResult if r != JobResult.NONE],
        default=None,
        help="Imposed result (default: computed from modules)"
    )
    done_parser.add_argument("--newbuild", action="store_true", help="Obsoleted by a new build")

    network_parser = subparsers.add_parser("allocate-network", help="Allocate a VLAN for a job")
    network_parser.add_argument("job_id", type=int)
    network_parser.add_argument("name", help="Logical network name")

    priority_parser = subparsers.add_parser("set-priority", help="Change job priority")
    priority_parser.add_argument("job_id", type=int)
    priority_parser.add_argument("priority", type=int)

    delete_parser = subparsers.add_parser("delete", help="Delete a job and its results")
    delete_parser.add_argument("job_id", type=int)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    log_level = "DEBUG" if args.verbose else os.getenv("LOG_LEVEL", "INFO").upper()
    setup_logging(log_level)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_SUCCESS

    ensure_data_directories()
    service = SchedulerService.create(args.db)
    return handler(service, args)


if __name__ == "__main__":
    sys.exit(main())
