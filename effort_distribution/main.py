from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dateutil import parser as dateparser

from .engine import AutoDistribution
from .io_utils import load_assignment, load_capacity_table, load_config, load_team_members, write_csv, write_json
from .models import DistributionConfig, DistributionResult
from .providers import InMemoryMemberDirectory, TableCapacityProvider, WorkingDaysCalendar


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Man-day distribution tool: project end dates, monthly plans and rebalancing."
    )
    parser.add_argument("--members", required=True, help="Path to team members JSON")
    parser.add_argument(
        "--capacity",
        help="Path to capacity CSV (member_id, month, capacity); defaults to the working-days calendar",
    )
    parser.add_argument("--config", help="Path to configuration JSON file")
    parser.add_argument("--safety-buffer", type=float, help="Override config.safety_buffer")
    parser.add_argument("--policy", help="Override config.policy")
    subparsers = parser.add_subparsers(dest="command", required=True)

    end_date = subparsers.add_parser("end-date", help="Project the month an effort is absorbed")
    end_date.add_argument("--member", required=True)
    end_date.add_argument("--start", required=True, help="Start date (ISO)")
    end_date.add_argument("--total", type=float, required=True, help="Total MDs")

    distribute = subparsers.add_parser("distribute", help="Spread MDs over a date range")
    distribute.add_argument("--member", required=True)
    distribute.add_argument("--start", required=True, help="Start date (ISO, inclusive)")
    distribute.add_argument("--end", required=True, help="End date (ISO, exclusive)")
    distribute.add_argument("--total", type=float, required=True, help="Total MDs")
    distribute.add_argument("--output", help="Write the plan to this CSV file")
    distribute.add_argument("--json", action="store_true", help="Print the plan as JSON")

    check = subparsers.add_parser("check", help="Check one month's allocation against capacity")
    check.add_argument("--member", required=True)
    check.add_argument("--month", required=True, help="Month (YYYY-MM)")
    check.add_argument("--allocation", type=float, required=True)
    check.add_argument("--committed", type=float, default=0.0, help="MDs already committed elsewhere")

    redistribute = subparsers.add_parser("redistribute", help="Apply an edit and rebalance later months")
    redistribute.add_argument("--assignment", required=True, help="Path to assignment JSON")
    redistribute.add_argument("--month", required=True, help="Edited month (YYYY-MM)")
    redistribute.add_argument("--value", type=float, required=True, help="New planned MDs")
    redistribute.add_argument("--now", help="Reference time (ISO); defaults to the current time")
    redistribute.add_argument("--output", help="Write the updated assignment JSON here")
    return parser.parse_args(argv)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _whole(value: float) -> object:
    return int(value) if float(value).is_integer() else value


def _build_engine(args: argparse.Namespace, cfg: DistributionConfig) -> AutoDistribution:
    directory = InMemoryMemberDirectory(load_team_members(args.members))
    if args.capacity:
        provider = TableCapacityProvider(load_capacity_table(args.capacity))
    else:
        provider = WorkingDaysCalendar(cfg.holidays, default_country=cfg.default_country)
    return AutoDistribution(provider, directory, cfg)


def _print_distribution(result: DistributionResult) -> None:
    if not result.allocations:
        print("Nothing to distribute.")
        return
    print("Planned MDs per month:")
    for month, entry in result.allocations.items():
        print(f"- {month}: {_whole(entry.planned)}")
    print(f"Total: {_whole(result.total_planned)}")
    if result.has_overflow:
        print(f"Overflow: {_whole(result.overflow_amount)} MDs do not fit the available capacity")


def _run(args: argparse.Namespace, engine: AutoDistribution) -> None:
    if args.command == "end-date":
        end = engine.calculate_project_end_date(args.start, args.total, args.member)
        print(end.isoformat())
    elif args.command == "distribute":
        result = engine.auto_distribute_mds(args.total, args.start, args.end, args.member)
        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            _print_distribution(result)
        if args.output:
            write_csv(result.to_frame(), args.output)
            print(f"Wrote {args.output}")
    elif args.command == "check":
        committed = {args.month: args.committed} if args.committed else None
        result = engine.check_capacity_overflow(args.member, args.month, args.allocation, committed=committed)
        print(json.dumps(result.to_dict(), indent=2))
    elif args.command == "redistribute":
        assignment = load_assignment(args.assignment)
        now: Optional[datetime] = dateparser.isoparse(args.now) if args.now else None
        updated = engine.redistribute_after_user_change(assignment, args.month, args.value, now=now)
        payload = updated.to_dict()
        if args.output:
            write_json(payload, args.output)
            print(f"Wrote {args.output}")
        else:
            print(json.dumps(payload, indent=2))
        if updated.error:
            print(f"Redistribution failed: {updated.error}", file=sys.stderr)
            sys.exit(1)


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        cfg = load_config(Path(args.config) if args.config else None)
        if args.safety_buffer is not None:
            cfg = replace(cfg, safety_buffer=args.safety_buffer)
        if args.policy:
            cfg = replace(cfg, policy=args.policy)
        _configure_logging(cfg.logging_level)
        engine = _build_engine(args, cfg)
        _run(args, engine)
    except (ValueError, LookupError, OSError) as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
