#!/usr/bin/env python3
"""
Safety-net reconciliation of project budget totals.

Recomputes breakdowns and project aggregates from the cost ledger, for one
project or for all of them.  With --check, only compares each project's
stored totals with its breakdown rows and writes nothing.

Usage:
  python3 scripts/reconcile_projects.py --all
  python3 scripts/reconcile_projects.py --project-id 6f1c...e2
  python3 scripts/reconcile_projects.py --all --check
  python3 scripts/reconcile_projects.py --all --config config/prod.yaml --db-url postgresql://...

Exit status: 0 when every project reconciled (or is consistent), 1 otherwise.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a UUID: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0].strip())
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--project-id", type=_parse_uuid, help="Reconcile a single project")
    target.add_argument("--all", action="store_true", help="Reconcile every project")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only report whether stored totals match the breakdown rows",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("--db-url", default=None, help="Override database.url from the config")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-project timeout in seconds (default: reconciliation.timeout_seconds)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="DEBUG logging")
    return parser


def run_check(session, project_ids: list[UUID]) -> int:
    from costcontrol_kernel.exceptions import ProjectNotFoundError
    from costcontrol_kernel.selectors.budget_selector import BudgetSelector

    selector = BudgetSelector(session)
    inconsistent = 0
    for project_id in project_ids:
        try:
            report = selector.check_consistency(project_id)
        except ProjectNotFoundError as exc:
            inconsistent += 1
            print(f"MISSING {project_id}  [{exc.code}]")
            continue
        state = "OK" if report.is_consistent else "DRIFT"
        if not report.is_consistent:
            inconsistent += 1
        print(
            f"{state:5}  {project_id}  actual {report.recorded_total_actual} "
            f"vs {report.breakdown_actual_sum}  committed {report.recorded_total_committed} "
            f"vs {report.breakdown_committed_sum}"
        )
    print(f"\n{len(project_ids)} project(s) checked, {inconsistent} inconsistent")
    return 1 if inconsistent else 0


def run_reconcile(reconciler, project_ids: list[UUID] | None, timeout: float | None) -> int:
    from costcontrol_kernel.exceptions import CostControlError

    if project_ids is None:
        report = reconciler.reconcile_all(timeout=timeout)
        for project_id in report.succeeded:
            print(f"OK     {project_id}")
        for project_id, error in report.failed.items():
            print(f"FAILED {project_id}  [{error.code}] {error}")
        print(f"\n{report.project_count} project(s), {len(report.failed)} failed")
        return 0 if report.all_succeeded else 1

    failed = 0
    for project_id in project_ids:
        try:
            result = reconciler.reconcile(project_id, timeout=timeout)
        except CostControlError as exc:
            failed += 1
            print(f"FAILED {project_id}  [{exc.code}] {exc}")
            continue
        print(
            f"OK     {project_id}  actual {result.aggregate.total_actual_cost}  "
            f"committed {result.aggregate.total_committed_cost}  "
            f"margin {result.aggregate.gross_profit_margin}%  (attempts {result.attempts})"
        )
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    import yaml

    from costcontrol_config import get_active_config
    from costcontrol_kernel.db.engine import init_engine_from_url, session_scope
    from costcontrol_kernel.logging_config import configure_logging
    from costcontrol_kernel.selectors.budget_selector import BudgetSelector
    from costcontrol_kernel.services.reconciliation_service import ReconciliationService

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    db = config.database
    try:
        init_engine_from_url(
            args.db_url or db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
        )
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    with session_scope() as session:
        if args.check:
            project_ids = (
                [args.project_id] if args.project_id else BudgetSelector(session).list_project_ids()
            )
            return run_check(session, project_ids)

        reconciler = ReconciliationService(session, settings=config.reconciliation)
        project_ids = [args.project_id] if args.project_id else None
        return run_reconcile(reconciler, project_ids, args.timeout)


if __name__ == "__main__":
    sys.exit(main())
