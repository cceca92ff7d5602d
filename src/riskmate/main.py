#!/usr/bin/env python
"""
RiskMate command line

    riskmate serve [--port 8000]
    riskmate reconcile [--hours 24] [--type manual]
    riskmate monitor
    riskmate process-exports
    riskmate init-db
"""
import argparse
import json
import logging
import sys

from .config import config
from .logging_config import set_request_id, setup_logging

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def serve(args) -> int:
    import uvicorn

    logger.info("=" * 50)
    logger.info("RiskMate API - Starting Up")
    logger.info("=" * 50)
    logger.info(f"Environment: {config.ENV}")
    logger.info(f"DATABASE_URL: {'SET' if config.DATABASE_URL else 'NOT SET (using SQLite)'}")
    logger.info(f"Scheduler: {'enabled' if config.ENABLE_SCHEDULER else 'disabled'}")
    logger.info(f"Health check endpoint: http://{args.host}:{args.port}/health")

    uvicorn.run(
        "riskmate.api_server:app",
        host=args.host,
        port=args.port,
        log_config=None,
        access_log=True,
    )
    return 0


def reconcile(args) -> int:
    from .services.scheduled_jobs import run_reconciliation_job

    if args.per_organization:
        return reconcile_organizations()
    summary = run_reconciliation_job(lookback_hours=args.hours, run_type=args.type)
    if summary is None:
        print("Reconciliation failed; see logs", file=sys.stderr)
        return 1
    _print_json(summary)
    return 0


def reconcile_organizations() -> int:
    from .db.engine import SessionLocal
    from .exceptions import ApiError
    from .services.reconciliation_service import reconcile_all_subscriptions
    from .services.stripe_gateway import get_stripe_gateway

    set_request_id()
    try:
        gateway = get_stripe_gateway()
    except ApiError as e:
        print(e.message, file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        totals = reconcile_all_subscriptions(db, gateway)
    finally:
        db.close()
    _print_json(totals)
    return 0 if totals["errors"] == 0 else 2


def monitor(args) -> int:
    from .services.scheduled_jobs import run_monitoring_job

    report = run_monitoring_job()
    if report is None:
        print("Monitoring run failed; see logs", file=sys.stderr)
        return 1
    _print_json(report)
    return 0


def process_exports(args) -> int:
    from .services.export_worker import get_export_worker

    set_request_id()
    stats = get_export_worker().process_pending()
    _print_json(stats)
    return 0 if stats["failed"] == 0 else 2


def init_database(args) -> int:
    from .db.engine import init_db

    init_db()
    print("Database schema created")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="riskmate", description="RiskMate backend")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=config.PORT)
    serve_parser.set_defaults(func=serve)

    reconcile_parser = subparsers.add_parser("reconcile", help="Run one Stripe reconciliation sweep")
    reconcile_parser.add_argument("--hours", type=int, default=None, help="Lookback window in hours (1-168)")
    reconcile_parser.add_argument(
        "--type",
        default="manual",
        choices=["scheduled", "manual", "webhook_failure"],
        help="Run type recorded on the reconciliation log",
    )
    reconcile_parser.add_argument(
        "--per-organization",
        action="store_true",
        help="Re-apply Stripe state to each billable organization instead of sweeping",
    )
    reconcile_parser.set_defaults(func=reconcile)

    monitor_parser = subparsers.add_parser("monitor", help="Evaluate billing monitoring conditions")
    monitor_parser.set_defaults(func=monitor)

    exports_parser = subparsers.add_parser("process-exports", help="Process queued exports once")
    exports_parser.set_defaults(func=process_exports)

    init_parser = subparsers.add_parser("init-db", help="Create database tables")
    init_parser.set_defaults(func=init_database)

    return parser


def main(argv=None) -> int:
    # stdout carries the command result as JSON
    setup_logging(env=config.ENV, log_level=config.LOG_LEVEL, log_format=config.LOG_FORMAT, stream=sys.stderr)
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
