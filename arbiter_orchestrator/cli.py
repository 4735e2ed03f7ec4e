"""Operator CLI for key, job, funding and authorization management."""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, List

from .allocation import calculate_keys_needed, key_index_for_job
from .config import ProvisionerConfig
from .errors import ProvisioningError
from .logging_utils import configure_logging
from .pipeline import ProvisioningPipeline


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _load_config(args: argparse.Namespace) -> ProvisionerConfig:
    config = ProvisionerConfig.load(args.config) if args.config else ProvisionerConfig.from_env()
    updates: dict[str, Any] = {}
    if args.registry:
        updates["registry_path"] = Path(args.registry)
    configure_logging(
        args.log_file or config.logging.log_file,
        level=config.logging.level.upper(),
        verbose=args.verbose,
    )
    return config.model_copy(update=updates) if updates else config


def _pipeline(args: argparse.Namespace) -> ProvisioningPipeline:
    return ProvisioningPipeline(_load_config(args))


def command_keys_needed(args: argparse.Namespace) -> None:
    _print({"job_count": args.job_count, "keys_needed": calculate_keys_needed(args.job_count)})


def command_key_index(args: argparse.Namespace) -> None:
    _print({"job_number": args.job_number, "key_index": key_index_for_job(args.job_number)})


def command_list_keys(args: argparse.Namespace) -> None:
    pipeline = _pipeline(args)
    keys = pipeline.key_manager.list_existing_keys(pipeline.credentials)
    _print({"chain_id": pipeline.chain_id, "keys": {str(index): address for index, address in keys}})


def command_ensure_keys(args: argparse.Namespace) -> None:
    pipeline = _pipeline(args)
    result = pipeline.custody(args.job_count)
    _print(
        {
            "keys_needed": result.needed,
            "created": result.created_count,
            "keys": {str(index): address for index, address in result.keys.items()},
        }
    )


def command_configure_jobs(args: argparse.Namespace) -> None:
    pipeline = _pipeline(args)
    try:
        if args.delete_existing:
            report = pipeline.delete_jobs()
            _print({"deleted": report.deleted, "failed": report.failed})
        definitions = pipeline.provision(args.job_count, contract_address=args.operator)
    finally:
        pipeline.close()
    _print(
        {
            d.job_name: {"job_id": d.external_job_id, "from": d.from_address, "state": d.state.value}
            for d in definitions
        }
    )


def command_delete_jobs(args: argparse.Namespace) -> None:
    pipeline = _pipeline(args)
    try:
        report = pipeline.delete_jobs()
    finally:
        pipeline.close()
    _print({"deleted": report.deleted, "failed": report.failed})
    if not report.ok:
        raise SystemExit(f"{len(report.failed)} job(s) could not be deleted; remove them in the node UI")


def command_fund_keys(args: argparse.Namespace) -> None:
    pipeline = _pipeline(args)
    report = pipeline.fund(amount_eth=args.amount, dry_run=args.dry_run)
    summary = report.summary()
    summary["transactions"] = [
        {"to": tx.recipient, "hash": tx.tx_hash, "status": tx.status.value, "explorer": tx.explorer_url}
        for tx in report.transactions
    ]
    if report.dry_run:
        summary["planned_recipients"] = report.planned
    _print(summary)
    if report.failed:
        raise SystemExit(f"{report.failed} funding transaction(s) failed")


def command_authorize(args: argparse.Namespace) -> None:
    pipeline = _pipeline(args)
    result = pipeline.authorize(args.operator)
    _print(
        {
            "operator": result.operator,
            "senders": result.senders,
            "confirmed": result.confirmed,
            "timed_out": result.timed_out,
            "tx_hash": result.tx_hash,
            "remediation": result.remediation,
        }
    )


def command_run(args: argparse.Namespace) -> None:
    pipeline = _pipeline(args)
    try:
        report = pipeline.run(
            args.job_count,
            contract_address=args.operator,
            fund=not args.skip_funding,
            authorize=not args.skip_authorization,
            dry_run=args.dry_run,
        )
    finally:
        pipeline.close()
    _print(
        {
            "job_count": report.job_count,
            "keys_needed": report.keys_needed,
            "keys": {str(index): address for index, address in report.keys.items()},
            "jobs": {d.job_name: d.external_job_id for d in report.jobs},
            "funding": report.funding.summary() if report.funding else None,
            "authorization_timed_out": report.authorization.timed_out if report.authorization else None,
        }
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Provision signing keys and arbiter jobs on an oracle node.")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--registry", type=Path, help="Registry file (default: installer/.contracts)")
    parser.add_argument("--log-file", type=Path, help="Write JSON audit logs to this file")
    parser.add_argument("--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    keys_needed = subparsers.add_parser("keys-needed", help="Number of keys required for a job count")
    keys_needed.add_argument("job_count", type=int)
    keys_needed.set_defaults(func=command_keys_needed, needs_config=False)

    key_index = subparsers.add_parser("key-index", help="Key index used by a job number")
    key_index.add_argument("job_number", type=int)
    key_index.set_defaults(func=command_key_index, needs_config=False)

    list_keys = subparsers.add_parser("list-keys", help="List node keys for the configured chain")
    list_keys.set_defaults(func=command_list_keys)

    ensure_keys = subparsers.add_parser("ensure-keys", help="Create missing keys for a job count")
    ensure_keys.add_argument("job_count", type=int)
    ensure_keys.set_defaults(func=command_ensure_keys)

    configure_jobs = subparsers.add_parser("configure-jobs", help="Create or recover arbiter jobs")
    configure_jobs.add_argument("job_count", type=int, nargs="?")
    configure_jobs.add_argument("--operator", help="Operator contract address")
    configure_jobs.add_argument("--delete-existing", action="store_true", help="Delete arbiter jobs first")
    configure_jobs.set_defaults(func=command_configure_jobs)

    delete_jobs = subparsers.add_parser("delete-jobs", help="Delete arbiter jobs from the node")
    delete_jobs.set_defaults(func=command_delete_jobs)

    fund_keys = subparsers.add_parser("fund-keys", help="Fund node keys from the operator wallet")
    fund_keys.add_argument("--amount", type=Decimal, help="ETH per key (default depends on network)")
    fund_keys.add_argument("--dry-run", action="store_true")
    fund_keys.set_defaults(func=command_fund_keys)

    authorize = subparsers.add_parser("authorize", help="Set the operator's authorized senders")
    authorize.add_argument("--operator", help="Operator contract address")
    authorize.set_defaults(func=command_authorize)

    run = subparsers.add_parser("run", help="Run every stage in order")
    run.add_argument("job_count", type=int)
    run.add_argument("--operator", help="Operator contract address")
    run.add_argument("--skip-funding", action="store_true")
    run.add_argument("--skip-authorization", action="store_true")
    run.add_argument("--dry-run", action="store_true", help="Preview funding and skip authorization")
    run.set_defaults(func=command_run)

    return parser


def main(argv: List[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "needs_config", True):
        # commands that load a config configure logging from it
        configure_logging(args.log_file, verbose=args.verbose)
    try:
        args.func(args)
    except ProvisioningError as exc:
        raise SystemExit(f"error: {exc}") from exc


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main(sys.argv[1:])
