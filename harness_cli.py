#!/usr/bin/env python3
"""
Model Harness CLI

Validate a running model-serving service end to end.

Usage:
    python harness_cli.py run [--config testdata/harness.yaml] [--kind generate]
    python harness_cli.py run --capacity-budget 8000000000 --output report.json
    python harness_cli.py list-cases [--kind embed]

Exit codes: 0 when no case failed, 1 when any case failed, 2 on fatal errors.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from model_harness.cases import declare_cases
from model_harness.config import HarnessConfig, resolve_config
from model_harness.errors import FATAL_ERRORS
from model_harness.harness import load_references, run_harness
from model_harness.runner import CaseOutcome, RunReport
from model_harness.structured_logger import setup_structured_logging

logger = logging.getLogger("harness_cli")

KIND_CHOICES = {
    "generate": ("generate",),
    "embed": ("embed",),
    "all": ("generate", "embed"),
}

OUTCOME_LABELS = {
    CaseOutcome.PASSED: "PASS",
    CaseOutcome.FAILED: "FAIL",
    CaseOutcome.SKIPPED_TIMEOUT: "SKIP (timeout)",
    CaseOutcome.SKIPPED_RESOURCE: "SKIP (resources)",
}


def build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for the harness."""
    parser = argparse.ArgumentParser(description="Validate a model-serving service")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--log-format", choices=["text", "json"], default="text")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the validation cases")
    _add_case_arguments(run_parser)
    run_parser.add_argument("--url", help="Service base URL")
    run_parser.add_argument("--capacity-budget", type=int, help="VRAM budget in bytes")
    run_parser.add_argument("--soft-timeout", type=float, help="Stop starting cases after N seconds")
    run_parser.add_argument("--hard-timeout", type=float, help="Cancel the run after N seconds")
    run_parser.add_argument("--run-budget", type=float, help="Overall run budget in seconds")
    run_parser.add_argument("--concurrency", type=int, help="Cases to run at once")
    run_parser.add_argument(
        "--start-server", action="store_true", default=None,
        help="Start the server if none is reachable",
    )
    run_parser.add_argument("--output", help="Write a JSON report to this file")

    list_parser = subparsers.add_parser("list-cases", help="List declared cases")
    _add_case_arguments(list_parser)
    return parser


def _add_case_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--kind", choices=sorted(KIND_CHOICES), default="all")
    parser.add_argument(
        "--model", action="append", dest="models",
        help="Only run cases for this model (repeatable)",
    )
    parser.add_argument("--engine-variant", choices=["ollama", "all"])
    parser.add_argument("--reference-vectors", help="JSON file of reference embeddings")


def build_config(args: argparse.Namespace) -> HarnessConfig:
    config = resolve_config(args.config)
    return config.replace(
        base_url=getattr(args, "url", None),
        capacity_budget_bytes=getattr(args, "capacity_budget", None),
        engine_variant=args.engine_variant,
        soft_timeout_seconds=getattr(args, "soft_timeout", None),
        hard_timeout_seconds=getattr(args, "hard_timeout", None),
        run_budget_seconds=getattr(args, "run_budget", None),
        concurrency=getattr(args, "concurrency", None),
        reference_vectors_path=args.reference_vectors,
        start_server=getattr(args, "start_server", None),
    )


def print_report(report: RunReport) -> None:
    """Print formatted run report."""
    summary = report.summary()

    print("\n" + "=" * 80)
    print("MODEL HARNESS REPORT")
    print("=" * 80)

    print("\nCases:")
    for result in report.results:
        label = OUTCOME_LABELS[result.outcome]
        print(f"  [{label:<16}] {result.case_id} ({result.duration_ms / 1000:.1f}s)")
        if result.detail and result.outcome != CaseOutcome.PASSED:
            print(f"      {result.detail}")

    print("\nSummary:")
    print(f"  Total:               {summary['total']}")
    print(f"  Passed:              {summary[CaseOutcome.PASSED.value]}")
    print(f"  Failed:              {summary[CaseOutcome.FAILED.value]}")
    print(f"  Skipped (timeout):   {summary[CaseOutcome.SKIPPED_TIMEOUT.value]}")
    print(f"  Skipped (resources): {summary[CaseOutcome.SKIPPED_RESOURCE.value]}")
    print(f"  Duration:            {report.duration_seconds:.2f}s")
    if report.hard_deadline_exceeded:
        print("  Hard deadline exceeded: run was cancelled")

    print("\n" + "=" * 80 + "\n")


def save_report(report: RunReport, filename: str) -> None:
    with open(filename, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2)
    print(f"Report saved to: {filename}")


def _model_filter(models: Optional[List[str]]):
    if not models:
        return None
    wanted = set(models)
    return lambda model: model in wanted


def list_cases(args: argparse.Namespace) -> int:
    config = build_config(args)
    kinds = KIND_CHOICES[args.kind]
    references = load_references(config) if "embed" in kinds else None
    accept = _model_filter(args.models)
    for case in declare_cases(config, references, kinds=kinds):
        if accept is None or accept(case.model):
            print(case.case_id)
    return 0


def run(args: argparse.Namespace) -> int:
    config = build_config(args)
    report = asyncio.run(
        run_harness(
            config,
            kinds=KIND_CHOICES[args.kind],
            model_filter=_model_filter(args.models),
        )
    )
    print_report(report)
    if args.output:
        save_report(report, args.output)
    return 0 if report.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Parse args and run the harness."""
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else list(argv)
    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args(argv + ["run"])

    setup_structured_logging(
        "model-harness",
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_output=args.log_format == "json",
    )

    try:
        if args.command == "list-cases":
            return list_cases(args)
        return run(args)
    except FATAL_ERRORS as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
