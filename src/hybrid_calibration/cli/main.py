# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command-line interface for alpha calibration.

Subcommands:
    sweep    Sweep alpha over every test case of a ground-truth file
    analyze  Show base and auto-tuned alpha for a query (no network I/O)
    report   Show the current alpha configuration

Usage:
    hybrid-calibration sweep --ground-truth ground_truth.json
    hybrid-calibration analyze "JWT token expiry bug" --data-type error
    hybrid-calibration report

Ground-truth format:
    {"test_cases": [{"query": "...", "relevant_ids": ["..."], "data_type": "error"}]}
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ..config import ConfigurationError, settings
from ..models.calibration import CalibrationReport
from ..services.calibration_service import DEFAULT_ALPHA_VALUES, CalibrationService, describe_configuration
from ..services.hybrid_search import RetrievalError
from ..utils.metrics import mean
from ..web.dependencies import close_service_providers, create_alpha_policy, create_calibration_service

logger = logging.getLogger(__name__)

METRIC_KEYS = ("mrr", "precision_at_5", "recall_at_10", "ndcg")


def load_ground_truth(path: Path) -> list[dict[str, Any]]:
    """
    Load and check test cases from a ground-truth JSON file.

    Raises:
        ValueError: If the file has no test cases or a case lacks query/relevant_ids
    """
    with open(path) as f:
        data = json.load(f)

    test_cases = data.get("test_cases") if isinstance(data, dict) else None
    if not test_cases:
        raise ValueError(f"{path}: no test_cases found")

    for i, case in enumerate(test_cases):
        if not isinstance(case, dict) or not case.get("query"):
            raise ValueError(f"{path}: test case {i} is missing 'query'")
        if not case.get("relevant_ids"):
            raise ValueError(f"{path}: test case {i} is missing 'relevant_ids'")
    return test_cases


def aggregate_sweeps(reports: Sequence[CalibrationReport], alphas: Sequence[float]) -> list[dict[str, float]]:
    """Mean metrics per grid alpha across all sweeps. Extra default-alpha rows are ignored."""
    rows = []
    for alpha in alphas:
        matching = [row for report in reports for row in report.results if abs(row.alpha - alpha) < 1e-9]
        aggregated = {"alpha": alpha}
        for key in METRIC_KEYS:
            aggregated[key] = mean([getattr(row, key) for row in matching])
        rows.append(aggregated)
    return rows


def select_optimal(rows: Sequence[dict[str, float]]) -> dict[str, float]:
    """Row with the highest mean MRR; ties go to the lowest alpha."""
    return min(rows, key=lambda row: (-row["mrr"], row["alpha"]))


def format_table(rows: Sequence[dict[str, float]], optimal: dict[str, float]) -> str:
    """Markdown results table followed by the optimal alpha."""
    lines = [
        "| Alpha | MRR | P@5 | R@10 | NDCG@10 |",
        "|-------|-----|-----|------|---------|",
    ]
    for row in rows:
        marker = " **" if row is optimal else ""
        lines.append(
            f"| {row['alpha']:.2f}{marker} | {row['mrr']:.3f} | {row['precision_at_5']:.3f} "
            f"| {row['recall_at_10']:.3f} | {row['ndcg']:.3f} |"
        )
    lines.append("")
    lines.append(f"**Optimal Alpha: {optimal['alpha']:.2f}** (MRR: {optimal['mrr']:.3f})")
    return "\n".join(lines)


async def run_sweeps(
    service: CalibrationService,
    test_cases: Sequence[dict[str, Any]],
    alphas: Sequence[float],
    top_k: int | None = None,
) -> list[CalibrationReport]:
    """Sweep every test case in order."""
    reports = []
    for i, case in enumerate(test_cases, start=1):
        logger.info(f"Test case {i}/{len(test_cases)}: {case['query'][:60]}")
        report = await service.sweep(
            case["query"],
            case["relevant_ids"],
            data_type=case.get("data_type"),
            alpha_values=alphas,
            top_k=top_k,
        )
        reports.append(report)
    return reports


async def _sweep_with_service(service: CalibrationService, test_cases, alphas, top_k) -> list[CalibrationReport]:
    try:
        return await run_sweeps(service, test_cases, alphas, top_k)
    finally:
        await close_service_providers(service)


def cmd_sweep(args: argparse.Namespace) -> int:
    test_cases = load_ground_truth(Path(args.ground_truth))
    alphas = list(args.alpha) if args.alpha else list(DEFAULT_ALPHA_VALUES)

    service = create_calibration_service(settings.get())
    reports = asyncio.run(_sweep_with_service(service, test_cases, alphas, args.top_k))

    rows = aggregate_sweeps(reports, alphas)
    optimal = select_optimal(rows)

    if args.format == "json":
        print(json.dumps({"test_cases": len(reports), "results": rows, "optimal_alpha": optimal["alpha"]}, indent=2))
    else:
        print(f"Hybrid Search Alpha Sweep ({len(reports)} test cases)")
        print()
        print(format_table(rows, optimal))
    return 0


def cmd_analyze(args: argparse.Namespace) -> int:
    policy = create_alpha_policy(settings.get())
    analysis = policy.analyze(args.query, args.data_type)
    print(
        json.dumps(
            {
                "query": analysis.query,
                "data_type": analysis.data_type,
                "base_alpha": analysis.base_alpha,
                "auto_tuned_alpha": analysis.auto_tuned_alpha,
                "auto_tune_triggered": analysis.auto_tune_triggered,
                "analysis": analysis.analysis.to_dict(),
                "factors": analysis.factors,
            },
            indent=2,
        )
    )
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    policy = create_alpha_policy(settings.get())
    print(json.dumps(describe_configuration(policy.config), indent=2))
    return 0


def _alpha(value: str) -> float:
    alpha = float(value)
    if not 0.0 <= alpha <= 1.0:
        raise argparse.ArgumentTypeError(f"alpha must be between 0 and 1, got {value}")
    return alpha


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hybrid-calibration",
        description="Calibrate the dense/sparse blend weight of hybrid search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep = subparsers.add_parser("sweep", help="Sweep alpha over a ground-truth file")
    sweep.add_argument("--ground-truth", required=True, help="Path to ground-truth JSON file")
    sweep.add_argument("--alpha", type=_alpha, nargs="+", help="Alpha values to test (default: 0.0 to 1.0 step 0.1)")
    sweep.add_argument("--top-k", type=int, default=None, help="Candidates per query (default: from settings)")
    sweep.add_argument("--format", choices=["table", "json"], default="table", help="Output format")
    sweep.set_defaults(func=cmd_sweep)

    analyze = subparsers.add_parser("analyze", help="Show auto-tune analysis for a query")
    analyze.add_argument("query", help="Query text")
    analyze.add_argument("--data-type", default=None, help="Data type for the base alpha")
    analyze.set_defaults(func=cmd_analyze)

    report = subparsers.add_parser("report", help="Show the current alpha configuration")
    report.set_defaults(func=cmd_report)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return args.func(args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except RetrievalError as e:
        logger.error(f"Sweep failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
