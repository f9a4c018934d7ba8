# src/hrrp/cli.py
"""Command-line interface for the analysis pipeline.

Usage:
    python -m hrrp analyze --hospitals hospitals.csv --readmissions hrrp.csv
    python -m hrrp analyze --hospitals h.json --readmissions r.json \\
        --config my.yaml --override analysis.alpha=0.01 -o results/
    python -m hrrp config --override join.excluded_state=null
"""

import argparse
import logging
import sys
from typing import List, Optional

from omegaconf import OmegaConf

from .config import load_config, validate_config
from .errors import HRRPError
from .pipeline import run_from_config
from .report import format_report

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def _effective_config(args: argparse.Namespace):
    overrides = list(args.override or [])
    if getattr(args, "hospitals", None):
        overrides.append(f"paths.hospitals={args.hospitals}")
    if getattr(args, "readmissions", None):
        overrides.append(f"paths.readmissions={args.readmissions}")
    if getattr(args, "output", None):
        overrides.append(f"paths.output_dir={args.output}")
    cfg = load_config(args.config, overrides=overrides)
    validate_config(cfg)
    return cfg


def cmd_analyze(args: argparse.Namespace) -> int:
    """Run the full pipeline and print the report."""
    try:
        cfg = _effective_config(args)
        output = run_from_config(cfg)

        print(format_report(output["result"]))
        print("\n" + "=" * 60)
        print("ANALYSIS COMPLETE")
        print("=" * 60)
        print(f"Output directory: {output['output_dir']}")
        print(f"Files written: {len(output['files'])}")
        return 0

    except (HRRPError, FileNotFoundError, ValueError) as e:
        logger.error(f"Analysis failed: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Print the effective configuration as YAML."""
    try:
        cfg = _effective_config(args)
    except (HRRPError, FileNotFoundError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    print(OmegaConf.to_yaml(cfg))
    return 0


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="YAML config merged over the built-in defaults",
    )
    parser.add_argument(
        "--override",
        nargs="+",
        default=None,
        metavar="KEY=VALUE",
        help="Config overrides, e.g. analysis.alpha=0.01",
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        prog="hrrp",
        description="Hospital Readmissions Reduction Program analysis pipeline",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # analyze command
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Normalize, join and analyze the two CMS exports",
    )
    analyze_parser.add_argument(
        "--hospitals",
        default=None,
        help="Hospital General Information export (CSV, JSON or YAML)",
    )
    analyze_parser.add_argument(
        "--readmissions",
        default=None,
        help="Hospital Readmissions Reduction Program export",
    )
    analyze_parser.add_argument(
        "-o", "--output",
        default=None,
        help="Output directory (default: paths.output_dir)",
    )
    _add_config_arguments(analyze_parser)

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Print the effective configuration",
    )
    _add_config_arguments(config_parser)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    # Dispatch to command handler
    if args.command == "analyze":
        return cmd_analyze(args)
    elif args.command == "config":
        return cmd_config(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
