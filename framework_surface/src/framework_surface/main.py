#!/usr/bin/env python3
"""
Android Framework Attack-Surface Analyzer
-----------------------------------------
Indexes Java sources of a framework service tree with Tree-sitter and:
- finds entry points reachable by untrusted callers (published Binder
  services and their AIDL methods, receivers registered without a
  permission, or Binder subclasses as a fallback)
- builds a call graph from those entry points
- dumps every call chain from an entry point to each return it reaches

USAGE EXAMPLES
--------------
# 1) Analyze a services tree, resolving types against framework sources:
framework-surface frameworks/base/services --lib frameworks/base/core/java

# 2) Load heuristics and outputs from a JSON config, quieter console:
framework-surface services/ --config surface.json --no-console --log-level WARNING

DEPENDENCIES
------------
    pip install tree-sitter tree-sitter-java
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

from framework_surface.src.framework_surface.analysis import run_analysis
from framework_surface.src.framework_surface.config import AnalysisConfig
from framework_surface.src.framework_surface.errors import NoEntryPointsError
from framework_surface.src.framework_surface.logging_utils import parse_level, setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="framework-surface",
        description="Find untrusted entry points in Android framework sources and dump their call paths.",
    )
    parser.add_argument("app_roots", nargs="+", metavar="APP_ROOT",
                        help="Source directory scanned for entry points")
    parser.add_argument("--lib", action="append", default=[], metavar="DIR",
                        help="Source directory used for type resolution only (repeatable)")
    parser.add_argument("--config", metavar="FILE", help="JSON analysis config")
    parser.add_argument("--paths-out", metavar="FILE", help="Where to write full path traces")
    parser.add_argument("--callgraph-out", metavar="FILE", help="Where to write the plain call graph")
    parser.add_argument("--index-json", metavar="FILE", help="Also write the program index as JSON")
    parser.add_argument("--no-console", action="store_true",
                        help="Do not print the index summary and shortened traces")
    parser.add_argument("--log-level", metavar="LEVEL", help="Logging level (default: INFO)")
    parser.add_argument("--log-file", metavar="FILE", help="Also log to a rotating file")
    return parser


def config_from_args(args: argparse.Namespace) -> AnalysisConfig:
    """Config file values first, then command-line overrides."""
    config = AnalysisConfig.from_file(args.config) if args.config else AnalysisConfig()
    config.app_roots = list(args.app_roots)
    if args.lib:
        config.library_roots = list(args.lib)
    if args.paths_out:
        config.paths_file = args.paths_out
    if args.callgraph_out:
        config.callgraph_file = args.callgraph_out
    if args.index_json:
        config.index_json_file = args.index_json
    if args.no_console:
        config.console_summary = False
    if args.log_level:
        config.log_level = args.log_level
    if args.log_file:
        config.log_file = args.log_file
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args)
        level = parse_level(config.log_level)
    except (OSError, ValueError) as e:
        parser.error(str(e))

    setup_logging(level, config.log_file)

    try:
        result = run_analysis(config)
    except NoEntryPointsError as e:
        logger.critical("%s", e)
        return 1

    logger.info("Done: %d entry points, %d traces, %d diagnostics",
                len(result.entry_points), result.trace_count, len(result.diagnostics))
    return 0


if __name__ == "__main__":
    sys.exit(main())
