"""
The analysis pipeline:

    load sources -> identify entry points -> build call graph
    -> extract paths -> report

`run_analysis` drives it from an AnalysisConfig. `analyze_program` runs the
core stages against an already loaded program, which is what tests use.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from framework_surface.src.framework_surface.callgraph import ClassHierarchyCallGraphProvider, JavaCallGraph
from framework_surface.src.framework_surface.config import AnalysisConfig
from framework_surface.src.framework_surface.entry_points import EntryPointIdentifier
from framework_surface.src.framework_surface.indexer import JavaIndexer
from framework_surface.src.framework_surface.inputs.directory_scanning import index_directory
from framework_surface.src.framework_surface.models.analysis_models import Diagnostic
from framework_surface.src.framework_surface.models.program_models import JavaMethod
from framework_surface.src.framework_surface.outputs.output import (
    ConsoleTraceSink,
    FileTraceSink,
    MultiTraceSink,
    dump_call_graph_plain,
    print_summary,
    to_json,
)
from framework_surface.src.framework_surface.path_extractor import PathExtractor
from framework_surface.src.framework_surface.program import JavaProgram
from framework_surface.src.framework_surface.providers import TraceSink

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    program: JavaProgram
    entry_points: list[JavaMethod] = field(default_factory=list)
    graph: Optional[JavaCallGraph] = None
    trace_count: int = 0
    diagnostics: list[Diagnostic] = field(default_factory=list)
    used_fallback: bool = False


def load_program(config: AnalysisConfig, indexer: Optional[JavaIndexer] = None) -> JavaProgram:
    """Indexes the application and library roots into one program."""
    indexer = indexer or JavaIndexer()
    for root in config.app_roots:
        index_directory(indexer, root, application=True)
    if not config.library_roots:
        logger.warning("No library roots given. Type resolution might be incomplete.")
    for root in config.library_roots:
        logger.info("Including %s in analysis for better type resolution.", root)
        index_directory(indexer, root, application=False)
    return indexer.build_program()


def analyze_program(program: JavaProgram, config: AnalysisConfig, sink: TraceSink) -> AnalysisResult:
    """
    Identifies entry points, builds the call graph from them and streams
    every path into `sink`. Raises NoEntryPointsError before any graph work
    when no entry point is found.
    """
    result = _identify(program, config)
    _extract(result, sink)
    return result


def run_analysis(config: AnalysisConfig) -> AnalysisResult:
    """Full run: load, analyse and write every configured output."""
    program = load_program(config)

    if config.console_summary:
        print_summary(program)
    if config.index_json_file:
        _write_text(config.index_json_file, to_json(program))

    # Output files are only created once there is something to trace.
    result = _identify(program, config)
    sink = _open_sinks(config)
    try:
        _extract(result, sink)
    finally:
        sink.close()

    if config.callgraph_file:
        dump_call_graph_plain(result.graph, program, config.callgraph_file)
    return result


def _identify(program: JavaProgram, config: AnalysisConfig) -> AnalysisResult:
    identifier = EntryPointIdentifier(program, config)
    result = AnalysisResult(program)
    try:
        result.entry_points = identifier.identify()
    finally:
        result.diagnostics = identifier.diagnostics
        result.used_fallback = identifier.used_fallback
    return result


def _extract(result: AnalysisResult, sink: TraceSink):
    logger.info("Building Call Graph for %d entry points...", len(result.entry_points))
    provider = ClassHierarchyCallGraphProvider(result.program)
    result.graph = provider.build(result.entry_points)

    logger.info("Starting Path Extraction...")
    extractor = PathExtractor(result.program, result.graph)
    result.trace_count = extractor.extract_all(result.entry_points, sink)


def _open_sinks(config: AnalysisConfig) -> MultiTraceSink:
    sinks: list[TraceSink] = []
    if config.console_summary:
        sinks.append(ConsoleTraceSink())
    if config.paths_file:
        try:
            sinks.append(FileTraceSink(config.paths_file))
        except OSError as e:
            logger.error("Failed to open %s for writing: %s", config.paths_file, e)
    return MultiTraceSink(*sinks)


def _write_text(path: str, text: str):
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        logger.error("Failed to write %s: %s", path, e)
    else:
        logger.info("Index written to %s", path)
