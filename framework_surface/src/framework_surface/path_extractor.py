"""
Path extraction.

Walks the call graph depth-first from an entry method, splicing each
callee's instructions into the caller's trace at the call, and emits the
accumulated trace at every return instruction it reaches, nested ones
included. A method already open on the current path is not entered again,
so every trace is acyclic. Only edges into application code are followed.

The walk keeps its own frame stack instead of recursing, so call chains
deeper than Python's recursion limit are fine.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from framework_surface.src.framework_surface.models.analysis_models import PathTrace
from framework_surface.src.framework_surface.models.program_models import Instruction, JavaMethod
from framework_surface.src.framework_surface.providers import CallGraph, ProgramModel, TraceSink

logger = logging.getLogger(__name__)


@dataclass
class _Frame:
    method: JavaMethod
    instructions: tuple[Instruction, ...]
    saved_length: int  # trace length when the frame was entered
    index: int = 0
    pending: Optional[Iterator[JavaMethod]] = None  # callees of the current instruction still to visit


class PathExtractor:

    def __init__(self, program: ProgramModel, graph: CallGraph):
        self.program = program
        self.graph = graph

    def extract(self, entry: JavaMethod, sink: TraceSink) -> int:
        """Streams every trace reachable from `entry` into `sink`; returns how many were emitted."""
        trace: list[str] = []
        open_methods: set[str] = set()
        stack: list[_Frame] = []
        emitted = 0

        frame = self._enter(entry, trace, open_methods)
        if frame is not None:
            stack.append(frame)

        while stack:
            frame = stack[-1]

            if frame.pending is not None:
                callee = next(frame.pending, None)
                if callee is not None:
                    child = self._enter(callee, trace, open_methods)
                    if child is not None:
                        stack.append(child)
                    continue
                frame.pending = None
                if frame.instructions[frame.index].is_return:
                    emitted += self._emit(sink, entry, frame.method, trace)
                frame.index += 1
                continue

            if frame.index >= len(frame.instructions):
                stack.pop()
                open_methods.discard(frame.method.signature)
                del trace[frame.saved_length:]
                continue

            instruction = frame.instructions[frame.index]
            trace.append(instruction.text)
            if instruction.is_call:
                frame.pending = self._callees(instruction)
                continue
            if instruction.is_return:
                emitted += self._emit(sink, entry, frame.method, trace)
            frame.index += 1

        logger.debug("%s: %d traces", entry.signature, emitted)
        return emitted

    def extract_all(self, entries: Iterable[JavaMethod], sink: TraceSink) -> int:
        total = 0
        for entry in entries:
            total += self.extract(entry, sink)
        logger.info("Extracted %d traces", total)
        return total

    def _enter(self, method: JavaMethod, trace: list[str], open_methods: set[str]) -> Optional[_Frame]:
        if method.signature in open_methods:
            return None  # cycle on the current path
        instructions = self.program.instructions_of(method)
        if not instructions:
            return None  # abstract, native or external: leaf
        open_methods.add(method.signature)
        return _Frame(method, tuple(instructions), len(trace))

    def _callees(self, instruction: Instruction) -> Iterator[JavaMethod]:
        for call_site in instruction.call_sites:
            for edge in self.graph.edges_from(call_site):
                if self._is_application(edge.target):
                    yield edge.target

    def _is_application(self, method: JavaMethod) -> bool:
        return self.program.is_application_type(method.declaring_type)

    @staticmethod
    def _emit(sink: TraceSink, entry: JavaMethod, terminus: JavaMethod, trace: list[str]) -> int:
        sink.emit(PathTrace(entry, terminus, tuple(trace)))
        return 1
