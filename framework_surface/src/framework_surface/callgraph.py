"""
Call graph construction by class hierarchy analysis (CHA).

A virtual call is resolved to every concrete implementation of the declared
target found on the receiver's static type and its subtypes. Only methods
reachable from the entry methods are expanded, so every edge starts in a
method some entry can reach.
"""
import logging
from collections import deque
from typing import Iterable, Iterator, Optional

from framework_surface.src.framework_surface.models.analysis_models import CallEdge
from framework_surface.src.framework_surface.models.program_models import CallSite, JavaMethod
from framework_surface.src.framework_surface.program import JavaProgram
from framework_surface.src.framework_surface.providers import CallGraph, CallGraphProvider

logger = logging.getLogger(__name__)


class JavaCallGraph(CallGraph):

    def __init__(self):
        self._edges: dict[CallSite, list[CallEdge]] = {}
        self._reachable: dict[str, JavaMethod] = {}

    def add_edge(self, call_site: CallSite, target: JavaMethod):
        targets = self._edges.setdefault(call_site, [])
        if all(edge.target != target for edge in targets):
            targets.append(CallEdge(call_site, target))

    def mark_reachable(self, method: JavaMethod):
        self._reachable.setdefault(method.signature, method)

    def edges_from(self, call_site: CallSite) -> list[CallEdge]:
        return list(self._edges.get(call_site, ()))

    def edges(self) -> Iterator[CallEdge]:
        for targets in self._edges.values():
            yield from targets

    def method(self, signature: str) -> Optional[JavaMethod]:
        return self._reachable.get(signature)

    def reachable_methods(self) -> list[JavaMethod]:
        return list(self._reachable.values())

    def is_reachable(self, method: JavaMethod) -> bool:
        return method.signature in self._reachable

    def __len__(self):
        return sum(len(targets) for targets in self._edges.values())


class ClassHierarchyCallGraphProvider(CallGraphProvider):

    def __init__(self, program: JavaProgram):
        self.program = program

    def build(self, entry_methods: Iterable[JavaMethod]) -> JavaCallGraph:
        graph = JavaCallGraph()
        queue = deque(entry_methods)
        while queue:
            method = queue.popleft()
            if graph.is_reachable(method):
                continue
            graph.mark_reachable(method)
            for instruction in self.program.instructions_of(method):
                for call_site in instruction.call_sites:
                    for target in self.resolve_targets(call_site):
                        graph.add_edge(call_site, target)
                        if not graph.is_reachable(target):
                            queue.append(target)

        logger.info("Call graph: %d edges over %d reachable methods",
                    len(graph), len(graph.reachable_methods()))
        return graph

    def resolve_targets(self, call_site: CallSite) -> list[JavaMethod]:
        """Possible runtime targets of a call site; empty when its declared target is unknown."""
        declared = self.program.method(call_site.target)
        if declared is None:
            return []
        if call_site.kind in ("static", "special") or declared.is_static:
            return [declared]

        receiver = call_site.receiver_type or declared.declaring_type
        targets: list[JavaMethod] = []
        for type_name in [receiver] + self.program.subtypes_of(receiver):
            java_type = self.program.get_type(type_name)
            if java_type is None or java_type.is_interface or java_type.is_abstract:
                continue
            implementation = self.program.find_implementation(java_type, declared.subsignature)
            if implementation is not None and implementation not in targets:
                targets.append(implementation)
        return targets or [declared]
