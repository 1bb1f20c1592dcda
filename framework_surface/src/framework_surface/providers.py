"""
Abstract seams between the analysis core and its collaborators.

The entry-point identifier and the path extractor only talk to these
interfaces. `JavaProgram` (program.py) and `ClassHierarchyCallGraphProvider`
(callgraph.py) are the implementations shipped with the tool; a bytecode
loader or a points-to call graph can be plugged in behind the same methods.
"""
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, Optional

from framework_surface.src.framework_surface.models.analysis_models import CallEdge, PathTrace
from framework_surface.src.framework_surface.models.program_models import (
    CallSite,
    Instruction,
    JavaMethod,
    JavaType,
)


class ProgramModel(ABC):
    """Read-only view of the loaded program."""

    @abstractmethod
    def list_application_types(self) -> list[JavaType]:
        """Types declared by the analysed application, in load order."""

    @abstractmethod
    def methods_of(self, java_type: JavaType) -> list[JavaMethod]:
        ...

    @abstractmethod
    def instructions_of(self, method: JavaMethod) -> tuple[Instruction, ...]:
        """The method body; empty for abstract, native and external methods."""

    @abstractmethod
    def resolve_type(self, name: Optional[str]) -> Optional[JavaType]:
        """
        Looks a reference type up by binary name. Names that were referenced
        but never declared come back as phantom types; primitives, arrays and
        None are unresolved.
        """

    @abstractmethod
    def declared_method(self, java_type: JavaType, subsignature: str) -> Optional[JavaMethod]:
        """The method with this sub-signature declared directly on `java_type`."""

    @abstractmethod
    def superclass_chain(self, java_type: JavaType) -> Iterator[JavaType]:
        """`java_type` followed by its superclasses, nearest first."""

    # Hierarchy queries shared by every model, built on the methods above.

    def is_application_type(self, name: Optional[str]) -> bool:
        """Whether `name` is an application type. Never creates a phantom."""
        return any(t.name == name for t in self.list_application_types())

    def is_subclass_of(self, java_type: JavaType, root_name: str) -> bool:
        return any(t.name == root_name for t in self.superclass_chain(java_type))

    def interface_closure(self, java_type: JavaType) -> list[JavaType]:
        """
        Interfaces declared by the type and by every class on its superclass
        chain, unioned in declaration order. Super-interfaces of those
        interfaces are not expanded.
        """
        closure: dict[str, JavaType] = {}
        for owner in self.superclass_chain(java_type):
            for name in owner.interfaces:
                if name not in closure:
                    iface = self.resolve_type(name)
                    if iface is not None:
                        closure[name] = iface
        return list(closure.values())

    def extends_interface(self, iface: JavaType, marker: str) -> bool:
        """True if `iface` is `marker` or reaches it through its extended interfaces."""
        seen = set()
        stack = [iface]
        while stack:
            current = stack.pop()
            if current.name == marker:
                return True
            if current.name in seen:
                continue
            seen.add(current.name)
            for parent_name in current.interfaces:
                if parent_name not in seen:
                    parent = self.resolve_type(parent_name)
                    if parent is not None:
                        stack.append(parent)
        return False

    def find_implementation(self, java_type: JavaType, subsignature: str) -> Optional[JavaMethod]:
        """The nearest concrete declaration of `subsignature` on the superclass chain."""
        for owner in self.superclass_chain(java_type):
            method = self.declared_method(owner, subsignature)
            if method is not None and not method.is_abstract:
                return method
        return None


class CallGraph(ABC):
    """Edges are owned by the graph and never change after `build`."""

    @abstractmethod
    def edges_from(self, call_site: CallSite) -> list[CallEdge]:
        ...

    @abstractmethod
    def edges(self) -> Iterator[CallEdge]:
        ...

    @abstractmethod
    def method(self, signature: str) -> Optional[JavaMethod]:
        """A method the graph reached, by signature."""


class CallGraphProvider(ABC):

    @abstractmethod
    def build(self, entry_methods: Iterable[JavaMethod]) -> CallGraph:
        """Builds a graph containing only what is reachable from `entry_methods`."""


class TraceSink(ABC):
    """Receives completed path traces one at a time."""

    @abstractmethod
    def emit(self, trace: PathTrace) -> None:
        ...

    def close(self) -> None:
        pass
