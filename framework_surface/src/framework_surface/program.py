"""
In-memory program model: types, methods and the hierarchy queries the
analysis needs. Every walk over the type hierarchy is iterative and keeps a
visited set, so cyclic or very deep hierarchies from broken inputs still
terminate.
"""
import logging
from collections import deque
from typing import Iterable, Iterator, Optional

from framework_surface.src.framework_surface.models.program_models import (
    Instruction,
    JavaMethod,
    JavaType,
    is_reference_type,
)
from framework_surface.src.framework_surface.providers import ProgramModel

logger = logging.getLogger(__name__)


class JavaProgram(ProgramModel):

    def __init__(self, types: Iterable[JavaType] = ()):
        self.types: dict[str, JavaType] = {}  # binary name -> declared type
        self._phantoms: dict[str, JavaType] = {}
        self._methods: dict[str, JavaMethod] = {}  # signature -> method
        self._subtypes: Optional[dict[str, list[str]]] = None
        for java_type in types:
            self.add_type(java_type)

    def add_type(self, java_type: JavaType):
        if java_type.name in self.types:
            logger.debug("Duplicate declaration of %s ignored", java_type.name)
            return
        self.types[java_type.name] = java_type
        self._phantoms.pop(java_type.name, None)
        for method in java_type.methods:
            self._methods.setdefault(method.signature, method)
        self._subtypes = None

    # -- ProgramModel ----------------------------------------------------------

    def list_application_types(self) -> list[JavaType]:
        return [t for t in self.types.values() if t.is_application]

    def methods_of(self, java_type: JavaType) -> list[JavaMethod]:
        return list(java_type.methods)

    def instructions_of(self, method: JavaMethod) -> tuple[Instruction, ...]:
        return method.instructions if method.has_body else ()

    def resolve_type(self, name: Optional[str]) -> Optional[JavaType]:
        if not is_reference_type(name):
            return None
        java_type = self.types.get(name)
        if java_type is not None:
            return java_type
        phantom = self._phantoms.get(name)
        if phantom is None:
            phantom = JavaType(name=name, is_phantom=True)
            self._phantoms[name] = phantom
        return phantom

    def declared_method(self, java_type: JavaType, subsignature: str) -> Optional[JavaMethod]:
        for method in java_type.methods:
            if method.subsignature == subsignature:
                return method
        return None

    def superclass_chain(self, java_type: JavaType) -> Iterator[JavaType]:
        seen = set()
        current = java_type
        while current is not None and current.name not in seen:
            seen.add(current.name)
            yield current
            current = self.resolve_type(current.superclass) if current.superclass else None

    # -- Lookups ---------------------------------------------------------------

    def get_type(self, name: Optional[str]) -> Optional[JavaType]:
        """Declared types only; never creates a phantom."""
        return self.types.get(name) if name else None

    def is_application_type(self, name: Optional[str]) -> bool:
        java_type = self.get_type(name)
        return java_type is not None and java_type.is_application

    def method(self, signature: str) -> Optional[JavaMethod]:
        return self._methods.get(signature)

    def all_methods(self) -> Iterator[JavaMethod]:
        for java_type in self.types.values():
            yield from java_type.methods

    def all_supertypes(self, java_type: JavaType) -> Iterator[JavaType]:
        """Breadth-first over superclasses and interfaces, starting with `java_type`."""
        seen = {java_type.name}
        queue = deque([java_type])
        while queue:
            current = queue.popleft()
            yield current
            parents = ([current.superclass] if current.superclass else []) + list(current.interfaces)
            for parent_name in parents:
                if parent_name in seen:
                    continue
                seen.add(parent_name)
                parent = self.resolve_type(parent_name)
                if parent is not None:
                    queue.append(parent)

    def field_type(self, type_name: Optional[str], field_name: str) -> Optional[str]:
        java_type = self.resolve_type(type_name)
        if java_type is None:
            return None
        for owner in self.all_supertypes(java_type):
            if field_name in owner.fields:
                return owner.fields[field_name]
        return None

    def find_method(self, type_name: Optional[str], name: str,
                    arg_types: list[Optional[str]]) -> Optional[JavaMethod]:
        """
        Resolves a call by name and arity against the receiver type and its
        supertypes; among overloads, the one whose parameter types match the
        most known argument types wins.
        """
        java_type = self.resolve_type(type_name)
        if java_type is None:
            return None
        for owner in self.all_supertypes(java_type):
            candidates = [m for m in owner.methods
                          if m.name == name and _accepts_arity(m, len(arg_types))]
            if not candidates:
                continue
            return max(candidates, key=lambda m: _match_score(m, arg_types))
        return None

    def subtypes_of(self, type_name: str) -> list[str]:
        """Transitive subtypes (classes and interfaces) of a type, excluding itself."""
        index = self._subtype_index()
        result = []
        seen = {type_name}
        queue = deque([type_name])
        while queue:
            for child in index.get(queue.popleft(), ()):
                if child not in seen:
                    seen.add(child)
                    result.append(child)
                    queue.append(child)
        return result

    def _subtype_index(self) -> dict[str, list[str]]:
        if self._subtypes is None:
            index: dict[str, list[str]] = {}
            for java_type in self.types.values():
                parents = ([java_type.superclass] if java_type.superclass else []) + list(java_type.interfaces)
                for parent in parents:
                    index.setdefault(parent, []).append(java_type.name)
            self._subtypes = index
        return self._subtypes


def _accepts_arity(method: JavaMethod, count: int) -> bool:
    if method.is_varargs:
        return count >= len(method.param_types) - 1
    return count == len(method.param_types)


def _match_score(method: JavaMethod, arg_types: list[Optional[str]]) -> int:
    return sum(1 for param, arg in zip(method.param_types, arg_types) if arg is not None and param == arg)
