# --- Data models for the program index --------------------------------------
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

PRIMITIVE_TYPES = frozenset({
    "boolean", "byte", "char", "short", "int", "long", "float", "double", "void",
})


def is_reference_type(type_name: Optional[str]) -> bool:
    """True for class/interface types; False for primitives, arrays and unknowns."""
    if not type_name:
        return False
    return type_name not in PRIMITIVE_TYPES and not type_name.endswith("[]")


def make_subsignature(return_type: str, name: str, param_types) -> str:
    """Soot-style sub-signature, e.g. `void onReceive(android.content.Context,android.content.Intent)`."""
    return f"{return_type} {name}({','.join(param_types)})"


class InstructionKind(str, Enum):
    STATEMENT = "statement"
    BRANCH = "branch"  # control-flow header: if/while/for/try/catch/case
    RETURN = "return"


@dataclass(frozen=True)
class Argument:
    """An actual argument expression at a call site."""
    text: str
    type_name: Optional[str]  # declared type, None when it could not be inferred
    is_null: bool = False  # the literal `null`

    @property
    def is_reference(self) -> bool:
        return is_reference_type(self.type_name)


@dataclass(frozen=True)
class CallSite:
    """A single invocation inside an instruction."""
    caller: str  # signature of the method containing the call
    position: int  # index of the owning instruction in the caller's body
    ordinal: int  # evaluation order within that instruction
    name: str  # invoked method name ("<init>" for constructors)
    args: tuple[Argument, ...]
    receiver_type: Optional[str]  # static type the call is dispatched on
    kind: str  # "virtual", "static" or "special"
    target: str  # statically declared target signature
    line: int = 0

    @property
    def arg_count(self) -> int:
        return len(self.args)


@dataclass(frozen=True)
class Instruction:
    """One entry of a method body, in program order."""
    position: int
    text: str
    kind: InstructionKind = InstructionKind.STATEMENT
    call_sites: tuple[CallSite, ...] = ()
    line: int = 0

    @property
    def is_return(self) -> bool:
        return self.kind is InstructionKind.RETURN

    @property
    def is_call(self) -> bool:
        return bool(self.call_sites)


@dataclass(eq=False)
class JavaMethod:
    """
    A method or constructor. Identity is the fully-qualified signature, so two
    JavaMethod objects describing the same declaration compare equal.
    """
    declaring_type: str
    name: str
    param_types: tuple[str, ...]
    return_type: str
    modifiers: frozenset[str] = frozenset()
    has_body: bool = False
    instructions: tuple[Instruction, ...] = ()
    is_varargs: bool = False
    line: int = 0
    col: int = 0

    @property
    def subsignature(self) -> str:
        return make_subsignature(self.return_type, self.name, self.param_types)

    @property
    def signature(self) -> str:
        return f"<{self.declaring_type}: {self.subsignature}>"

    @property
    def is_abstract(self) -> bool:
        return "abstract" in self.modifiers or (not self.has_body and "native" not in self.modifiers)

    @property
    def is_static(self) -> bool:
        return "static" in self.modifiers

    @property
    def is_constructor(self) -> bool:
        return self.name == "<init>"

    def __eq__(self, other):
        if not isinstance(other, JavaMethod):
            return NotImplemented
        return self.signature == other.signature

    def __hash__(self):
        return hash(self.signature)

    def __repr__(self):
        return f"JavaMethod({self.signature})"


@dataclass(eq=False)
class JavaType:
    """A class or interface, declared in an indexed root or created as a phantom."""
    name: str  # binary name: com.acme.Outer$Inner
    superclass: Optional[str] = None
    interfaces: tuple[str, ...] = ()
    is_interface: bool = False
    is_abstract: bool = False
    is_application: bool = False  # declared in an application root (vs. a library root)
    is_phantom: bool = False  # referenced but never declared
    methods: list[JavaMethod] = field(default_factory=list)
    fields: dict[str, str] = field(default_factory=dict)  # field name -> declared type
    source_file: Optional[str] = None
    line: int = 0
    col: int = 0

    @property
    def package(self) -> str:
        return self.name.rpartition(".")[0]

    @property
    def simple_name(self) -> str:
        return self.name.rpartition(".")[2].rpartition("$")[2]

    def __eq__(self, other):
        if not isinstance(other, JavaType):
            return NotImplemented
        return self.name == other.name

    def __hash__(self):
        return hash(self.name)

    def __repr__(self):
        return f"JavaType({self.name})"
