import logging
from dataclasses import dataclass, field
from typing import Optional

from tree_sitter import Language, Node, Parser, Tree

from framework_surface.src.framework_surface.models.program_models import (
    PRIMITIVE_TYPES,
    Argument,
    CallSite,
    Instruction,
    InstructionKind,
    JavaMethod,
    JavaType,
)
from framework_surface.src.framework_surface.program import JavaProgram
from framework_surface.src.framework_surface.tree_sitter_helpers import (
    child_of_type,
    erase_generics,
    keyword_modifiers,
    named_children,
    node_point,
    node_text,
    squash,
)

logger = logging.getLogger(__name__)


# --- Tree-sitter language loading -------------------------------------------

def load_java_language() -> Language:
    """
    Loads the Tree-sitter Java grammar for the Python bindings.
    The grammar ships as its own wheel (tree-sitter-java); the bindings no
    longer bundle or build languages themselves.
    """
    try:
        import tree_sitter_java
    except ImportError as exc:
        raise RuntimeError(
            "Could not load Java grammar.\n"
            "- Install `tree-sitter-java` (pip install tree-sitter-java)."
        ) from exc
    return Language(tree_sitter_java.language())


# --- Name tables --------------------------------------------------------------

TYPE_DECLARATIONS = {
    "class_declaration": "class",
    "interface_declaration": "interface",
    "enum_declaration": "enum",
    "record_declaration": "record",
}

DEFAULT_SUPERCLASS = {
    "enum": "java.lang.Enum",
    "record": "java.lang.Record",
}

# Simple names that resolve to java.lang when nothing else in scope declares them.
JAVA_LANG_TYPES = frozenset({
    "AutoCloseable", "Boolean", "Byte", "CharSequence", "Character", "Class",
    "ClassLoader", "Cloneable", "Comparable", "Deprecated", "Double", "Enum",
    "Error", "Exception", "Float", "IllegalArgumentException",
    "IllegalStateException", "IndexOutOfBoundsException", "Integer",
    "InterruptedException", "Iterable", "Long", "Math", "NullPointerException",
    "Number", "Object", "Override", "Process", "Record", "Runnable", "Runtime",
    "RuntimeException", "SecurityException", "Short", "String", "StringBuffer",
    "StringBuilder", "SuppressWarnings", "System", "Thread", "Throwable",
    "UnsupportedOperationException", "Void",
})

LITERAL_TYPES = {
    "decimal_integer_literal": "int",
    "hex_integer_literal": "int",
    "octal_integer_literal": "int",
    "binary_integer_literal": "int",
    "decimal_floating_point_literal": "double",
    "hex_floating_point_literal": "double",
    "true": "boolean",
    "false": "boolean",
    "character_literal": "char",
    "string_literal": "java.lang.String",
    "text_block": "java.lang.String",
    "null_literal": None,
}

COMPARISON_OPERATORS = frozenset({"==", "!=", "<", ">", "<=", ">=", "&&", "||"})

CALL_NODES = frozenset({"method_invocation", "object_creation_expression", "explicit_constructor_invocation"})

# Code that belongs to another method (lambdas, anonymous class members).
OPAQUE_NODES = frozenset({"lambda_expression", "class_body"})

CONTAINER_NODES = frozenset({"block", "constructor_body", "switch_block"})

COMPOUND_STATEMENTS = frozenset({
    "if_statement", "while_statement", "for_statement", "enhanced_for_statement",
    "synchronized_statement", "try_statement", "try_with_resources_statement",
    "catch_clause", "finally_clause", "switch_expression", "switch_statement",
})


def _simple_name(binary_name: str) -> str:
    return binary_name.rpartition(".")[2].rpartition("$")[2]


# --- Index records --------------------------------------------------------------

@dataclass
class _SourceUnit:
    """One parsed compilation unit."""
    path: str
    source: bytes
    tree: Tree
    application: bool
    package: str = ""
    imports: dict[str, str] = field(default_factory=dict)  # simple name -> dotted name
    wildcard_imports: list[str] = field(default_factory=list)

    def text(self, node) -> str:
        return node_text(self.source, node)


@dataclass
class _Declaration:
    """A type declaration found while scanning; linked later by `build_program`."""
    name: str
    node: Node
    unit: _SourceUnit
    kind: str  # class, interface, enum, record or anonymous
    enclosing: Optional[str] = None


@dataclass
class _Header:
    """An instruction whose emission is deferred until its nested body has been lowered."""
    node: Node
    text: str
    scan: list
    kind: InstructionKind


# --- Type name resolution --------------------------------------------------------

class _TypeResolver:
    """
    Maps type names as written in source to binary names, using the same
    lookup order as javac: enclosing classes, single-type imports, the
    current package, on-demand imports, then java.lang. Names nothing
    declares are still given a best-guess binary name so they can become
    phantom types.
    """

    def __init__(self, declarations: dict[str, _Declaration]):
        self.declarations = declarations

    def resolve(self, raw: str, unit: _SourceUnit, scope: Optional[str]) -> Optional[str]:
        words = [w for w in raw.split() if not w.startswith("@")]
        text = erase_generics(" ".join(words))
        if text.endswith("..."):
            text = text[:-3] + "[]"
        dims = 0
        while text.endswith("[]"):
            text = text[:-2]
            dims += 1
        if not text or text == "var":
            return None
        if text in PRIMITIVE_TYPES:
            return text + "[]" * dims
        return self.resolve_class(text, unit, scope) + "[]" * dims

    def resolve_class(self, name: str, unit: _SourceUnit, scope: Optional[str]) -> str:
        head, _, rest = name.partition(".")
        outer = self._lookup_simple(head, unit, scope)
        if outer is not None:
            return outer + ("$" + rest.replace(".", "$") if rest else "")
        if rest:
            return self.to_binary(name)
        if head in JAVA_LANG_TYPES:
            return f"java.lang.{head}"
        return f"{unit.package}.{head}" if unit.package else head

    def to_binary(self, dotted: str) -> str:
        """`a.b.Outer.Inner` -> `a.b.Outer$Inner`, using declared types when known."""
        parts = dotted.split(".")
        for i in range(len(parts) - 1, 0, -1):
            prefix = ".".join(parts[:i])
            if prefix in self.declarations:
                return prefix + "$" + "$".join(parts[i:])
        if dotted in self.declarations:
            return dotted
        # Unknown: assume the first capitalised segment is the top-level class.
        for i, part in enumerate(parts):
            if part[:1].isupper():
                return ".".join(parts[:i + 1]) + "".join("$" + p for p in parts[i + 1:])
        return dotted

    def _lookup_simple(self, head: str, unit: _SourceUnit, scope: Optional[str]) -> Optional[str]:
        while scope:
            if _simple_name(scope) == head:
                return scope
            member = f"{scope}${head}"
            if member in self.declarations:
                return member
            decl = self.declarations.get(scope)
            scope = decl.enclosing if decl else None

        if head in unit.imports:
            return self.to_binary(unit.imports[head])

        local = f"{unit.package}.{head}" if unit.package else head
        if local in self.declarations:
            return local

        for prefix in unit.wildcard_imports:
            candidate = self.to_binary(f"{prefix}.{head}")
            if candidate in self.declarations:
                return candidate

        if f"java.lang.{head}" in self.declarations:
            return f"java.lang.{head}"
        return None


# --- The Indexer -------------------------------------------------------------

class JavaIndexer:
    """
    Walks Tree-sitter Java ASTs to build a program model:
    packages -> types -> methods -> instructions -> call sites.

    Indexing is two-phase. `index_source` parses a file and records the types
    it declares. `build_program` then links type names across every indexed
    file and lowers method bodies, so a call site can be resolved against a
    type declared in a file indexed after it.
    """

    def __init__(self):
        self.language = load_java_language()
        self.parser = Parser(self.language)

        # In-memory index
        self.packages: set[str] = set()
        self.units: list[_SourceUnit] = []
        self.declarations: dict[str, _Declaration] = {}  # binary name -> declaration
        self._anonymous: dict[tuple[str, int], str] = {}  # (file, start byte) -> binary name
        self._anonymous_counters: dict[str, int] = {}
        self._program: Optional[JavaProgram] = None

    def parse(self, source: str) -> Tree:
        """
        Parses a single source string into a Tree-sitter tree.
        """
        return self.parser.parse(source.encode("utf-8"))

    def index_source(self, source: str, file_path: Optional[str] = None, application: bool = True):
        """
        Parses a Java source file and records the types it declares.
        Types from library sources (`application=False`) take part in
        name resolution and dispatch but are never scanned for entry points.
        """
        source_bytes = source.encode("utf-8")
        tree = self.parser.parse(source_bytes)
        unit = _SourceUnit(
            path=file_path or f"<source-{len(self.units)}>",
            source=source_bytes,
            tree=tree,
            application=application,
        )
        if tree.root_node.has_error:
            logger.debug("Syntax errors in %s; indexing what parsed", unit.path)

        self._read_header(unit)
        if unit.package:
            self.packages.add(unit.package)
        self.units.append(unit)
        self._declare_types(unit)
        self._program = None

    def build_program(self) -> JavaProgram:
        """Links every indexed file into a JavaProgram. The result is cached until more sources are indexed."""
        if self._program is not None:
            return self._program

        resolver = _TypeResolver(self.declarations)
        types = []
        pending = []
        for decl in self.declarations.values():
            java_type, bodies = self._link_declaration(decl, resolver)
            types.append(java_type)
            pending.extend(bodies)

        program = JavaProgram(types)
        for method, body_nodes, decl, params in pending:
            builder = _BodyBuilder(self._anonymous, resolver, program, method, decl, params)
            try:
                method.instructions = builder.build(body_nodes)
            except RecursionError:
                logger.warning("Body of %s is nested too deeply to lower; it is kept as a leaf", method.signature)
                method.instructions = ()

        app_count = len(program.list_application_types())
        logger.info("Indexed %d types (%d application) from %d files",
                    len(program.types), app_count, len(self.units))
        self._program = program
        return program

    # -- Declaration scan -----------------------------------------------------

    def _read_header(self, unit: _SourceUnit):
        """Grabs the package name and import declarations."""
        for child in named_children(unit.tree.root_node):
            if child.type == "package_declaration":
                name_node = child_of_type(child, "scoped_identifier", "identifier")
                if name_node is not None:
                    unit.package = unit.text(name_node)
            elif child.type == "import_declaration":
                if child_of_type(child, "static") is not None:
                    continue
                name_node = child_of_type(child, "scoped_identifier", "identifier")
                if name_node is None:
                    continue
                imported = unit.text(name_node)
                if child_of_type(child, "asterisk") is not None:
                    unit.wildcard_imports.append(imported)
                else:
                    unit.imports[imported.rpartition(".")[2]] = imported

    def _declare_types(self, unit: _SourceUnit):
        """
        DFS over the whole tree recording named and anonymous type
        declarations. Children are pushed in reverse so anonymous classes are
        numbered in source order, as javac does.
        """
        stack: list[tuple[Node, Optional[str]]] = [(unit.tree.root_node, None)]
        while stack:
            node, owner = stack.pop()
            inner_owner = owner

            if node.type in TYPE_DECLARATIONS:
                name_node = node.child_by_field_name("name")
                if name_node is not None:
                    simple = unit.text(name_node)
                    if owner:
                        name = f"{owner}${simple}"
                    else:
                        name = f"{unit.package}.{simple}" if unit.package else simple
                    self._register(_Declaration(name, node, unit, TYPE_DECLARATIONS[node.type], owner))
                    inner_owner = name

            elif node.type == "object_creation_expression" and owner:
                body = child_of_type(node, "class_body")
                if body is not None:
                    count = self._anonymous_counters.get(owner, 0) + 1
                    self._anonymous_counters[owner] = count
                    name = f"{owner}${count}"
                    self._anonymous[(unit.path, node.start_byte)] = name
                    self._register(_Declaration(name, node, unit, "anonymous", owner))
                    for child in reversed(node.children):
                        stack.append((child, name if child.id == body.id else owner))
                    continue

            for child in reversed(node.children):
                stack.append((child, inner_owner))

    def _register(self, decl: _Declaration):
        if decl.name in self.declarations:
            logger.debug("Type %s declared again in %s; keeping the first", decl.name, decl.unit.path)
            return
        self.declarations[decl.name] = decl

    # -- Linking --------------------------------------------------------------

    def _link_declaration(self, decl: _Declaration, resolver: _TypeResolver):
        unit = decl.unit
        node = decl.node

        def resolve(text: str) -> Optional[str]:
            return resolver.resolve(text, unit, decl.name)

        line, col = node_point(node)
        java_type = JavaType(
            name=decl.name,
            is_application=unit.application,
            source_file=unit.path,
            line=line,
            col=col,
        )

        if decl.kind == "interface":
            java_type.is_interface = True
            java_type.is_abstract = True
            java_type.interfaces = self._type_list(child_of_type(node, "extends_interfaces"), unit, resolve)
        elif decl.kind == "anonymous":
            base = resolve(unit.text(node.child_by_field_name("type")))
            base_decl = self.declarations.get(base)
            if base_decl is not None and base_decl.kind == "interface":
                java_type.superclass = "java.lang.Object"
                java_type.interfaces = (base,)
            else:
                java_type.superclass = base
        else:
            java_type.is_abstract = "abstract" in keyword_modifiers(node)
            superclass = child_of_type(node, "superclass")
            if superclass is not None:
                types = named_children(superclass)
                java_type.superclass = resolve(unit.text(types[0])) if types else None
            elif decl.name != "java.lang.Object":
                java_type.superclass = DEFAULT_SUPERCLASS.get(decl.kind, "java.lang.Object")
            java_type.interfaces = self._type_list(child_of_type(node, "super_interfaces"), unit, resolve)

        body = child_of_type(node, "class_body") if decl.kind == "anonymous" else node.child_by_field_name("body")
        bodies = []
        static_blocks = []
        has_constructor = False
        for member in self._members(body):
            if member.type in ("field_declaration", "constant_declaration"):
                field_type = resolve(unit.text(member.child_by_field_name("type")))
                for declarator in member.children_by_field_name("declarator"):
                    name_node = declarator.child_by_field_name("name")
                    if name_node is not None and field_type:
                        java_type.fields[unit.text(name_node)] = field_type
            elif member.type in ("method_declaration", "constructor_declaration"):
                method, params, body_node = self._declare_method(member, java_type, unit, resolve)
                java_type.methods.append(method)
                has_constructor = has_constructor or method.is_constructor
                if body_node is not None and unit.application:
                    bodies.append((method, [body_node], decl, params))
            elif member.type == "static_initializer":
                block = child_of_type(member, "block")
                if block is not None:
                    static_blocks.append(block)

        if static_blocks:
            clinit = JavaMethod(decl.name, "<clinit>", (), "void", frozenset({"static"}), has_body=True,
                                line=static_blocks[0].start_point[0])
            java_type.methods.append(clinit)
            if unit.application:
                bodies.append((clinit, static_blocks, decl, []))

        if not has_constructor and not java_type.is_interface:
            # Implicit default constructor
            ctor = JavaMethod(decl.name, "<init>", (), "void", frozenset({"public"}), has_body=True,
                              line=line, col=col)
            java_type.methods.append(ctor)
            if unit.application:
                bodies.append((ctor, [], decl, []))

        return java_type, bodies

    def _type_list(self, clause: Optional[Node], unit: _SourceUnit, resolve) -> tuple[str, ...]:
        """Resolves the types of an `implements`/`extends` clause."""
        if clause is None:
            return ()
        type_list = child_of_type(clause, "type_list")
        nodes = named_children(type_list) if type_list is not None else named_children(clause)
        names = []
        for type_node in nodes:
            name = resolve(unit.text(type_node))
            if name and name not in names:
                names.append(name)
        return tuple(names)

    def _members(self, body: Optional[Node]):
        if body is None:
            return
        for child in named_children(body):
            if child.type == "enum_body_declarations":
                yield from named_children(child)
            else:
                yield child

    def _declare_method(self, node: Node, java_type: JavaType, unit: _SourceUnit, resolve):
        """
        Pulls out a method's name, parameter types and return type, all
        resolved to binary names, plus the body node to lower later.
        """
        is_constructor = node.type == "constructor_declaration"
        if is_constructor:
            name, return_type = "<init>", "void"
        else:
            name = unit.text(node.child_by_field_name("name"))
            return_type = resolve(unit.text(node.child_by_field_name("type"))) or "void"

        param_types: list[str] = []
        params: list[tuple[str, Optional[str]]] = []
        is_varargs = False
        params_node = node.child_by_field_name("parameters")
        for param in named_children(params_node) if params_node is not None else []:
            if param.type == "formal_parameter":
                type_node = param.child_by_field_name("type")
                name_node = param.child_by_field_name("name")
                param_type = resolve(unit.text(type_node)) or "?"
            elif param.type == "spread_parameter":
                type_node = next((c for c in named_children(param)
                                  if c.type not in ("modifiers", "variable_declarator")), None)
                declarator = child_of_type(param, "variable_declarator")
                name_node = declarator.child_by_field_name("name") if declarator is not None else None
                param_type = (resolve(unit.text(type_node)) or "?") + "[]"
                is_varargs = True
            else:
                continue
            param_types.append(param_type)
            param_name = unit.text(name_node) if name_node is not None else f"p{len(params)}"
            params.append((param_name, param_type))

        modifiers = keyword_modifiers(node)
        body_node = node.child_by_field_name("body")
        if java_type.is_interface:
            modifiers = modifiers | {"public"}
            if body_node is None and "static" not in modifiers:
                modifiers = modifiers | {"abstract"}

        line, col = node_point(node)
        method = JavaMethod(
            declaring_type=java_type.name,
            name=name,
            param_types=tuple(param_types),
            return_type=return_type,
            modifiers=frozenset(modifiers),
            has_body=body_node is not None,
            is_varargs=is_varargs,
            line=line,
            col=col,
        )
        return method, params, body_node


# --- Body lowering --------------------------------------------------------------

class _BodyBuilder:
    """
    Lowers one method body into an ordered instruction list. Simple
    statements become one instruction each; control-flow statements become a
    header instruction followed by their nested statements. Lambda bodies and
    anonymous class members belong to other methods and are skipped.
    """

    def __init__(self, anonymous: dict[tuple[str, int], str], resolver: _TypeResolver,
                 program: JavaProgram, method: JavaMethod, decl: _Declaration,
                 params: list[tuple[str, Optional[str]]]):
        self.anonymous = anonymous
        self.resolver = resolver
        self.program = program
        self.method = method
        self.decl = decl
        self.unit = decl.unit
        self.owner = decl.name
        self.locals: dict[str, Optional[str]] = dict(params)
        self.instructions: list[Instruction] = []
        self._invocations: dict[int, tuple] = {}

    def build(self, body_nodes: list[Node]) -> tuple[Instruction, ...]:
        work: list = list(reversed(body_nodes))
        while work:
            item = work.pop()
            if isinstance(item, _Header):
                self._emit_text(item.node, item.text, item.scan, item.kind)
            else:
                self._lower(item, work)

        if self.method.return_type == "void" and not self._ends_in_exit():
            last_line = self.instructions[-1].line if self.instructions else self.method.line + 1
            self.instructions.append(
                Instruction(len(self.instructions), "return", InstructionKind.RETURN, (), last_line))
        return tuple(self.instructions)

    def _ends_in_exit(self) -> bool:
        if not self.instructions:
            return False
        last = self.instructions[-1]
        return last.is_return or last.text.startswith("throw ")

    # -- Statements -----------------------------------------------------------

    def _lower(self, node: Node, work: list):
        kind = node.type
        if kind in CONTAINER_NODES:
            work.extend(reversed(named_children(node)))
        elif kind in TYPE_DECLARATIONS:
            return  # local classes are indexed as types of their own
        elif kind == "labeled_statement":
            work.extend(reversed([c for c in named_children(node) if c.type != "identifier"]))
        elif kind == "local_variable_declaration":
            self._emit(node, [node], InstructionKind.STATEMENT)
            self._declare_locals(node)
        elif kind == "return_statement":
            self._emit(node, [node], InstructionKind.RETURN)
        elif kind == "do_statement":
            condition = node.child_by_field_name("condition")
            self._emit_text(node, "do", [], InstructionKind.BRANCH)
            work.append(_Header(node, "while " + squash(self.unit.text(condition)), [condition],
                                InstructionKind.BRANCH))
            work.append(node.child_by_field_name("body"))
        elif kind in COMPOUND_STATEMENTS:
            scan, bodies = self._split(node)
            end = min(b.start_byte for b in bodies) if bodies else node.end_byte
            header = squash(self.unit.source[node.start_byte:end].decode("utf-8", errors="replace"))
            self._emit_text(node, header, scan, InstructionKind.BRANCH)
            self._declare_header_locals(node)
            work.extend(reversed(bodies))
        elif kind == "switch_block_statement_group":
            rest = []
            for child in named_children(node):
                if child.type == "switch_label":
                    self._emit_text(child, squash(self.unit.text(child)) + ":", [], InstructionKind.BRANCH)
                else:
                    rest.append(child)
            work.extend(reversed(rest))
        elif kind == "switch_rule":
            rest = []
            for child in named_children(node):
                if child.type == "switch_label":
                    self._emit_text(child, squash(self.unit.text(child)) + " ->", [], InstructionKind.BRANCH)
                else:
                    rest.append(child)
            work.extend(reversed(rest))
        else:
            self._emit(node, [node], InstructionKind.STATEMENT)

    def _split(self, node: Node) -> tuple[list[Node], list[Node]]:
        """(expressions evaluated by the header, nested statements) of a compound statement."""
        kind = node.type
        field = node.child_by_field_name
        if kind == "if_statement":
            scan = [field("condition")]
            bodies = [field("consequence"), field("alternative")]
        elif kind in ("while_statement", "switch_expression", "switch_statement"):
            scan = [field("condition")]
            bodies = [field("body")]
        elif kind == "for_statement":
            body = field("body")
            scan = [c for c in named_children(node) if body is None or c.id != body.id]
            bodies = [body]
        elif kind == "enhanced_for_statement":
            scan = [field("value")]
            bodies = [field("body")]
        elif kind == "synchronized_statement":
            scan = [child_of_type(node, "parenthesized_expression")]
            bodies = [field("body")]
        elif kind in ("try_statement", "try_with_resources_statement"):
            scan = [field("resources")] if kind == "try_with_resources_statement" else []
            bodies = [field("body")] + [c for c in named_children(node)
                                        if c.type in ("catch_clause", "finally_clause")]
        elif kind == "catch_clause":
            scan = []
            bodies = [field("body")]
        else:  # finally_clause
            scan = []
            bodies = [child_of_type(node, "block")]
        return [n for n in scan if n is not None], [n for n in bodies if n is not None]

    # -- Locals -----------------------------------------------------------------

    def _declare_locals(self, node: Node):
        type_node = node.child_by_field_name("type")
        declared = self._resolve(self.unit.text(type_node)) if type_node is not None else None
        for declarator in node.children_by_field_name("declarator"):
            name_node = declarator.child_by_field_name("name")
            value = declarator.child_by_field_name("value")
            if name_node is None:
                continue
            local_type = declared
            # A local initialised with `new X()` holds an X, whatever it is declared as.
            if value is not None and (declared is None or value.type == "object_creation_expression"):
                local_type = self._type_of(value) or declared
            self.locals[self.unit.text(name_node)] = local_type

    def _declare_header_locals(self, node: Node):
        kind = node.type
        if kind == "for_statement":
            for init in node.children_by_field_name("init"):
                if init.type == "local_variable_declaration":
                    self._declare_locals(init)
        elif kind == "enhanced_for_statement":
            name_node = node.child_by_field_name("name")
            type_node = node.child_by_field_name("type")
            if name_node is not None:
                self.locals[self.unit.text(name_node)] = (
                    self._resolve(self.unit.text(type_node)) if type_node is not None else None)
        elif kind == "catch_clause":
            param = child_of_type(node, "catch_formal_parameter")
            if param is not None:
                name_node = param.child_by_field_name("name")
                catch_type = child_of_type(param, "catch_type")
                if name_node is not None and catch_type is not None:
                    first = self.unit.text(catch_type).split("|")[0]
                    self.locals[self.unit.text(name_node)] = self._resolve(first)
        elif kind == "try_with_resources_statement":
            resources = node.child_by_field_name("resources")
            for resource in named_children(resources) if resources is not None else []:
                name_node = resource.child_by_field_name("name")
                type_node = resource.child_by_field_name("type")
                if name_node is not None:
                    self.locals[self.unit.text(name_node)] = (
                        self._resolve(self.unit.text(type_node)) if type_node is not None else None)

    # -- Instructions -----------------------------------------------------------

    def _emit(self, node: Node, scan: list[Node], kind: InstructionKind):
        self._emit_text(node, squash(self.unit.text(node)), scan, kind)

    def _emit_text(self, node: Node, text: str, scan: list[Node], kind: InstructionKind):
        position = len(self.instructions)
        sites: list[CallSite] = []
        for root in scan:
            self._collect_calls(root, position, sites)
        self.instructions.append(Instruction(position, text, kind, tuple(sites), node.start_point[0] + 1))

    def _collect_calls(self, root: Node, position: int, sites: list[CallSite]):
        """Post-order walk, so argument calls come before the call consuming them."""
        stack = [(root, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                if node.type in CALL_NODES:
                    sites.append(self._call_site(node, position, len(sites)))
                continue
            if node.type in OPAQUE_NODES:
                continue
            stack.append((node, True))
            for child in reversed(named_children(node)):
                stack.append((child, False))

    def _call_site(self, node: Node, position: int, ordinal: int) -> CallSite:
        receiver, kind, target, name = self._resolve_invocation(node)
        args_node = node.child_by_field_name("arguments")
        args = tuple(self._argument(a) for a in named_children(args_node)) if args_node is not None else ()
        if target is not None:
            signature = target.signature
        else:
            arg_types = ",".join(a.type_name or "?" for a in args)
            signature = f"<{receiver or '?'}: ? {name}({arg_types})>"
        return CallSite(
            caller=self.method.signature,
            position=position,
            ordinal=ordinal,
            name=name,
            args=args,
            receiver_type=receiver,
            kind=kind,
            target=signature,
            line=node.start_point[0] + 1,
        )

    def _argument(self, node: Node) -> Argument:
        return Argument(
            text=squash(self.unit.text(node)),
            type_name=self._type_of(node),
            is_null=node.type == "null_literal",
        )

    # -- Resolution -------------------------------------------------------------

    def _resolve(self, text: str) -> Optional[str]:
        return self.resolver.resolve(text, self.unit, self.owner)

    def _superclass_of(self, type_name: Optional[str]) -> Optional[str]:
        java_type = self.program.get_type(type_name)
        return java_type.superclass if java_type is not None else None

    def _enclosing_scopes(self):
        scope = self.owner
        while scope:
            yield scope
            decl = self.resolver.declarations.get(scope)
            scope = decl.enclosing if decl else None

    def _resolve_invocation(self, node: Node) -> tuple:
        """(receiver type, dispatch kind, declared target or None, invoked name) for a call node."""
        cached = self._invocations.get(node.id)
        if cached is not None:
            return cached

        args_node = node.child_by_field_name("arguments")
        arg_types = [self._type_of(a) for a in named_children(args_node)] if args_node is not None else []
        target = None

        if node.type == "object_creation_expression":
            name, kind = "<init>", "special"
            receiver = self._created_type(node)
        elif node.type == "explicit_constructor_invocation":
            name, kind = "<init>", "special"
            ctor = node.child_by_field_name("constructor")
            receiver = self.owner if ctor is not None and ctor.type == "this" else self._superclass_of(self.owner)
        else:
            name = self.unit.text(node.child_by_field_name("name"))
            obj = node.child_by_field_name("object")
            kind = "virtual"
            if obj is None:
                receiver = self.owner
                for scope in self._enclosing_scopes():
                    target = self.program.find_method(scope, name, arg_types)
                    if target is not None:
                        receiver = scope
                        break
            elif obj.type == "super":
                receiver, kind = self._superclass_of(self.owner), "special"
            else:
                receiver = self._type_of(obj)
                if receiver is None:
                    receiver = self._static_type_ref(obj)
                    if receiver is not None:
                        kind = "static"

        if target is None and receiver:
            target = self.program.find_method(receiver, name, arg_types)
        if kind == "virtual" and target is not None and target.is_static:
            kind = "static"

        result = (receiver, kind, target, name)
        self._invocations[node.id] = result
        return result

    def _created_type(self, node: Node) -> Optional[str]:
        if child_of_type(node, "class_body") is not None:
            anonymous = self.anonymous.get((self.unit.path, node.start_byte))
            if anonymous is not None:
                return anonymous
        type_node = node.child_by_field_name("type")
        return self._resolve(self.unit.text(type_node)) if type_node is not None else None

    def _static_type_ref(self, node: Node) -> Optional[str]:
        """Treats `Foo` / `android.os.Foo` used as a call receiver as a type name."""
        if node.type not in ("identifier", "field_access", "scoped_identifier"):
            return None
        text = squash(self.unit.text(node)).replace(" ", "")
        if not any(part[:1].isupper() for part in text.split(".")):
            return None
        return self._resolve(text)

    def _variable_type(self, name: str) -> Optional[str]:
        if name in self.locals:
            return self.locals[name]
        for scope in self._enclosing_scopes():
            field_type = self.program.field_type(scope, name)
            if field_type is not None:
                return field_type
        return None

    def _type_of(self, expr: Node) -> Optional[str]:
        """Best-effort static type of an expression, as a binary name."""
        kind = expr.type
        if kind in LITERAL_TYPES:
            return LITERAL_TYPES[kind]
        if kind == "identifier":
            return self._variable_type(self.unit.text(expr))
        if kind == "this":
            return self.owner
        if kind == "parenthesized_expression":
            inner = named_children(expr)
            return self._type_of(inner[0]) if inner else None
        if kind == "cast_expression":
            return self._resolve(self.unit.text(expr.child_by_field_name("type")))
        if kind == "object_creation_expression":
            return self._created_type(expr)
        if kind == "array_creation_expression":
            base = self._resolve(self.unit.text(expr.child_by_field_name("type")))
            return base + "[]" if base else None
        if kind == "method_invocation":
            target = self._resolve_invocation(expr)[2]
            return target.return_type if target is not None else None
        if kind == "field_access":
            obj = expr.child_by_field_name("object")
            field_name = self.unit.text(expr.child_by_field_name("field"))
            if obj.type == "this":
                owner_type = self.owner
            elif obj.type == "super":
                owner_type = self._superclass_of(self.owner)
            else:
                owner_type = self._type_of(obj) or self._static_type_ref(obj)
            if owner_type and owner_type.endswith("[]"):
                return "int" if field_name == "length" else None
            return self.program.field_type(owner_type, field_name) if owner_type else None
        if kind == "array_access":
            array_type = self._type_of(expr.child_by_field_name("array"))
            return array_type[:-2] if array_type and array_type.endswith("[]") else None
        if kind == "ternary_expression":
            return (self._type_of(expr.child_by_field_name("consequence"))
                    or self._type_of(expr.child_by_field_name("alternative")))
        if kind == "assignment_expression":
            return self._type_of(expr.child_by_field_name("left"))
        if kind == "instanceof_expression":
            return "boolean"
        if kind == "class_literal":
            return "java.lang.Class"
        if kind == "binary_expression":
            return self._binary_type(expr)
        return None

    def _binary_type(self, expr: Node) -> Optional[str]:
        """Left-nested chains such as `"a" + b + c + ...` are walked without recursion."""
        chain = []
        node = expr
        while True:
            if node is None:
                result = None
                break
            if node.type != "binary_expression":
                result = self._type_of(node)
                break
            operator = node.child_by_field_name("operator")
            op = operator.type if operator is not None else ""
            if op in COMPARISON_OPERATORS:
                result = "boolean"
                break
            chain.append((node, op))
            node = node.child_by_field_name("left")

        for node, op in reversed(chain):
            if op == "+":
                right = self._type_of(node.child_by_field_name("right"))
                if "java.lang.String" in (result, right):
                    result = "java.lang.String"
        return result
