# --- Tree-sitter plumbing ----------------------------------------------------
from tree_sitter import Node

COMMENT_NODES = ("line_comment", "block_comment")


def node_text(source_bytes: bytes, node) -> str:
    """
    Converts a node's [start_byte:end_byte] into the corresponding string.
    Tree-sitter nodes only store byte offsets, so we slice the original source.
    """
    return source_bytes[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def node_point(node) -> tuple[int, int]:
    """
    Returns the (line, column) of a node's start in 0-based coordinates.
    Handy for displaying where a method/call was found.
    """
    return (node.start_point[0], node.start_point[1])


def squash(text: str) -> str:
    """Collapses every run of whitespace (including newlines) to one space."""
    return " ".join(text.split())


def named_children(node: Node) -> list[Node]:
    """Named children of a node, minus comments (tree-sitter reports them as extras)."""
    return [c for c in node.named_children if c.type not in COMMENT_NODES]


def child_of_type(node: Node, *types: str):
    """First direct child whose type is one of `types`, or None."""
    for child in node.children:
        if child.type in types:
            return child
    return None


def keyword_modifiers(node: Node) -> frozenset[str]:
    """
    Collects keyword modifiers (public, static, abstract, ...) of a declaration.
    Annotations are named nodes inside `modifiers` and are skipped.
    """
    mods = child_of_type(node, "modifiers")
    if mods is None:
        return frozenset()
    return frozenset(c.type for c in mods.children if not c.is_named)


def erase_generics(type_text: str) -> str:
    """
    Drops type arguments and whitespace from a textual type:
    `Map<String, List<Foo>>[]` -> `Map[]`.
    """
    out = []
    depth = 0
    for ch in type_text:
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        elif depth == 0 and not ch.isspace():
            out.append(ch)
    return "".join(out)
