"""
JavaScript parser built on tree-sitter.

Parses test sources into tree-sitter trees and provides the small set of
node helpers the detectors share: text recovery, byte-offset to line/column
resolution, member chains, literal values and enclosing-node lookups.
"""

import bisect
import logging
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

import tree_sitter_javascript
from tree_sitter import Language, Node, Parser, Tree

logger = logging.getLogger(__name__)

JAVASCRIPT = Language(tree_sitter_javascript.language())

EXTENSIONS = (".js", ".jsx", ".mjs", ".cjs")


class NodeKind(str, Enum):
    """Node kinds the engine dispatches on."""
    PROGRAM = "program"
    EXPRESSION_STATEMENT = "expression_statement"
    STATEMENT_BLOCK = "statement_block"
    CALL_EXPRESSION = "call_expression"
    NEW_EXPRESSION = "new_expression"
    MEMBER_EXPRESSION = "member_expression"
    SUBSCRIPT_EXPRESSION = "subscript_expression"
    ASSIGNMENT_EXPRESSION = "assignment_expression"
    AUGMENTED_ASSIGNMENT_EXPRESSION = "augmented_assignment_expression"
    UPDATE_EXPRESSION = "update_expression"
    UNARY_EXPRESSION = "unary_expression"
    BINARY_EXPRESSION = "binary_expression"
    AWAIT_EXPRESSION = "await_expression"
    VARIABLE_DECLARATOR = "variable_declarator"
    LEXICAL_DECLARATION = "lexical_declaration"
    VARIABLE_DECLARATION = "variable_declaration"
    IMPORT_STATEMENT = "import_statement"
    FORMAL_PARAMETERS = "formal_parameters"
    ARROW_FUNCTION = "arrow_function"
    FUNCTION_EXPRESSION = "function_expression"
    FUNCTION = "function"
    FUNCTION_DECLARATION = "function_declaration"
    GENERATOR_FUNCTION = "generator_function"
    GENERATOR_FUNCTION_DECLARATION = "generator_function_declaration"
    METHOD_DEFINITION = "method_definition"
    TEMPLATE_STRING = "template_string"
    STRING = "string"
    NUMBER = "number"
    REGEX = "regex"
    IDENTIFIER = "identifier"
    OBJECT = "object"
    ARRAY = "array"
    COMMENT = "comment"
    CLASS_DECLARATION = "class_declaration"
    FOR_IN_STATEMENT = "for_in_statement"


FUNCTION_KINDS = frozenset({
    NodeKind.ARROW_FUNCTION.value,
    NodeKind.FUNCTION_EXPRESSION.value,
    NodeKind.FUNCTION.value,
    NodeKind.FUNCTION_DECLARATION.value,
    NodeKind.GENERATOR_FUNCTION.value,
    NodeKind.GENERATOR_FUNCTION_DECLARATION.value,
    NodeKind.METHOD_DEFINITION.value,
})

BLOCK_KINDS = frozenset({NodeKind.STATEMENT_BLOCK.value, NodeKind.PROGRAM.value})

LITERAL_KINDS = frozenset({
    "string", "number", "true", "false", "null", "undefined", "regex",
})


@dataclass(frozen=True)
class ParsedFile:
    """A parsed JavaScript source file."""
    path: str
    source: bytes
    tree: Tree

    @property
    def root(self) -> Node:
        return self.tree.root_node

    @cached_property
    def text(self) -> str:
        return self.source.decode("utf-8", errors="replace")

    @cached_property
    def lines(self) -> List[str]:
        return self.text.splitlines()

    @cached_property
    def line_starts(self) -> List[int]:
        starts = [0]
        for index, byte in enumerate(self.source):
            if byte == 0x0A:
                starts.append(index + 1)
        return starts

    @property
    def has_errors(self) -> bool:
        return self.root.has_error

    def text_of(self, node: Optional[Node]) -> str:
        """Return the verbatim source text of a node."""
        if node is None:
            return ""
        return self.source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    def text_between(self, start: int, end: int) -> str:
        return self.source[start:end].decode("utf-8", errors="replace")

    def position(self, offset: int) -> Tuple[int, int]:
        """Resolve a byte offset to a 1-based line and 0-based column."""
        line = bisect.bisect_right(self.line_starts, offset)
        return line, offset - self.line_starts[line - 1]


def create_parser() -> Parser:
    return Parser(JAVASCRIPT)


def parse_source(source: Union[str, bytes], path: str = "<string>") -> ParsedFile:
    """Parse JavaScript source text."""
    if isinstance(source, str):
        source = source.encode("utf-8")
    tree = create_parser().parse(source)
    parsed = ParsedFile(path=path, source=source, tree=tree)
    if parsed.has_errors:
        logger.debug("Syntax errors recovered while parsing %s", path)
    return parsed


def parse_file(path: str) -> ParsedFile:
    return parse_source(Path(path).read_bytes(), path)


def iter_nodes(node: Node) -> Iterator[Node]:
    """Pre-order traversal in source order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def span_key(node: Node) -> Tuple[int, int, str]:
    return (node.start_byte, node.end_byte, node.type)


def same_node(a: Optional[Node], b: Optional[Node]) -> bool:
    if a is None or b is None:
        return False
    return span_key(a) == span_key(b)


def named_children(node: Optional[Node]) -> List[Node]:
    """Named children without comments."""
    if node is None:
        return []
    return [child for child in node.named_children if child.type != NodeKind.COMMENT.value]


def field(node: Optional[Node], name: str) -> Optional[Node]:
    if node is None:
        return None
    return node.child_by_field_name(name)


def unwrap(node: Optional[Node]) -> Optional[Node]:
    """Strip parentheses and `await` around an expression."""
    while node is not None and node.type in ("parenthesized_expression", "await_expression"):
        inner = named_children(node)
        node = inner[0] if inner else None
    return node


def ancestors(node: Node) -> Iterator[Node]:
    parent = node.parent
    while parent is not None:
        yield parent
        parent = parent.parent


def enclosing(node: Node, kinds: Iterable[str]) -> Optional[Node]:
    wanted = set(kinds)
    for parent in ancestors(node):
        if parent.type in wanted:
            return parent
    return None


def enclosing_function(node: Node) -> Optional[Node]:
    return enclosing(node, FUNCTION_KINDS)


def is_async_function(function: Optional[Node]) -> bool:
    if function is None:
        return False
    body = field(function, "body")
    for child in function.children:
        if body is not None and child.start_byte >= body.start_byte:
            break
        if child.type == "async":
            return True
    return False


def call_arguments(call: Optional[Node]) -> List[Node]:
    """Arguments of a call or new expression, empty for tagged templates."""
    arguments = field(call, "arguments")
    if arguments is None or arguments.type != "arguments":
        return []
    return named_children(arguments)


def member_parts(node: Optional[Node], parsed: ParsedFile) -> Optional[List[str]]:
    """Flatten `a.b.c` into ["a", "b", "c"]; None for anything else."""
    if node is None:
        return None
    if node.type in ("identifier", "this", "property_identifier"):
        return [parsed.text_of(node)]
    if node.type == NodeKind.MEMBER_EXPRESSION.value:
        head = member_parts(field(node, "object"), parsed)
        prop = field(node, "property")
        if head is None or prop is None:
            return None
        return head + [parsed.text_of(prop)]
    return None


def call_parts(call: Optional[Node], parsed: ParsedFile) -> Optional[List[str]]:
    return member_parts(field(call, "function"), parsed)


def callee_name(call: Optional[Node], parsed: ParsedFile) -> Optional[str]:
    """The called name: the identifier, or the last property of a member callee."""
    function = field(call, "function")
    if function is None:
        function = field(call, "constructor")
    if function is None:
        return None
    if function.type == NodeKind.IDENTIFIER.value:
        return parsed.text_of(function)
    if function.type == NodeKind.MEMBER_EXPRESSION.value:
        prop = field(function, "property")
        return parsed.text_of(prop) if prop is not None else None
    return None


def callee_object(call: Optional[Node]) -> Optional[Node]:
    function = field(call, "function")
    if function is not None and function.type == NodeKind.MEMBER_EXPRESSION.value:
        return field(function, "object")
    return None


def root_identifier(node: Optional[Node]) -> Optional[Node]:
    """Follow member and subscript objects down to the base identifier."""
    while node is not None and node.type in (
        NodeKind.MEMBER_EXPRESSION.value,
        NodeKind.SUBSCRIPT_EXPRESSION.value,
        "parenthesized_expression",
        "non_null_expression",
    ):
        if node.type == "parenthesized_expression":
            inner = named_children(node)
            node = inner[0] if inner else None
        else:
            node = field(node, "object")
    if node is not None and node.type == NodeKind.IDENTIFIER.value:
        return node
    return None


def string_value(node: Optional[Node], parsed: ParsedFile) -> Optional[str]:
    """Value of a string literal or substitution-free template string."""
    if node is None:
        return None
    if node.type == NodeKind.STRING.value:
        return parsed.text_of(node)[1:-1]
    if node.type == NodeKind.TEMPLATE_STRING.value:
        if any(child.type == "template_substitution" for child in node.named_children):
            return None
        return parsed.text_of(node)[1:-1]
    return None


def number_value(node: Optional[Node], parsed: ParsedFile) -> Optional[float]:
    if node is None:
        return None
    if node.type == NodeKind.UNARY_EXPRESSION.value:
        operand = field(node, "argument")
        value = number_value(operand, parsed)
        operator = field(node, "operator")
        if value is not None and operator is not None and parsed.text_of(operator) == "-":
            return -value
        return None
    if node.type != NodeKind.NUMBER.value:
        return None
    raw = parsed.text_of(node).replace("_", "").rstrip("n")
    try:
        return float(raw)
    except ValueError:
        try:
            return float(int(raw, 0))
        except ValueError:
            return None


def regex_pattern(node: Optional[Node], parsed: ParsedFile) -> Optional[str]:
    if node is None or node.type != NodeKind.REGEX.value:
        return None
    pattern = field(node, "pattern")
    return parsed.text_of(pattern) if pattern is not None else ""


def is_plain_literal(node: Optional[Node], parsed: ParsedFile) -> bool:
    """Strings, numbers, booleans, null, undefined, regexes, static templates."""
    if node is None:
        return False
    if node.type in LITERAL_KINDS:
        return True
    if node.type == NodeKind.TEMPLATE_STRING.value:
        return string_value(node, parsed) is not None
    if node.type == NodeKind.UNARY_EXPRESSION.value:
        return number_value(node, parsed) is not None
    if node.type == NodeKind.IDENTIFIER.value:
        return parsed.text_of(node) == "undefined"
    return False


def statement_of(node: Node) -> Node:
    """The statement that directly contains node inside a block or program."""
    current = node
    parent = current.parent
    while parent is not None and parent.type not in BLOCK_KINDS:
        current = parent
        parent = current.parent
    return current


def first_child_of_type(node: Optional[Node], kind: str) -> Optional[Node]:
    if node is None:
        return None
    for child in node.children:
        if child.type == kind:
            return child
    return None


def enclosing_call(node: Node, parsed: ParsedFile, names: Iterable[str]) -> Optional[Node]:
    """Nearest ancestor call whose callee name is one of names."""
    wanted = set(names)
    for parent in ancestors(node):
        if parent.type == NodeKind.CALL_EXPRESSION.value and callee_name(parent, parsed) in wanted:
            return parent
    return None
