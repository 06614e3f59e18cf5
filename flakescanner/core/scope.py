"""
Scope and lifetime tracking for test files.

Every declaration is classified by where it sits lexically (module top
level, a suite callback, a lifecycle hook, or a test callback) and every
later mutation is recorded against the declaration it resolves to. Name
resolution honours shadowing by picking the innermost enclosing container.
"""

import logging
from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from tree_sitter import Node

from flakescanner.parsers.javascript import (
    NodeKind,
    ParsedFile,
    ancestors,
    call_arguments,
    enclosing,
    enclosing_function,
    field,
    first_child_of_type,
    is_plain_literal,
    named_children,
    root_identifier,
)

logger = logging.getLogger(__name__)

HOOK_NAMES = frozenset({"beforeEach", "beforeAll", "afterEach", "afterAll", "before", "after"})
SETUP_HOOK_NAMES = frozenset({"beforeEach", "beforeAll", "before"})
TEST_NAMES = frozenset({"it", "test", "specify", "fit", "xit", "xtest"})
SUITE_NAMES = frozenset({"describe", "context", "suite", "fdescribe", "xdescribe"})

MUTATING_METHODS = frozenset({
    "push", "pop", "shift", "unshift", "splice", "sort", "reverse", "fill",
    "copyWithin", "set", "delete", "clear", "add", "insert", "remove",
})

PATTERN_KINDS = frozenset({"object_pattern", "array_pattern"})


class ScopeKind(Enum):
    """Lexical placement of a declaration or mutation."""
    MODULE = "module"
    SUITE = "suite"
    HOOK = "hook"
    TEST = "test"


@dataclass
class MutationSite:
    """One write to a tracked variable."""
    node: Node
    operation: str
    context_kind: ScopeKind
    hook_name: Optional[str] = None


@dataclass
class ScopeRecord:
    """A declared name and every mutation that resolved to it."""
    name: str
    scope_kind: ScopeKind
    binding: str
    declaration: Node
    has_initializer: bool
    is_constant: bool
    container: Tuple[int, int]
    mutation_sites: List[MutationSite] = dataclass_field(default_factory=list)

    @property
    def is_shared(self) -> bool:
        """Module or suite variable that tests could observe across runs."""
        return (
            self.scope_kind in (ScopeKind.MODULE, ScopeKind.SUITE)
            and self.binding in ("let", "const", "var")
            and not self.is_constant
        )

    def contains(self, offset: int) -> bool:
        return self.container[0] <= offset < self.container[1]


def test_call_name(call: Node, parsed: ParsedFile) -> Optional[str]:
    """Root name of a test-framework call: `it.only(...)` and `test.each(t)(...)` give `it` and `test`."""
    function = field(call, "function")
    while function is not None and function.type == NodeKind.CALL_EXPRESSION.value:
        function = field(function, "function")
    if function is None:
        return None
    if function.type == NodeKind.IDENTIFIER.value:
        return parsed.text_of(function)
    root = root_identifier(function)
    return parsed.text_of(root) if root is not None else None


def scope_kind_of(node: Node, parsed: ParsedFile) -> Tuple[ScopeKind, Optional[str]]:
    """
    Classify the lexical placement of a node.

    Hook placement wins over test placement, which wins over suite
    placement, regardless of nesting depth.
    """
    names = []
    for parent in ancestors(node):
        if parent.type == NodeKind.CALL_EXPRESSION.value:
            name = test_call_name(parent, parsed)
            if name:
                names.append(name)

    for name in names:
        if name in HOOK_NAMES:
            return ScopeKind.HOOK, name
    if any(name in TEST_NAMES for name in names):
        return ScopeKind.TEST, None
    if any(name in SUITE_NAMES for name in names):
        return ScopeKind.SUITE, None
    return ScopeKind.MODULE, None


def pattern_identifiers(node: Optional[Node]) -> List[Node]:
    """Identifiers bound or assigned by a name or destructuring pattern."""
    if node is None:
        return []
    if node.type in ("identifier", "shorthand_property_identifier_pattern"):
        return [node]
    if node.type == "pair_pattern":
        return pattern_identifiers(field(node, "value"))
    if node.type in ("assignment_pattern", "object_assignment_pattern"):
        return pattern_identifiers(field(node, "left"))
    if node.type in PATTERN_KINDS or node.type == "rest_pattern":
        found = []
        for child in named_children(node):
            found.extend(pattern_identifiers(child))
        return found
    return []


def is_require_call(node: Optional[Node], parsed: ParsedFile) -> bool:
    """`require(...)`, `require(...).x` or `await import(...)`."""
    while node is not None and node.type in (NodeKind.MEMBER_EXPRESSION.value, NodeKind.AWAIT_EXPRESSION.value):
        node = field(node, "object") if node.type == NodeKind.MEMBER_EXPRESSION.value else (named_children(node) or [None])[0]
    if node is None or node.type != NodeKind.CALL_EXPRESSION.value:
        return False
    function = field(node, "function")
    return function is not None and function.type in ("identifier", "import") and parsed.text_of(function) in ("require", "import")


def is_constant_initializer(value: Optional[Node], parsed: ParsedFile) -> bool:
    """A plain literal, or a non-empty object literal of plain literals."""
    if value is None:
        return False
    if is_plain_literal(value, parsed):
        return True
    if value.type != NodeKind.OBJECT.value:
        return False
    properties = named_children(value)
    if not properties:
        return False
    for prop in properties:
        if prop.type != "pair" or not is_plain_literal(field(prop, "value"), parsed):
            return False
    return True


class ScopeTracker:
    """
    Per-file registry of declarations and their mutation sites.

    Mutations are resolved lazily so a function body that runs later can
    mutate a variable declared further down the file.
    """

    node_kinds = (
        NodeKind.VARIABLE_DECLARATOR,
        NodeKind.FORMAL_PARAMETERS,
        NodeKind.ARROW_FUNCTION,
        NodeKind.IMPORT_STATEMENT,
        NodeKind.FUNCTION_DECLARATION,
        NodeKind.CLASS_DECLARATION,
        NodeKind.FOR_IN_STATEMENT,
        NodeKind.ASSIGNMENT_EXPRESSION,
        NodeKind.AUGMENTED_ASSIGNMENT_EXPRESSION,
        NodeKind.UPDATE_EXPRESSION,
        NodeKind.UNARY_EXPRESSION,
        NodeKind.CALL_EXPRESSION,
    )

    def __init__(self, parsed: ParsedFile):
        self.parsed = parsed
        self._records: List[ScopeRecord] = []
        self._by_name: Dict[str, List[ScopeRecord]] = {}
        self._pending: List[Tuple[str, int, MutationSite]] = []

    @property
    def records(self) -> List[ScopeRecord]:
        self._resolve()
        return list(self._records)

    def on_enter(self, node: Node):
        kind = node.type
        if kind == NodeKind.VARIABLE_DECLARATOR.value:
            self.on_declaration(node)
        elif kind == NodeKind.FORMAL_PARAMETERS.value:
            self._declare_parameters(node)
        elif kind == NodeKind.ARROW_FUNCTION.value:
            parameter = field(node, "parameter")
            if parameter is not None:
                self._declare(parameter, "param", node, (node.start_byte, node.end_byte))
        elif kind == NodeKind.IMPORT_STATEMENT.value:
            self._declare_imports(node)
        elif kind in (NodeKind.FUNCTION_DECLARATION.value, NodeKind.CLASS_DECLARATION.value):
            name = field(node, "name")
            if name is not None:
                self._declare(name, "function", node, self._container_for(node, "let"))
        elif kind == NodeKind.FOR_IN_STATEMENT.value:
            self._declare_loop_variable(node)
        else:
            self.on_mutation(node)

    def on_declaration(self, node: Node) -> Optional[ScopeRecord]:
        """Record the names bound by a variable declarator."""
        declaration = node.parent
        if declaration is None:
            return None
        if declaration.type == NodeKind.VARIABLE_DECLARATION.value:
            binding = "var"
        else:
            keyword = declaration.children[0] if declaration.children else None
            binding = keyword.type if keyword is not None and keyword.type in ("let", "const") else "let"

        name = field(node, "name")
        value = field(node, "value")
        if is_require_call(value, self.parsed):
            binding = "import"
            container = (self.parsed.root.start_byte, self.parsed.root.end_byte)
        else:
            container = self._container_for(node, binding)

        constant = (
            binding == "const"
            and name is not None
            and name.type == NodeKind.IDENTIFIER.value
            and is_constant_initializer(value, self.parsed)
        )

        first = None
        for identifier in pattern_identifiers(name):
            record = self._declare(identifier, binding, node, container, value is not None, constant)
            first = first or record
        return first

    def on_mutation(self, node: Node):
        """Record a write if the node is an assignment, update, delete or mutating call."""
        targets = self._mutation_targets(node)
        if not targets:
            return
        context_kind, hook_name = scope_kind_of(node, self.parsed)
        for identifier, operation in targets:
            site = MutationSite(node=node, operation=operation, context_kind=context_kind, hook_name=hook_name)
            self._pending.append((self.parsed.text_of(identifier), identifier.start_byte, site))

    def classify(self, name: str, offset: Optional[int] = None) -> Optional[ScopeRecord]:
        """
        Find the record a name refers to.

        With an offset, the innermost declaration visible at that offset;
        without one, the outermost declaration of the name.
        """
        candidates = self._by_name.get(name, [])
        if offset is None:
            return candidates[0] if candidates else None
        visible = [record for record in candidates if record.contains(offset)]
        if not visible:
            return None
        return min(visible, key=lambda r: (r.container[1] - r.container[0], -r.declaration.start_byte))

    def _resolve(self):
        pending, self._pending = self._pending, []
        for name, offset, site in pending:
            record = self.classify(name, offset)
            if record is not None:
                record.mutation_sites.append(site)

    def _declare(
        self,
        identifier: Node,
        binding: str,
        declaration: Node,
        container: Tuple[int, int],
        has_initializer: bool = False,
        is_constant: bool = False,
    ) -> Optional[ScopeRecord]:
        if identifier.type not in ("identifier", "shorthand_property_identifier_pattern"):
            return None
        scope_kind, _ = scope_kind_of(declaration, self.parsed)
        record = ScopeRecord(
            name=self.parsed.text_of(identifier),
            scope_kind=scope_kind,
            binding=binding,
            declaration=declaration,
            has_initializer=has_initializer,
            is_constant=is_constant,
            container=container,
        )
        self._records.append(record)
        self._by_name.setdefault(record.name, []).append(record)
        return record

    def _container_for(self, node: Node, binding: str) -> Tuple[int, int]:
        if binding == "var":
            function = enclosing_function(node)
            scope = function if function is not None else self.parsed.root
        else:
            scope = enclosing(node, ("statement_block", "program", "class_body"))
            if scope is None:
                scope = self.parsed.root
            elif scope.parent is not None and scope.parent.type in (
                "arrow_function", "function_expression", "function", "function_declaration",
                "method_definition", "generator_function", "generator_function_declaration",
            ):
                scope = scope.parent
        return (scope.start_byte, scope.end_byte)

    def _declare_parameters(self, node: Node):
        function = node.parent
        if function is None:
            return
        container = (function.start_byte, function.end_byte)
        for parameter in named_children(node):
            for identifier in pattern_identifiers(parameter):
                self._declare(identifier, "param", function, container)

    def _declare_loop_variable(self, node: Node):
        keyword = field(node, "kind")
        if keyword is None:
            return
        binding = self.parsed.text_of(keyword)
        container = self._container_for(node, binding) if binding == "var" else (node.start_byte, node.end_byte)
        for identifier in pattern_identifiers(field(node, "left")):
            self._declare(identifier, binding, node, container)

    def _declare_imports(self, node: Node):
        container = (self.parsed.root.start_byte, self.parsed.root.end_byte)
        clause = first_child_of_type(node, "import_clause")
        if clause is None:
            return
        for child in named_children(clause):
            if child.type == NodeKind.IDENTIFIER.value:
                self._declare(child, "import", node, container)
            elif child.type == "namespace_import":
                for identifier in named_children(child):
                    self._declare(identifier, "import", node, container)
            elif child.type == "named_imports":
                for specifier in named_children(child):
                    local = field(specifier, "alias") or field(specifier, "name")
                    if local is not None:
                        self._declare(local, "import", node, container)

    def _mutation_targets(self, node: Node) -> List[Tuple[Node, str]]:
        kind = node.type
        if kind in (NodeKind.ASSIGNMENT_EXPRESSION.value, NodeKind.AUGMENTED_ASSIGNMENT_EXPRESSION.value):
            left = field(node, "left")
            operation = "assign" if kind == NodeKind.ASSIGNMENT_EXPRESSION.value else "augmented-assign"
            if left is None:
                return []
            if left.type in PATTERN_KINDS:
                return [(identifier, "destructure") for identifier in pattern_identifiers(left)]
            if left.type == NodeKind.IDENTIFIER.value:
                return [(left, operation)]
            root = root_identifier(left)
            return [(root, "property-" + operation)] if root is not None else []

        if kind == NodeKind.UPDATE_EXPRESSION.value:
            argument = field(node, "argument")
            if argument is not None and argument.type == NodeKind.IDENTIFIER.value:
                return [(argument, "update")]
            root = root_identifier(argument)
            return [(root, "property-update")] if root is not None else []

        if kind == NodeKind.UNARY_EXPRESSION.value:
            operator = field(node, "operator")
            if operator is None or self.parsed.text_of(operator) != "delete":
                return []
            root = root_identifier(field(node, "argument"))
            return [(root, "delete")] if root is not None else []

        if kind == NodeKind.CALL_EXPRESSION.value:
            function = field(node, "function")
            if function is None or function.type != NodeKind.MEMBER_EXPRESSION.value:
                return []
            method = self.parsed.text_of(field(function, "property"))
            if method not in MUTATING_METHODS:
                return []
            root = root_identifier(field(function, "object"))
            return [(root, "call:" + method)] if root is not None else []

        return []


def hook_callback(call: Node) -> Optional[Node]:
    """The function argument of a hook or test call."""
    for argument in call_arguments(call):
        if argument.type in ("arrow_function", "function_expression", "function"):
            return argument
    return None


def enclosing_test_call_names(node: Node, parsed: ParsedFile) -> List[str]:
    """Root names of the framework calls around node, innermost first."""
    names = []
    for parent in ancestors(node):
        if parent.type == NodeKind.CALL_EXPRESSION.value:
            name = test_call_name(parent, parsed)
            if name in HOOK_NAMES or name in TEST_NAMES or name in SUITE_NAMES:
                names.append(name)
    return names


def is_in_hook(node: Node, parsed: ParsedFile, hooks=HOOK_NAMES) -> bool:
    return any(name in hooks for name in enclosing_test_call_names(node, parsed))


def is_in_test(node: Node, parsed: ParsedFile) -> bool:
    return any(name in TEST_NAMES for name in enclosing_test_call_names(node, parsed))
