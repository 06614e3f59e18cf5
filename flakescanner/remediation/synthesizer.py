"""
Fix synthesis.

Turns a finding into textual edits that wrap the offending statement in
the `waitFor` polling helper. The fix is built from three steps, each of
which may contribute edits, contribute nothing, or veto the whole fix:

1. wrap the enclosing expression statement;
2. make the enclosing function `async`;
3. make sure `waitFor` is imported.

A vetoed fix is reported as None so the finding is still shown, just
without a fix.
"""

import logging
from typing import List, Optional

from tree_sitter import Node

from flakescanner.core.findings import EditGroup, FixEdit, edits_overlap
from flakescanner.core.framework import Framework, supports_wait_for
from flakescanner.parsers.javascript import (
    BLOCK_KINDS,
    FUNCTION_KINDS,
    NodeKind,
    ParsedFile,
    ancestors,
    call_arguments,
    enclosing_function,
    field,
    first_child_of_type,
    is_async_function,
    iter_nodes,
    named_children,
    string_value,
    unwrap,
)

logger = logging.getLogger(__name__)

DEFAULT_WAIT_FOR_MODULE = "@testing-library/react"
INCOMPATIBLE_MODULES = ("@testing-library/user-event", "@testing-library/jest-dom")


def is_compatible_module(module: Optional[str]) -> bool:
    """A Testing Library package that exports waitFor."""
    if not module or not module.startswith("@testing-library/"):
        return False
    return not any(module == name or module.startswith(name + "/") for name in INCOMPATIBLE_MODULES)


def require_source(node: Optional[Node], parsed: ParsedFile) -> Optional[str]:
    """Module name of `require('x')` or `require('x').member`."""
    node = unwrap(node)
    while node is not None and node.type == NodeKind.MEMBER_EXPRESSION.value:
        node = field(node, "object")
    if node is None or node.type != NodeKind.CALL_EXPRESSION.value:
        return None
    function = field(node, "function")
    if function is None or parsed.text_of(function) != "require":
        return None
    arguments = call_arguments(node)
    return string_value(arguments[0], parsed) if arguments else None


def pattern_binds(pattern: Node, name: str, parsed: ParsedFile) -> bool:
    """Whether an object pattern binds `name` locally."""
    for prop in named_children(pattern):
        if prop.type == "shorthand_property_identifier_pattern" and parsed.text_of(prop) == name:
            return True
        if prop.type == "pair_pattern" and parsed.text_of(field(prop, "value")) == name:
            return True
        if prop.type == "object_assignment_pattern" and parsed.text_of(field(prop, "left")) == name:
            return True
    return False


class FixSynthesizer:
    """Builds waitFor fixes for one parsed file."""

    def __init__(self, parsed: ParsedFile, framework: Optional[Framework] = None):
        self.parsed = parsed
        self.framework = framework

    def synthesize(self, node: Node) -> Optional[List[FixEdit]]:
        """
        Wrap the statement containing node in `await waitFor(...)`.

        Returns None when any step vetoes or the edits would conflict.
        """
        steps = (self.wrap_step, self.async_step, lambda _node: self.import_step())
        edits: List[FixEdit] = []
        for step in steps:
            contributed = step(node)
            if contributed is None:
                return None
            edits.extend(contributed)
        return self._checked(edits)

    def insert_await(self, node: Node) -> Optional[List[FixEdit]]:
        """Prefix node with `await ` and make its function async."""
        async_edits = self.async_step(node)
        if async_edits is None:
            return None
        edits = [FixEdit(node.start_byte, node.start_byte, "await ", EditGroup.REPLACE)] + async_edits
        return self._checked(edits)

    def replace_with_wait_for(self, node: Node, replacement: str) -> Optional[List[FixEdit]]:
        """Replace node with a `waitFor` expression, adding async and import edits."""
        async_edits = self.async_step(node)
        if async_edits is None:
            return None
        import_edits = self.import_step()
        if import_edits is None:
            return None
        edits = [FixEdit(node.start_byte, node.end_byte, replacement, EditGroup.REPLACE)]
        return self._checked(edits + async_edits + import_edits)

    def wrap_step(self, node: Node) -> Optional[List[FixEdit]]:
        statement = self._expression_statement(node)
        if statement is None:
            return None
        expressions = named_children(statement)
        if not expressions:
            return None
        expression = expressions[0]
        if self._has_direct_await(expression):
            logger.debug("Not wrapping statement with a direct await at byte %d", statement.start_byte)
            return None
        replacement = "await waitFor(() => { %s; });" % self.parsed.text_of(expression)
        return [FixEdit(statement.start_byte, statement.end_byte, replacement, EditGroup.WRAP)]

    def async_step(self, node: Node) -> Optional[List[FixEdit]]:
        function = enclosing_function(node)
        if function is None:
            return None
        if is_async_function(function):
            return []

        if function.type == NodeKind.METHOD_DEFINITION.value:
            name = field(function, "name")
            if name is None:
                return None
            if self.parsed.text_of(name) == "constructor":
                return None
            for child in function.children:
                if child.start_byte >= name.start_byte:
                    break
                if child.type in ("get", "set"):
                    return None
            star = first_child_of_type(function, "*")
            at = star.start_byte if star is not None and star.start_byte < name.start_byte else name.start_byte
            return [FixEdit(at, at, "async ", EditGroup.ASYNC)]

        return [FixEdit(function.start_byte, function.start_byte, "async ", EditGroup.ASYNC)]

    def import_step(self) -> Optional[List[FixEdit]]:
        if not supports_wait_for(self.framework):
            return None

        statements = named_children(self.parsed.root)
        if self._wait_for_bound(statements):
            return []

        for statement in statements:
            if statement.type == NodeKind.IMPORT_STATEMENT.value:
                module = string_value(field(statement, "source"), self.parsed)
                if not is_compatible_module(module):
                    continue
                clause = first_child_of_type(statement, "import_clause")
                named = first_child_of_type(clause, "named_imports")
                if named is not None:
                    return [self._append_specifier(named)]
                if clause is not None:
                    text = "\nimport { waitFor } from '%s';" % module
                    return [FixEdit(statement.end_byte, statement.end_byte, text, EditGroup.IMPORT)]
            elif statement.type in (NodeKind.LEXICAL_DECLARATION.value, NodeKind.VARIABLE_DECLARATION.value):
                for declarator in named_children(statement):
                    name = field(declarator, "name")
                    if (
                        name is not None
                        and name.type == "object_pattern"
                        and is_compatible_module(require_source(field(declarator, "value"), self.parsed))
                    ):
                        return [self._append_specifier(name)]

        if statements:
            anchor = statements[0].start_byte
        else:
            anchor = 0
        if self._uses_commonjs(statements):
            text = "const { waitFor } = require('%s');\n" % DEFAULT_WAIT_FOR_MODULE
        else:
            text = "import { waitFor } from '%s';\n" % DEFAULT_WAIT_FOR_MODULE
        return [FixEdit(anchor, anchor, text, EditGroup.IMPORT)]

    def _checked(self, edits: List[FixEdit]) -> Optional[List[FixEdit]]:
        if edits_overlap(edits):
            logger.debug("Discarding fix with overlapping edits in %s", self.parsed.path)
            return None
        return edits

    def _expression_statement(self, node: Node) -> Optional[Node]:
        if node.type == NodeKind.EXPRESSION_STATEMENT.value:
            return node
        for parent in ancestors(node):
            if parent.type == NodeKind.EXPRESSION_STATEMENT.value:
                return parent
            if parent.type in FUNCTION_KINDS or parent.type in BLOCK_KINDS:
                return None
        return None

    def _has_direct_await(self, expression: Node) -> bool:
        for node in iter_nodes(expression):
            if node.type != NodeKind.AWAIT_EXPRESSION.value:
                continue
            function = enclosing_function(node)
            if function is None or function.start_byte < expression.start_byte:
                return True
        return False

    def _wait_for_bound(self, statements: List[Node]) -> bool:
        require_bindings = set()
        for statement in statements:
            if statement.type == NodeKind.IMPORT_STATEMENT.value:
                clause = first_child_of_type(statement, "import_clause")
                named = first_child_of_type(clause, "named_imports")
                for specifier in named_children(named):
                    local = field(specifier, "alias") or field(specifier, "name")
                    if self.parsed.text_of(local) == "waitFor":
                        return True
                continue
            if statement.type not in (NodeKind.LEXICAL_DECLARATION.value, NodeKind.VARIABLE_DECLARATION.value):
                continue
            for declarator in named_children(statement):
                name = field(declarator, "name")
                value = field(declarator, "value")
                if name is None:
                    continue
                source = require_source(value, self.parsed)
                if name.type == NodeKind.IDENTIFIER.value:
                    if source is not None:
                        require_bindings.add(self.parsed.text_of(name))
                    if self.parsed.text_of(name) == "waitFor" and source is not None:
                        return True
                elif name.type == "object_pattern" and pattern_binds(name, "waitFor", self.parsed):
                    if source is not None or self.parsed.text_of(value) in require_bindings:
                        return True
        return False

    def _append_specifier(self, container: Node) -> FixEdit:
        specifiers = named_children(container)
        if specifiers:
            end = specifiers[-1].end_byte
            return FixEdit(end, end, ", waitFor", EditGroup.IMPORT)
        opening = container.start_byte + 1
        return FixEdit(opening, opening, " waitFor ", EditGroup.IMPORT)

    def _uses_commonjs(self, statements: List[Node]) -> bool:
        has_import = any(statement.type == NodeKind.IMPORT_STATEMENT.value for statement in statements)
        if has_import:
            return False
        for statement in statements:
            for declarator in named_children(statement):
                if declarator.type == NodeKind.VARIABLE_DECLARATOR.value and require_source(
                    field(declarator, "value"), self.parsed
                ) is not None:
                    return True
        return False
