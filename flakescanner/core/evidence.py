"""
Evidence gathering over sibling statements.

Some findings are only actionable when the code leading up to them shows
that the asserted state is the result of an interaction: an absence check
right after a click, for example, is a race, but one that opens a test is
just a precondition. The analyzer scans the statements that precede a node
in its enclosing block and reports what it found.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Set, Tuple

from tree_sitter import Node

from flakescanner.parsers.javascript import (
    BLOCK_KINDS,
    NodeKind,
    ParsedFile,
    ancestors,
    call_arguments,
    call_parts,
    callee_name,
    enclosing,
    field,
    iter_nodes,
    named_children,
    regex_pattern,
    statement_of,
    string_value,
    unwrap,
)

QUERY_NAME = re.compile(r"^(get|query|find)(All)?By(\w+)$")

PAGE_ACTIONS = frozenset({
    "click", "dblclick", "fill", "press", "type", "check", "uncheck",
    "hover", "tap", "selectOption", "setInputFiles",
})
CYPRESS_ACTIONS = frozenset({"click", "dblclick", "type", "check", "uncheck", "select", "trigger", "clear"})

# (query suffix, literal argument)
Target = Tuple[str, str]


@dataclass
class EvidenceWindow:
    """Sibling statements of the enclosing block and the candidate's index."""
    statements: List[Node]
    index: int


@dataclass
class Evidence:
    """Facts established from the statements preceding a candidate."""
    has_trigger: bool = False
    has_prior_assertion: bool = False
    target: Optional[Target] = None

    @property
    def sufficient(self) -> bool:
        """A trigger, plus a prior positive check when the target is identifiable."""
        if not self.has_trigger:
            return False
        return self.target is None or self.has_prior_assertion


def query_target(call: Optional[Node], parsed: ParsedFile) -> Optional[Target]:
    """Identify `*By<Suffix>('literal')` or `*By<Suffix>(/regex/)` queries."""
    call = unwrap(call)
    if call is None or call.type != NodeKind.CALL_EXPRESSION.value:
        return None
    match = QUERY_NAME.match(callee_name(call, parsed) or "")
    if not match:
        return None
    arguments = call_arguments(call)
    if not arguments:
        return None
    value = string_value(arguments[0], parsed)
    if value is None:
        pattern = regex_pattern(arguments[0], parsed)
        if pattern is None:
            return None
        value = "/%s/" % pattern
    return match.group(3), value


def chain_root_name(call: Node, parsed: ParsedFile) -> Optional[str]:
    """Base identifier of a call chain: `cy.get('x').click()` gives `cy`."""
    node = field(call, "function")
    while node is not None:
        if node.type == NodeKind.IDENTIFIER.value:
            return parsed.text_of(node)
        if node.type == NodeKind.MEMBER_EXPRESSION.value:
            node = field(node, "object")
        elif node.type == NodeKind.CALL_EXPRESSION.value:
            node = field(node, "function")
        elif node.type in ("await_expression", "parenthesized_expression"):
            node = unwrap(node)
        else:
            return None
    return None


class EvidenceAnalyzer:
    """Backward scanner over the statements of one file."""

    def __init__(self, parsed: ParsedFile):
        self.parsed = parsed
        self._user_event_instances: Optional[Set[str]] = None

    def find_enclosing_statement_list(self, node: Node) -> Optional[EvidenceWindow]:
        block = enclosing(node, BLOCK_KINDS)
        if block is None:
            return None
        statement = statement_of(node)
        statements = named_children(block)
        for index, candidate in enumerate(statements):
            if candidate.start_byte == statement.start_byte and candidate.end_byte == statement.end_byte:
                return EvidenceWindow(statements=statements, index=index)
        return None

    def has_prior_evidence(self, node: Node, predicate: Callable[[Node], bool]) -> bool:
        """Whether any statement before the node's statement satisfies predicate."""
        window = self.find_enclosing_statement_list(node)
        if window is None or window.index == 0:
            return False
        return any(predicate(statement) for statement in reversed(window.statements[:window.index]))

    def gather(self, node: Node, target: Optional[Node] = None) -> Evidence:
        """Collect trigger and prior-assertion facts for a candidate node."""
        evidence = Evidence(target=query_target(target, self.parsed))
        evidence.has_trigger = self.has_prior_evidence(node, self.is_trigger)
        if evidence.target is not None:
            evidence.has_prior_assertion = self.has_prior_evidence(
                node, lambda statement: self.confirms_target(statement, evidence.target)
            )
        return evidence

        for statement in reversed(window.statements[:window.index]):
            if not evidence.has_trigger and self.is_trigger(statement):
                evidence.has_trigger = True
            if (
                evidence.target is not None
                and not evidence.has_prior_assertion
                and self.confirms_target(statement, evidence.target)
            ):
                evidence.has_prior_assertion = True
            if evidence.has_trigger and (evidence.target is None or evidence.has_prior_assertion):
                break
        return evidence

    @property
    def user_event_instances(self) -> Set[str]:
        """Names bound to `userEvent.setup()` anywhere in the file."""
        if self._user_event_instances is None:
            names = set()
            for node in iter_nodes(self.parsed.root):
                if node.type != NodeKind.VARIABLE_DECLARATOR.value:
                    continue
                value = unwrap(field(node, "value"))
                name = field(node, "name")
                if (
                    value is not None
                    and name is not None
                    and name.type == NodeKind.IDENTIFIER.value
                    and value.type == NodeKind.CALL_EXPRESSION.value
                    and call_parts(value, self.parsed) == ["userEvent", "setup"]
                ):
                    names.add(self.parsed.text_of(name))
            self._user_event_instances = names
        return self._user_event_instances

    def is_trigger(self, statement: Node) -> bool:
        """Whether a statement simulates a user interaction."""
        for node in iter_nodes(statement):
            if node.type == NodeKind.CALL_EXPRESSION.value and self._is_interaction(node):
                return True
        return False

    def confirms_target(self, statement: Node, target: Target) -> bool:
        """A retrieval or positive presence assertion of the same target."""
        for node in iter_nodes(statement):
            if node.type != NodeKind.CALL_EXPRESSION.value:
                continue
            if query_target(node, self.parsed) != target:
                continue
            name = callee_name(node, self.parsed) or ""
            if name.startswith(("get", "find")):
                return True
            if name.startswith("query") and self._in_positive_expect(node, statement):
                return True
        return False

    def _is_interaction(self, call: Node) -> bool:
        parts = call_parts(call, self.parsed)
        name = callee_name(call, self.parsed)
        if parts:
            head = parts[0]
            if head in ("fireEvent", "userEvent") and len(parts) > 1:
                return parts[1] != "setup"
            if head in self.user_event_instances and len(parts) > 1:
                return True
            if parts == ["act"]:
                return True
            if head == "page" and parts[-1] in PAGE_ACTIONS:
                return True
        if name in CYPRESS_ACTIONS and chain_root_name(call, self.parsed) == "cy":
            return True
        if name == "click" and not call_arguments(call):
            return True
        return False

    def _in_positive_expect(self, node: Node, statement: Node) -> bool:
        expect_call = None
        for parent in ancestors(node):
            if parent.type == NodeKind.CALL_EXPRESSION.value and callee_name(parent, self.parsed) == "expect":
                expect_call = parent
                break
            if parent.start_byte == statement.start_byte and parent.end_byte == statement.end_byte:
                return False
        if expect_call is None:
            return False
        for parent in ancestors(expect_call):
            if parent.type == NodeKind.MEMBER_EXPRESSION.value:
                if self.parsed.text_of(field(parent, "property")) == "not":
                    return False
            if parent.start_byte == statement.start_byte and parent.end_byte == statement.end_byte:
                break
        return True
