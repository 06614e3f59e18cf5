"""
Asynchronous flow rules.

Detects interactions whose promises are dropped, and assertions that run
before the state they check has settled: immediately after an action,
on elements that are being removed, or on focus.
"""

import re
from typing import Optional

from tree_sitter import Node

from flakescanner.core.findings import Confidence, FindingCategory, Severity
from flakescanner.core.rules import Detector, RuleMetadata, rule
from flakescanner.parsers.javascript import (
    BLOCK_KINDS,
    FUNCTION_KINDS,
    NodeKind,
    call_arguments,
    callee_name,
    callee_object,
    enclosing_call,
    field,
    is_async_function,
    member_parts,
    named_children,
    same_node,
    string_value,
    unwrap,
)

USER_EVENT_METHODS = frozenset({
    "click", "dblClick", "tripleClick", "type", "clear", "selectOptions",
    "deselectOptions", "upload", "tab", "hover", "unhover", "paste", "keyboard",
})
FIRE_EVENT_METHODS = frozenset({
    "click", "change", "input", "submit", "focus", "blur",
    "keyDown", "keyUp", "keyPress", "mouseDown", "mouseUp",
})
PAGE_METHODS = frozenset({
    "click", "fill", "type", "press", "check", "uncheck", "selectOption",
    "setInputFiles", "focus", "hover", "tap", "dragAndDrop", "goto", "reload",
    "waitForSelector", "waitForTimeout", "waitForLoadState", "screenshot", "newPage",
})
PAGE_OBJECTS = frozenset({"page", "browser", "context", "frame"})
ELEMENT_METHODS = frozenset({"click", "focus", "blur", "submit", "type"})
ELEMENT_OBJECT = re.compile(r"element|button|input|link|field|checkbox|radio", re.IGNORECASE)
QUERY_OBJECT = re.compile(r"getBy|queryBy|findBy|screen\.", re.IGNORECASE)

WAIT_CALLS = frozenset({"waitFor", "waitForElement", "wait"})


def expect_call_of(assertion: Node, parsed) -> Optional[Node]:
    """The `expect(...)` call at the base of an assertion chain."""
    node = field(assertion, "function")
    while node is not None:
        if node.type == NodeKind.MEMBER_EXPRESSION.value:
            node = field(node, "object")
        elif node.type == NodeKind.CALL_EXPRESSION.value:
            if callee_name(node, parsed) == "expect":
                return node
            node = field(node, "function")
        else:
            return None
    return None


def is_expect_call(node: Optional[Node], parsed) -> bool:
    """`expect(x)` itself or any call chained on it."""
    node = unwrap(node)
    if node is None or node.type != NodeKind.CALL_EXPRESSION.value:
        return False
    return callee_name(node, parsed) == "expect" or expect_call_of(node, parsed) is not None


def is_negated(assertion: Node, parsed) -> bool:
    """Whether the matcher is called through `.not`."""
    obj = callee_object(assertion)
    return obj is not None and obj.type == NodeKind.MEMBER_EXPRESSION.value and parsed.text_of(field(obj, "property")) == "not"


def is_promise_handled(call: Node, parsed) -> bool:
    """Whether the promise a call returns is awaited, returned, chained or stored."""
    parent = call.parent
    if parent is None:
        return False
    if parent.type in (NodeKind.AWAIT_EXPRESSION.value, "return_statement", NodeKind.VARIABLE_DECLARATOR.value):
        return True
    if parent.type == NodeKind.ARROW_FUNCTION.value and same_node(field(parent, "body"), call):
        return True
    if parent.type == NodeKind.MEMBER_EXPRESSION.value:
        grandparent = parent.parent
        if (
            parsed.text_of(field(parent, "property")) in ("then", "catch")
            and grandparent is not None
            and grandparent.type == NodeKind.CALL_EXPRESSION.value
        ):
            return True
    if parent.type == "arguments" and parent.parent is not None:
        holder = parent.parent
        if callee_name(holder, parsed) == "expect" and holder.parent is not None:
            chained = holder.parent
            if chained.type == NodeKind.MEMBER_EXPRESSION.value and parsed.text_of(field(chained, "property")) in (
                "rejects", "resolves",
            ):
                return True
    return False


@rule
class AwaitAsyncEventsDetector(Detector):
    """Detects async interactions whose promise is not awaited."""

    node_kinds = (NodeKind.CALL_EXPRESSION,)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="await-async-events",
            name="Await async events",
            description="Enforce awaiting async user events and actions.",
            severity=Severity.HIGH,
            confidence=Confidence.HIGH,
            category=FindingCategory.ASYNC,
            messages={
                "missing_await": "{method} must be awaited to prevent race conditions",
                "missing_await_fire_event": "fireEvent.{method} should be awaited",
                "missing_await_user_event": "userEvent.{method} must be awaited",
                "missing_await_act": "act() with async callback must be awaited",
                "missing_await_page": "Playwright page.{method} must be awaited",
                "missing_await_element": "Element interaction {method} must be awaited",
            },
            tags=["async", "events"],
            fixable=True,
        )

    def on_enter(self, node: Node):
        match = self._classify(node)
        if match is None or is_promise_handled(node, self.parsed):
            return
        message_key, method = match
        fix = self.context.synthesizer.insert_await(node)
        self.report(node, message_key, {"method": method}, fix=fix)

    def _classify(self, node: Node):
        function = field(node, "function")
        if function is None:
            return None

        if function.type == NodeKind.IDENTIFIER.value:
            name = self.text_of(function)
            if name == "act":
                arguments = call_arguments(node)
                if arguments and arguments[0].type in FUNCTION_KINDS and is_async_function(arguments[0]):
                    return "missing_await_act", name
            elif name in (self.option("custom_async_methods", []) or []):
                return "missing_await", name
            return None

        if function.type != NodeKind.MEMBER_EXPRESSION.value:
            return None
        method = self.text_of(field(function, "property"))
        obj = field(function, "object")
        obj_name = self.text_of(obj) if obj is not None and obj.type == NodeKind.IDENTIFIER.value else None

        if method in USER_EVENT_METHODS and (
            obj_name == "userEvent" or obj_name in self.context.evidence.user_event_instances
        ):
            return "missing_await_user_event", method
        if obj_name == "fireEvent" and method in FIRE_EVENT_METHODS:
            return "missing_await_fire_event", method
        if obj_name in PAGE_OBJECTS and method in PAGE_METHODS:
            return "missing_await_page", method
        if method in ELEMENT_METHODS:
            obj_text = self.text_of(obj)
            if ELEMENT_OBJECT.search(obj_text) or QUERY_OBJECT.search(obj_text):
                return "missing_await_element", method
        return None


STATE_CHANGING = ("setState", "setProps", "dispatch", "commit", "click", "type", "change",
                  "submit", "fireEvent", "userEvent", "simulate", "trigger")
STATE_METHODS = ("setState", "dispatch", "commit", "setProps")
STATE_TEXT = re.compile(r"state|store|props", re.IGNORECASE)
TEST_ID_QUERY = re.compile(r"getByTestId|queryByTestId|findByTestId|data-testid", re.IGNORECASE)


@rule
class ImmediateAssertionsDetector(Detector):
    """
    Detects an assertion in the statement directly after a state-changing
    call, where the new state may not have been rendered yet.
    """

    node_kinds = (NodeKind.EXPRESSION_STATEMENT,)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-immediate-assertions",
            name="Immediate assertions",
            description="Prevent assertions immediately after state changes without waiting.",
            severity=Severity.MEDIUM,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.ASYNC,
            messages={
                "needs_wait_for": "Assertion immediately after {action} needs waitFor() wrapper",
                "needs_wait_for_state": "State assertion after {action} should use waitFor()",
                "needs_wait_for_dom": "DOM assertion after action should use waitFor() or findBy query",
            },
            tags=["async", "assertions"],
            fixable=True,
        )

    def on_enter(self, node: Node):
        if not self.option("require_wait_for", True):
            return
        expressions = named_children(node)
        if not expressions:
            return
        expression = expressions[0]
        if expression.type == "sequence_expression":
            self._check_sequence(expression)
        else:
            self._check_next_statement(node, expression)

    def _is_state_changing(self, node: Optional[Node]) -> bool:
        if node is None or node.type != NodeKind.CALL_EXPRESSION.value:
            return False
        allowed = self.option("allowed_after_operations", []) or []
        function = field(node, "function")
        if function is None:
            return False
        if function.type == NodeKind.IDENTIFIER.value:
            name = self.text_of(function)
            return name not in allowed and any(pattern in name for pattern in STATE_CHANGING)
        if function.type != NodeKind.MEMBER_EXPRESSION.value:
            return False
        method = self.text_of(field(function, "property"))
        obj = field(function, "object")
        obj_name = self.text_of(obj) if obj is not None and obj.type == NodeKind.IDENTIFIER.value else None
        if method in allowed or (obj_name and "%s.%s" % (obj_name, method) in allowed):
            return False
        if obj_name in STATE_CHANGING:
            return True
        return any(pattern in method for pattern in STATE_CHANGING)

    def _action_name(self, call: Node) -> str:
        function = field(call, "function")
        if function is not None and function.type == NodeKind.IDENTIFIER.value:
            return self.text_of(function)
        if function is not None and function.type == NodeKind.MEMBER_EXPRESSION.value:
            obj = field(function, "object")
            obj_name = self.text_of(obj) if obj is not None and obj.type == NodeKind.IDENTIFIER.value else "action"
            return "%s.%s" % (obj_name, self.text_of(field(function, "property")))
        return "action"

    def _skipped(self, assertion: Node) -> bool:
        if enclosing_call(assertion, self.parsed, WAIT_CALLS) is not None:
            return True
        return self.option("ignore_data_test_id", False) and TEST_ID_QUERY.search(self.text_of(assertion)) is not None

    def _check_next_statement(self, statement: Node, expression: Node):
        parent = statement.parent
        if parent is None or parent.type not in BLOCK_KINDS:
            return
        if not self._is_state_changing(expression):
            return
        statements = named_children(parent)
        index = next(
            (i for i, candidate in enumerate(statements) if same_node(candidate, statement)),
            None,
        )
        if index is None or index + 1 >= len(statements):
            return
        following = statements[index + 1]
        if following.type != NodeKind.EXPRESSION_STATEMENT.value:
            return
        assertion = named_children(following)[0] if named_children(following) else None
        if not is_expect_call(assertion, self.parsed) or self._skipped(assertion):
            return

        message_key = "needs_wait_for"
        assertion_text = self.text_of(assertion)
        function = field(expression, "function")
        if function.type == NodeKind.IDENTIFIER.value:
            if self.text_of(function) == "setState" and re.search(r"state", assertion_text, re.IGNORECASE):
                message_key = "needs_wait_for_state"
        elif self.text_of(field(function, "property")) in STATE_METHODS and STATE_TEXT.search(assertion_text):
            message_key = "needs_wait_for_state"

        self.report(
            following,
            message_key,
            {"action": self._action_name(expression)},
            fix=self.context.synthesizer.synthesize(following),
        )

    def _check_sequence(self, sequence: Node):
        expressions = named_children(sequence)
        for current, following in zip(expressions, expressions[1:]):
            if not self._is_state_changing(current) or not is_expect_call(following, self.parsed):
                continue
            if self.option("ignore_data_test_id", False) and TEST_ID_QUERY.search(self.text_of(following)):
                continue
            self.report(following, "needs_wait_for_dom")


REMOVAL_WAITS = frozenset({"waitFor", "waitForElementToBeRemoved"})
NULL_MATCHERS = frozenset({"toBeNull", "toBeUndefined", "toBeFalsy"})
EQUALITY_OPERATORS = frozenset({"===", "==", "!=", "!=="})


def is_query_call(node: Optional[Node], parsed, allow_selector: bool = False) -> bool:
    """`queryBy*` style calls, optionally `querySelector` too."""
    node = unwrap(node)
    if node is None or node.type != NodeKind.CALL_EXPRESSION.value:
        return False
    name = callee_name(node, parsed) or ""
    return name.startswith("query") if not allow_selector else (name.startswith("query") or name == "querySelector")


@rule
class ElementRemovalCheckDetector(Detector):
    """
    Detects synchronous assertions that an element is gone.

    An absence assertion is only a race when something in the same block
    made the element go away: the statements before it must show an
    interaction and, when the queried target can be named, that the same
    target was present earlier. Without that evidence the finding is an
    advisory with no fix.
    """

    node_kinds = (NodeKind.CALL_EXPRESSION, NodeKind.UNARY_EXPRESSION, NodeKind.BINARY_EXPRESSION)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-element-removal-check",
            name="Element removal check",
            description="Avoid checking for element removal as timing can vary.",
            severity=Severity.HIGH,
            confidence=Confidence.HIGH,
            category=FindingCategory.ELEMENT_REMOVAL,
            messages={
                "avoid_removal_check": "Checking for element removal can be flaky. Use waitForElementToBeRemoved or wait for a positive condition instead.",
                "use_wait_for_removal": "Avoid checking for null/undefined without proper waiting. Wrap in waitFor() to handle timing.",
                "avoid_not_in_document": "Avoid .not.toBeInTheDocument() without proper waiting.",
                "avoid_not_visible": "Avoid .not.toBeVisible() without proper waiting. Wrap in waitFor() to handle timing.",
                "no_evidence": "Absence check without a preceding interaction on the same element. If the element is removed asynchronously, wait for the removal.",
            },
            tags=["async", "dom"],
            fixable=True,
        )

    def on_enter(self, node: Node):
        if node.type == NodeKind.UNARY_EXPRESSION.value:
            self._check_document_contains(node)
        elif node.type == NodeKind.BINARY_EXPRESSION.value:
            self._check_null_comparison(node)
        else:
            self._check_assertion(node)

    def _check_assertion(self, node: Node):
        matcher = callee_name(node, self.parsed)
        expect_call = expect_call_of(node, self.parsed)
        if matcher is None or expect_call is None:
            return
        arguments = call_arguments(expect_call)
        target = arguments[0] if arguments else None
        negated = is_negated(node, self.parsed)

        if matcher == "toBeInTheDocument" and negated:
            message_key = "avoid_not_in_document"
        elif matcher == "toBeVisible" and negated:
            message_key = "avoid_not_visible"
        elif matcher in NULL_MATCHERS and not negated and is_query_call(target, self.parsed, allow_selector=True):
            message_key = "use_wait_for_removal"
        elif matcher == "toBeDefined" and negated and is_query_call(target, self.parsed):
            message_key = "use_wait_for_removal"
        else:
            return

        if enclosing_call(node, self.parsed, REMOVAL_WAITS) is not None:
            return

        evidence = self.context.evidence.gather(node, target)
        if not evidence.sufficient:
            self.report(node, "no_evidence", confidence=Confidence.LOW)
            return
        self.report(node, message_key, fix=self.context.synthesizer.synthesize(node))

    def _check_document_contains(self, node: Node):
        if self.text_of(field(node, "operator")) != "!":
            return
        argument = field(node, "argument")
        if argument is not None and argument.type == NodeKind.CALL_EXPRESSION.value:
            if member_parts(field(argument, "function"), self.parsed) == ["document", "contains"]:
                self.report(node, "avoid_removal_check")

    def _check_null_comparison(self, node: Node):
        if self.text_of(field(node, "operator")) not in EQUALITY_OPERATORS:
            return
        left, right = field(node, "left"), field(node, "right")
        if left is None or right is None:
            return
        if left.type == "null":
            other = right
        elif right.type == "null":
            other = left
        else:
            return
        if is_query_call(other, self.parsed):
            self.report(node, "use_wait_for_removal")


FOCUS_MATCHERS = frozenset({"toHaveFocus", "toBeFocused", "toHaveFocusedElement"})
FOCUS_SELECTOR_METHODS = frozenset({"querySelector", "querySelectorAll", "matches", "locator"})
ARIA_FOCUS_ATTRIBUTES = frozenset({"aria-focused", "aria-activedescendant"})
MOCKED_OBJECT = re.compile(r"mock|stub|spy|jest\.fn")


@rule
class FocusCheckDetector(Detector):
    """Detects assertions on focus state, which depends on timing and on the window having focus."""

    node_kinds = (NodeKind.CALL_EXPRESSION, NodeKind.MEMBER_EXPRESSION)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-focus-check",
            name="Focus check",
            description="Prevent focus-dependent assertions that can be affected by timing and environment.",
            severity=Severity.MEDIUM,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.FOCUS,
            messages={
                "avoid_focus_check": "Focus checks can be flaky. Wrap in waitFor() or avoid if possible.",
                "use_wait_for_focus": "Use waitFor() when checking focus state.",
                "avoid_active_element": "document.activeElement checks are timing-dependent.",
            },
            tags=["async", "focus"],
            fixable=True,
        )

    def _allowed_in_wait_for(self, node: Node) -> bool:
        return self.option("allow_with_wait_for", True) and enclosing_call(node, self.parsed, WAIT_CALLS) is not None

    def on_enter(self, node: Node):
        if node.type == NodeKind.MEMBER_EXPRESSION.value:
            self._check_active_element(node)
            return
        name = callee_name(node, self.parsed)
        if name in FOCUS_MATCHERS and callee_object(node) is not None:
            if not self._allowed_in_wait_for(node):
                self.report(node, "avoid_focus_check", fix=self.context.synthesizer.synthesize(node))
        elif name == "focus" and callee_object(node) is not None:
            if not MOCKED_OBJECT.search(self.text_of(callee_object(node))):
                self.report(node, "use_wait_for_focus")
        elif name in FOCUS_SELECTOR_METHODS and callee_object(node) is not None:
            arguments = call_arguments(node)
            if arguments and string_value(arguments[0], self.parsed) == ":focus":
                self.report(node, "avoid_focus_check")
        elif name == "focused" and member_parts(field(node, "function"), self.parsed) == ["cy", "focused"]:
            self.report(node, "avoid_focus_check")
        elif name == "expect" and field(node, "function").type == NodeKind.IDENTIFIER.value:
            self._check_focus_attribute(node)

    def _check_focus_attribute(self, node: Node):
        arguments = call_arguments(node)
        if not arguments:
            return
        subject = arguments[0]
        focus_related = False
        if subject.type == NodeKind.MEMBER_EXPRESSION.value:
            focus_related = self.text_of(field(subject, "property")) == "tabIndex"
        elif subject.type == NodeKind.CALL_EXPRESSION.value:
            method = callee_name(subject, self.parsed)
            attribute = call_arguments(subject)
            value = string_value(attribute[0], self.parsed) if attribute else None
            if method == "getAttribute":
                focus_related = value in ("tabindex", "tabIndex")
            elif method == "hasAttribute":
                focus_related = value in ARIA_FOCUS_ATTRIBUTES
        if focus_related and not self._allowed_in_wait_for(node):
            self.report(node, "avoid_focus_check", fix=self.context.synthesizer.synthesize(node))

    def _check_active_element(self, node: Node):
        if member_parts(node, self.parsed) != ["document", "activeElement"]:
            return
        expect_call = enclosing_call(node, self.parsed, ("expect",))
        if expect_call is None or self._allowed_in_wait_for(expect_call):
            return
        self.report(node, "avoid_active_element", fix=self.context.synthesizer.synthesize(node))
