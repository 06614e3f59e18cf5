"""
Selector and layout rules.

These detect queries that depend on element order, on long literal
text, or on the size of the browser window. They are opt-in: the
patterns are brittle rather than racy, so they are not part of the
recommended preset.
"""

import re
from typing import Optional

from tree_sitter import Node

from flakescanner.core.findings import Confidence, EditGroup, FindingCategory, FixEdit, Severity
from flakescanner.core.heuristics import looks_dynamic
from flakescanner.core.rules import Detector, RuleMetadata, rule
from flakescanner.parsers.javascript import (
    FUNCTION_KINDS,
    NodeKind,
    ancestors,
    call_arguments,
    callee_name,
    callee_object,
    field,
    named_children,
    number_value,
    same_node,
    string_value,
)
from flakescanner.rules.common import format_number

NTH_CHILD = re.compile(r":nth-child\((\d+)\)")
FIRST_LAST_CHILD = re.compile(r":(first|last)-child")
DATA_INDEX = re.compile(r"\[data-index=[\"'](\d+)[\"']\]")
CYPRESS_EQ = re.compile(r":eq\((\d+)\)")
LOCATOR_OBJECT = re.compile(r"locator|page\.|frame\.|element", re.IGNORECASE)


@rule
class IndexQueriesDetector(Detector):
    """Detects elements picked by position instead of by identity."""

    node_kinds = (NodeKind.CALL_EXPRESSION, NodeKind.SUBSCRIPT_EXPRESSION, NodeKind.TEMPLATE_STRING)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-index-queries",
            name="Index-based queries",
            description="Avoid selecting elements by their position in the document.",
            severity=Severity.LOW,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.SELECTOR,
            messages={
                "avoid_nth_child": "Avoid :nth-child({index}) selector. Use data-testid or accessible queries instead.",
                "avoid_index_access": "Avoid accessing elements by index [{index}]. Use data-testid or find specific element.",
                "avoid_first_last": "Avoid :{pseudo} selector. Use more specific queries.",
                "avoid_array_index": "Avoid accessing query results by index. Use getBy* for single elements or more specific queries.",
                "avoid_data_index": "Avoid data-index attributes. Use data-testid with meaningful names instead.",
            },
            tags=["selector", "brittle"],
            enabled_by_default=False,
        )

    def on_enter(self, node: Node):
        if node.type == NodeKind.CALL_EXPRESSION.value:
            self._check_call(node)
        elif node.type == NodeKind.SUBSCRIPT_EXPRESSION.value:
            self._check_subscript(node)
        else:
            self._check_selector(node, self.text_of(node)[1:-1])

    def _check_selector(self, node: Node, selector: str):
        match = NTH_CHILD.search(selector)
        if match:
            self.report(node, "avoid_nth_child", {"index": match.group(1)})
        match = FIRST_LAST_CHILD.search(selector)
        if match:
            self.report(node, "avoid_first_last", {"pseudo": match.group(1) + "-child"})
        if DATA_INDEX.search(selector):
            self.report(node, "avoid_data_index")

    def _check_call(self, node: Node):
        function = field(node, "function")
        if function is None or function.type != NodeKind.MEMBER_EXPRESSION.value:
            return
        method = callee_name(node, self.parsed)
        arguments = call_arguments(node)
        first = arguments[0] if arguments else None

        if method in ("querySelector", "querySelectorAll") and first is not None:
            if first.type == NodeKind.STRING.value:
                self._check_selector(first, string_value(first, self.parsed))
            return

        index = number_value(first, self.parsed)
        if method in ("eq", "get", "nth") and index is not None:
            self.report(node, "avoid_index_access", {"index": format_number(index)})
            return

        if method == "get" and self.text_of(callee_object(node)) == "cy" and first is not None:
            match = CYPRESS_EQ.search(string_value(first, self.parsed) or "")
            if match:
                self.report(first, "avoid_index_access", {"index": match.group(1)})
            return

        if method in ("first", "last") and LOCATOR_OBJECT.search(self.text_of(callee_object(node))):
            self.report(node, "avoid_first_last", {"pseudo": method})

    def _check_subscript(self, node: Node):
        index = number_value(field(node, "index"), self.parsed)
        if index is None:
            return
        obj = field(node, "object")
        if obj is None:
            return
        data = {"index": format_number(index)}

        if obj.type == NodeKind.MEMBER_EXPRESSION.value:
            if self.text_of(field(obj, "property")) in ("childNodes", "children"):
                self.report(node, "avoid_index_access", data)
            return
        if obj.type != NodeKind.CALL_EXPRESSION.value:
            return

        method = callee_name(obj, self.parsed) or ""
        receiver = self.text_of(callee_object(obj))
        if method.startswith("getElementsBy") and callee_object(obj) is not None:
            self.report(node, "avoid_index_access", data)
        elif method.startswith("getAllBy") and receiver in ("", "screen"):
            self.report(node, "avoid_array_index")


TEXT_QUERY = re.compile(r"^(get|find|query)(All)?ByText$")
TEST_ID_QUERY = re.compile(r"^(get|find|query)(All)?ByTestId$")
ASSERTION_MATCHER = re.compile(r"^to(Be|Equal|Match|Have|Contain)")
TEMPLATE_SUBSTITUTION = re.compile(r"\$\{[^}]+\}")


def clean_template(text: str) -> str:
    """Template text without backticks, each substitution counted as one character."""
    return TEMPLATE_SUBSTITUTION.sub("X", text.replace("`", ""))


@rule
class LongTextMatchDetector(Detector):
    """
    Detects element queries and assertions that match on long literal
    text.

    Copy changes and translations break such tests even though the
    behaviour under test is unchanged.
    """

    node_kinds = (NodeKind.CALL_EXPRESSION, NodeKind.TEMPLATE_STRING)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-long-text-match",
            name="Long text match",
            description="Avoid matching elements on long exact text.",
            severity=Severity.LOW,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.TEXT_MATCH,
            messages={
                "text_too_long": "Text match of {length} characters is too long and brittle. Use partial matches or data-testid.",
                "avoid_exact_match": "Exact matching of long dynamic content is fragile.",
                "use_partial_match": "Use partial text matching or regex for long content.",
            },
            tags=["selector", "brittle"],
            fixable=True,
            enabled_by_default=False,
        )

    @property
    def max_length(self) -> int:
        return self.option("max_length", 50)

    def on_enter(self, node: Node):
        if node.type == NodeKind.TEMPLATE_STRING.value:
            self._check_assertion_template(node)
        else:
            self._check_query(node)

    def _text_query(self, node: Node) -> Optional[str]:
        """The query name when node is a text query on a supported receiver."""
        method = callee_name(node, self.parsed) or ""
        function = field(node, "function")
        receiver = callee_object(node)
        if self.option("ignore_test_ids", False) and TEST_ID_QUERY.match(method):
            return None
        if function.type == NodeKind.IDENTIFIER.value and TEXT_QUERY.match(method):
            return method
        if receiver is None:
            return None
        receiver_text = self.text_of(receiver)
        if TEXT_QUERY.match(method) and (
            receiver_text == "screen"
            or (receiver.type == NodeKind.CALL_EXPRESSION.value and callee_name(receiver, self.parsed) == "within")
        ):
            return method
        if receiver_text == "page" and method in ("getByText", "locator"):
            return method
        if method == "contains":
            return method
        return None

    def _partial_match(self, node: Node, first: Node) -> bool:
        if first.type == NodeKind.REGEX.value:
            return True
        if first.type == NodeKind.CALL_EXPRESSION.value and callee_name(first, self.parsed) == "RegExp":
            return True
        arguments = call_arguments(node)
        if len(arguments) < 2 or arguments[1].type != NodeKind.OBJECT.value:
            return False
        for pair in named_children(arguments[1]):
            if self.text_of(field(pair, "key")) == "exact" and self.text_of(field(pair, "value")) == "false":
                return True
        return False

    def _check_query(self, node: Node):
        function = field(node, "function")
        if function is None:
            return
        method = self._text_query(node)
        if method is None:
            return
        arguments = call_arguments(node)
        if not arguments:
            return
        first = arguments[0]
        on_page = self.text_of(callee_object(node)) == "page"
        partial_allowed = TEXT_QUERY.match(method) is not None and not on_page
        if partial_allowed and self.option("allow_partial_match", True) and self._partial_match(node, first):
            return

        if method == "locator":
            value = string_value(first, self.parsed) if first.type == NodeKind.STRING.value else None
            if value is not None and value.startswith("text="):
                self._check_text(first, value[len("text="):])
            return
        if first.type == NodeKind.STRING.value:
            fix = None
            if len(arguments) == 1 and partial_allowed:
                fix = [FixEdit(first.end_byte, first.end_byte, ", { exact: false }", EditGroup.REPLACE)]
            self._check_text(first, string_value(first, self.parsed), fix)
        elif first.type == NodeKind.REGEX.value and method != "contains":
            pattern = self.text_of(field(first, "pattern"))
            self._check_text(first, pattern)
        elif first.type == NodeKind.TEMPLATE_STRING.value and method != "contains":
            self._check_text(first, clean_template(self.text_of(first)))

    def _check_text(self, node: Node, text: str, fix=None):
        if len(text) <= self.max_length:
            return
        key = "avoid_exact_match" if looks_dynamic(text) else "text_too_long"
        self.report(node, key, {"length": len(text), "max_length": self.max_length}, fix=fix)

    def _check_assertion_template(self, node: Node):
        cleaned = clean_template(self.text_of(node))
        if len(cleaned) <= self.max_length:
            return
        for parent in ancestors(node):
            if parent.type != NodeKind.CALL_EXPRESSION.value:
                continue
            function = field(parent, "function")
            if function is not None and function.type == NodeKind.MEMBER_EXPRESSION.value:
                if ASSERTION_MATCHER.match(self.text_of(field(function, "property"))):
                    self.report(node, "use_partial_match", {"length": len(cleaned), "max_length": self.max_length})
                    return


VIEWPORT_PROPERTIES = {
    "window": ("viewport", ("innerWidth", "innerHeight", "outerWidth", "outerHeight")),
    "screen": ("screen", ("width", "height", "availWidth", "availHeight")),
    "visualViewport": ("viewport", ("width", "height")),
    "document.documentElement": ("viewport", ("clientWidth", "clientHeight")),
    "document.body": ("viewport", ("clientWidth", "clientHeight", "offsetWidth", "offsetHeight")),
}
WINDOW_SCROLL = ("scrollY", "scrollX", "pageYOffset", "pageXOffset")
ELEMENT_SCROLL = ("scrollTop", "scrollLeft", "scrollHeight", "scrollWidth")
ELEMENT_LIKE_NAMES = ("mock", "stub", "spy", "element", "container", "node", "target", "div")
RESPONSIVE_TEST = re.compile(
    r"describe.*['\"`](?:.*responsive|viewport|breakpoint|mobile|tablet|desktop|screen\s*size|media\s*query)",
    re.IGNORECASE,
)


@rule
class ViewportDependentDetector(Detector):
    """
    Detects reads of window, screen and scroll dimensions.

    Reads that happen after the test pinned the viewport (Playwright
    `setViewportSize`, Cypress `cy.viewport`) are allowed, so the check
    follows source order.
    """

    node_kinds = (
        NodeKind.MEMBER_EXPRESSION,
        NodeKind.CALL_EXPRESSION,
        NodeKind.NEW_EXPRESSION,
        NodeKind.ASSIGNMENT_EXPRESSION,
        NodeKind.BINARY_EXPRESSION,
        NodeKind.VARIABLE_DECLARATOR,
    )

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-viewport-dependent",
            name="Viewport dependent",
            description="Avoid assertions that depend on the size of the browser window.",
            severity=Severity.LOW,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.VIEWPORT,
            messages={
                "avoid_viewport_check": "Avoid viewport-dependent checks. Tests may fail on different screen sizes. Property: {property}",
                "avoid_screen_check": "Screen dimension checks can fail on different screen sizes. Property: {property}",
                "avoid_bounding_rect": "getBoundingClientRect checks are viewport-dependent",
                "avoid_resize_listener": "Resize event listeners are viewport-dependent",
                "avoid_media_query": "Media query checks can fail on different screen sizes.",
                "use_fixed_viewport": "Set a fixed viewport size before viewport-dependent assertions.",
                "avoid_scroll_check": "Scroll-based checks depend on viewport size.",
            },
            tags=["viewport", "layout"],
            enabled_by_default=False,
        )

    def reset(self, context):
        super().reset(context)
        self._viewport_set = False
        self._responsive = self.option("allow_responsive_tests", False) and bool(RESPONSIVE_TEST.search(context.text))
        self._reported_spans = set()

    def _report_once(self, node: Node, message_key: str, data=None):
        span = (node.start_byte, node.end_byte)
        if span in self._reported_spans:
            return
        self._reported_spans.add(span)
        self.report(node, message_key, data)

    def _viewport_property(self, node: Optional[Node]):
        """(kind, dotted name) for a viewport dimension read."""
        if node is None or node.type != NodeKind.MEMBER_EXPRESSION.value:
            return None
        obj = self.text_of(field(node, "object"))
        prop = self.text_of(field(node, "property"))
        entry = VIEWPORT_PROPERTIES.get(obj)
        if entry is None or prop not in entry[1]:
            return None
        return entry[0], "%s.%s" % (obj, prop)

    def _report_property(self, node: Node, info):
        kind, name = info
        key = "avoid_screen_check" if kind == "screen" else "avoid_viewport_check"
        self._report_once(node, key, {"property": name})

    def on_enter(self, node: Node):
        if self._responsive:
            return
        handler = {
            NodeKind.MEMBER_EXPRESSION.value: self._check_member,
            NodeKind.CALL_EXPRESSION.value: self._check_call,
            NodeKind.NEW_EXPRESSION.value: self._check_new,
            NodeKind.ASSIGNMENT_EXPRESSION.value: self._check_assignment,
            NodeKind.BINARY_EXPRESSION.value: self._check_binary,
            NodeKind.VARIABLE_DECLARATOR.value: self._check_declarator,
        }[node.type]
        handler(node)

    def _is_resize_listener(self, node: Node) -> bool:
        if node.type == NodeKind.ASSIGNMENT_EXPRESSION.value:
            return self.text_of(field(node, "left")) == "window.onresize"
        if node.type == NodeKind.CALL_EXPRESSION.value and callee_name(node, self.parsed) == "addEventListener":
            arguments = call_arguments(node)
            return bool(arguments) and string_value(arguments[0], self.parsed) == "resize"
        return False

    def _check_member(self, node: Node):
        info = self._viewport_property(node)
        if info is not None and not self._read_only(node):
            if not (self.option("allow_viewport_setup", True) and self._viewport_set):
                self._report_property(node, info)

        prop = self.text_of(field(node, "property"))
        obj = field(node, "object")
        window_scroll = self.text_of(obj) == "window" and prop in WINDOW_SCROLL
        if window_scroll or (prop in ELEMENT_SCROLL and not self._element_like(obj)):
            self._report_once(node, "avoid_scroll_check")

    def _read_only(self, node: Node) -> bool:
        """Reads left to the binary/declarator handlers, logged, or inside a resize handler."""
        parent = node.parent
        if parent is None:
            return False
        if parent.type == NodeKind.BINARY_EXPRESSION.value:
            return True
        if parent.type == NodeKind.VARIABLE_DECLARATOR.value and same_node(field(parent, "value"), node):
            return True
        if parent.type == "arguments" and parent.parent is not None:
            if self.text_of(callee_object(parent.parent)) == "console":
                return True
        if parent.type == "pair":
            return True
        return any(self._is_resize_listener(ancestor) for ancestor in ancestors(node))

    def _element_like(self, obj: Optional[Node]) -> bool:
        if obj is None:
            return False
        if obj.type == NodeKind.MEMBER_EXPRESSION.value:
            obj = field(obj, "object")
        if obj is None or obj.type != NodeKind.IDENTIFIER.value:
            return False
        name = self.text_of(obj).lower()
        return any(name.startswith(allowed) for allowed in ELEMENT_LIKE_NAMES)

    def _check_call(self, node: Node):
        function = field(node, "function")
        if function is None:
            return
        name = callee_name(node, self.parsed)
        receiver = self.text_of(callee_object(node))
        if function.type == NodeKind.IDENTIFIER.value and name == "matchMedia":
            if not self.option("ignore_media_queries", False):
                self._report_once(node, "avoid_media_query")
            return
        if function.type != NodeKind.MEMBER_EXPRESSION.value:
            return
        if name in ("setViewportSize", "setViewport") or (receiver == "cy" and name == "viewport"):
            self._viewport_set = True
        elif receiver == "window" and name == "matchMedia":
            if not self.option("ignore_media_queries", False):
                self._report_once(node, "avoid_media_query")
        elif name == "getBoundingClientRect":
            if "document.documentElement" in receiver or "document.body" in receiver:
                self._report_once(node, "avoid_bounding_rect")
        elif self._is_resize_listener(node):
            self._report_once(node, "avoid_resize_listener")

    def _check_new(self, node: Node):
        constructor = self.text_of(field(node, "constructor"))
        if constructor == "ResizeObserver":
            self._report_once(node, "avoid_viewport_check", {"property": "ResizeObserver"})
        elif constructor == "IntersectionObserver":
            if not (self.option("allow_viewport_setup", True) and self._viewport_set):
                self._report_once(node, "avoid_viewport_check", {"property": "IntersectionObserver"})

    def _check_assignment(self, node: Node):
        if self._is_resize_listener(node):
            self._report_once(node, "avoid_resize_listener")

    def _in_declaration(self, node: Node) -> bool:
        for parent in ancestors(node):
            if parent.type == NodeKind.VARIABLE_DECLARATOR.value:
                return True
            if parent.type in FUNCTION_KINDS:
                return False
        return False

    def _check_binary(self, node: Node):
        in_declaration = self._in_declaration(node)
        for side in (field(node, "left"), field(node, "right")):
            info = self._viewport_property(side)
            if info is None:
                continue
            if in_declaration:
                self._report_once(side, "use_fixed_viewport")
            else:
                self._report_property(side, info)

    def _check_declarator(self, node: Node):
        value = field(node, "value")
        info = self._viewport_property(value)
        if info is not None:
            self._report_property(value, info)
            return
        name = field(node, "name")
        source = self.text_of(value)
        if name is None or name.type != "object_pattern" or source not in ("window", "screen"):
            return
        for prop in named_children(name):
            key = prop if prop.type == "shorthand_property_identifier_pattern" else field(prop, "key")
            key_text = self.text_of(key)
            if key_text in VIEWPORT_PROPERTIES[source][1]:
                self._report_property(prop, (VIEWPORT_PROPERTIES[source][0], "%s.%s" % (source, key_text)))
