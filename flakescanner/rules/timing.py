"""
Timing rules.

Detects fixed delays, unconditional waits, racing promises and waits on
animations, all of which make a test depend on how fast the machine
running it happens to be.
"""

import re
from typing import List, Optional

from tree_sitter import Node

from flakescanner.core.findings import Confidence, FindingCategory, FixEdit, Severity
from flakescanner.core.framework import Framework
from flakescanner.core.heuristics import animations_disabled, interval_has_exit, looks_like_polling
from flakescanner.core.rules import Detector, RuleMetadata, rule
from flakescanner.core.scope import HOOK_NAMES, TEST_NAMES
from flakescanner.parsers.javascript import (
    FUNCTION_KINDS,
    NodeKind,
    call_arguments,
    call_parts,
    callee_name,
    callee_object,
    enclosing_call,
    field,
    named_children,
    string_value,
    unwrap,
)
from flakescanner.rules.common import framework_message, format_number, is_in_mock_context, numeric_argument

WAIT_HELPER = re.compile(r"^(wait|delay|sleep|pause)$", re.IGNORECASE)

SETUP_TEARDOWN_HOOKS = HOOK_NAMES | {
    "setup", "teardown", "setupTest", "teardownTest", "beforeHook", "afterHook",
}


def promise_executor(node: Node, parsed) -> Optional[Node]:
    """The arrow executor of `new Promise(() => ...)`."""
    if node.type != NodeKind.NEW_EXPRESSION.value:
        return None
    constructor = field(node, "constructor")
    if constructor is None or parsed.text_of(constructor) != "Promise":
        return None
    arguments = call_arguments(node)
    if not arguments or arguments[0].type != NodeKind.ARROW_FUNCTION.value:
        return None
    return arguments[0]


def executor_set_timeout(executor: Node, parsed) -> Optional[Node]:
    """The `setTimeout` call an executor consists of, if that is all it does."""
    body = field(executor, "body")
    if body is None:
        return None
    if body.type == NodeKind.STATEMENT_BLOCK.value:
        statements = named_children(body)
        if len(statements) != 1 or statements[0].type != NodeKind.EXPRESSION_STATEMENT.value:
            return None
        body = named_children(statements[0])[0] if named_children(statements[0]) else None
    if body is None or body.type != NodeKind.CALL_EXPRESSION.value:
        return None
    function = field(body, "function")
    if function is None or function.type != NodeKind.IDENTIFIER.value or parsed.text_of(function) != "setTimeout":
        return None
    return body


def executor_parameter(executor: Node, parsed) -> Optional[str]:
    parameter = field(executor, "parameter")
    if parameter is not None:
        return parsed.text_of(parameter)
    parameters = named_children(field(executor, "parameters"))
    if parameters and parameters[0].type == NodeKind.IDENTIFIER.value:
        return parsed.text_of(parameters[0])
    return None


def in_promise_constructor(call: Node, parsed) -> bool:
    """Whether a call sits directly in the executor of `new Promise(...)`."""
    function = None
    for parent in _ancestors_until_function(call):
        function = parent
    if function is None or function.type != NodeKind.ARROW_FUNCTION.value:
        return False
    holder = function.parent
    if holder is not None and holder.type == "arguments":
        holder = holder.parent
    return holder is not None and promise_executor(holder, parsed) is not None


def _ancestors_until_function(node: Node):
    parent = node.parent
    while parent is not None:
        yield parent
        if parent.type in FUNCTION_KINDS:
            return
        parent = parent.parent


def object_keys(node: Optional[Node], parsed) -> List[str]:
    """Keys of an object literal."""
    if node is None or node.type != NodeKind.OBJECT.value:
        return []
    keys = []
    for prop in named_children(node):
        key = field(prop, "key")
        if key is not None:
            keys.append(string_value(key, parsed) or parsed.text_of(key))
        elif prop.type == "shorthand_property_identifier":
            keys.append(parsed.text_of(prop))
    return keys


def object_value(node: Optional[Node], key: str, parsed) -> Optional[Node]:
    if node is None or node.type != NodeKind.OBJECT.value:
        return None
    for prop in named_children(node):
        prop_key = field(prop, "key")
        if prop_key is not None and (string_value(prop_key, parsed) or parsed.text_of(prop_key)) == key:
            return field(prop, "value")
    return None


@rule
class HardCodedTimeoutDetector(Detector):
    """Detects fixed delays above a threshold."""

    node_kinds = (NodeKind.CALL_EXPRESSION, NodeKind.NEW_EXPRESSION)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-hard-coded-timeout",
            name="Hard-coded timeout",
            description="Disallow hard-coded timeouts in tests.",
            severity=Severity.HIGH,
            confidence=Confidence.HIGH,
            category=FindingCategory.TIMING,
            messages={
                "avoid_hard_timeout": "Avoid hard-coded timeout of {timeout}ms. Use waitFor() or findBy queries instead.",
                "avoid_hard_timeout_playwright": "Avoid hard-coded timeout of {timeout}ms. Use Playwright auto-retrying assertions or page.waitForSelector() instead.",
                "avoid_hard_timeout_cypress": "Avoid hard-coded timeout of {timeout}ms. Use .should() with timeout option or cy.intercept() instead.",
                "avoid_set_interval": "Avoid setInterval in tests. Use polling with waitFor() instead.",
                "avoid_promise_timeout": "Avoid Promise-based timeouts. Use waitFor() utilities instead.",
                "avoid_promise_timeout_playwright": "Avoid Promise-based timeouts. Use Playwright auto-retrying assertions instead.",
                "avoid_promise_timeout_cypress": "Avoid Promise-based timeouts. Use cy.intercept() and cy.wait(@alias) instead.",
                "avoid_cypress_wait": "Avoid cy.wait() with fixed delays. Use cy.intercept() or cy.wait(@alias) instead.",
            },
            tags=["timing", "waits"],
            fixable=True,
        )

    @property
    def max_timeout(self) -> float:
        return self.option("max_timeout", 1000)

    def on_enter(self, node: Node):
        if node.type == NodeKind.NEW_EXPRESSION.value:
            self._check_promise_timeout(node)
            return
        name = callee_name(node, self.parsed)
        function = field(node, "function")
        if function is None:
            return
        if name == "setTimeout":
            self._check_set_timeout(node)
        elif name == "setInterval":
            if not is_in_mock_context(node, self.parsed):
                self.report(node, "avoid_set_interval")
        elif call_parts(node, self.parsed) == ["cy", "wait"]:
            if numeric_argument(node, 0, self.parsed) is not None:
                self.report(node, "avoid_cypress_wait")
        elif function.type == NodeKind.IDENTIFIER.value and WAIT_HELPER.match(name or ""):
            delay = numeric_argument(node, 0, self.parsed)
            if delay is not None and delay >= self.max_timeout:
                self.report(node, "avoid_hard_timeout", {"timeout": format_number(delay)})

    def _check_set_timeout(self, node: Node):
        if is_in_mock_context(node, self.parsed):
            return
        delay = numeric_argument(node, 1, self.parsed)
        if delay is None or delay < self.max_timeout:
            return
        if self.option("allow_in_setup", False) and enclosing_call(node, self.parsed, HOOK_NAMES) is not None:
            return

        message_key = framework_message("avoid_hard_timeout", self.context.framework, {
            Framework.PLAYWRIGHT: "avoid_hard_timeout_playwright",
            Framework.CYPRESS: "avoid_hard_timeout_cypress",
        })
        fix = None
        if not in_promise_constructor(node, self.parsed):
            fix = self._wait_for_fix(node, delay)
        self.report(call_arguments(node)[1], message_key, {"timeout": format_number(delay)}, fix=fix)

    def _wait_for_fix(self, node: Node, delay: float) -> Optional[List[FixEdit]]:
        arguments = call_arguments(node)
        callback = arguments[0]
        if callback.type in (NodeKind.ARROW_FUNCTION.value, NodeKind.FUNCTION_EXPRESSION.value, NodeKind.FUNCTION.value):
            body = field(callback, "body")
            if body is None:
                return None
            if body.type == NodeKind.STATEMENT_BLOCK.value:
                inner = self.text_of(body)[1:-1].strip()
                wait_callback = "async () => {\n  %s\n}" % inner
            else:
                wait_callback = "async () => %s" % self.text_of(body)
        else:
            wait_callback = "async () => {\n  %s\n}" % self.text_of(callback)
        replacement = "await waitFor(%s, { timeout: %s })" % (wait_callback, format_number(delay))
        return self.context.synthesizer.replace_with_wait_for(node, replacement)

    def _check_promise_timeout(self, node: Node):
        executor = promise_executor(node, self.parsed)
        if executor is None:
            return
        timer = executor_set_timeout(executor, self.parsed)
        if timer is None:
            return
        delay = numeric_argument(timer, 1, self.parsed)
        if delay is None or delay < self.max_timeout:
            return
        message_key = framework_message("avoid_promise_timeout", self.context.framework, {
            Framework.PLAYWRIGHT: "avoid_promise_timeout_playwright",
            Framework.CYPRESS: "avoid_promise_timeout_cypress",
        })
        self.report(node, message_key)


@rule
class UnconditionalWaitDetector(Detector):
    """Detects waits that do not wait for any particular condition."""

    node_kinds = (NodeKind.CALL_EXPRESSION, NodeKind.AWAIT_EXPRESSION)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-unconditional-wait",
            name="Unconditional wait",
            description="Disallow unconditional waits that don't wait for specific conditions.",
            severity=Severity.MEDIUM,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.TIMING,
            messages={
                "avoid_unconditional_wait": "Avoid unconditional wait. Wait for specific conditions instead.",
                "use_wait_for": "Use waitFor() with an assertion instead of fixed delay.",
                "wait_without_condition": "Wait for specific elements or conditions instead of arbitrary delays.",
                "exceeds_max_timeout": "Timeout of {timeout}ms exceeds maximum allowed timeout of {max_timeout}ms.",
            },
            tags=["timing", "waits"],
        )

    def on_enter(self, node: Node):
        if node.type == NodeKind.AWAIT_EXPRESSION.value:
            argument = unwrap(named_children(node)[0]) if named_children(node) else None
            if argument is not None:
                self._check_promise_with_timeout(argument)
            return

        name = callee_name(node, self.parsed)
        if name in (self.option("allowed_methods", []) or []):
            return

        function = field(node, "function")
        if function is None:
            return
        parts = call_parts(node, self.parsed)
        if parts == ["cy", "wait"]:
            self._check_fixed_wait(node, 0, "avoid_unconditional_wait", require_number=True)
        elif name == "setTimeout":
            self._check_set_timeout(node)
        elif name == "setInterval" and function.type == NodeKind.IDENTIFIER.value:
            self._check_set_interval(node)
        elif name == "waitFor":
            self._check_wait_for(node)
        elif name == "waitForTimeout" and re.search(r"page|frame|context", self.text_of(callee_object(node))):
            self._check_fixed_wait(node, 0, "avoid_unconditional_wait")
        elif parts in (["browser", "pause"], ["driver", "sleep"], ["Thread", "sleep"]):
            self._check_fixed_wait(node, 0, "avoid_unconditional_wait")
        elif function.type == NodeKind.IDENTIFIER.value and WAIT_HELPER.match(name or ""):
            self._check_fixed_wait(node, 0, "use_wait_for", require_number=True)

    def _in_setup_hook(self, node: Node) -> bool:
        if not self.option("allow_in_setup", True):
            return False
        return enclosing_call(node, self.parsed, SETUP_TEARDOWN_HOOKS) is not None

    def _exceeds_max_timeout(self, node: Node, timeout: Optional[float]) -> bool:
        """Report a timeout over the configured maximum; True when reported."""
        max_timeout = self.option("max_timeout")
        if timeout is None or not max_timeout or timeout <= max_timeout:
            return False
        self.report(node, "exceeds_max_timeout", {
            "timeout": format_number(timeout),
            "max_timeout": format_number(max_timeout),
        })
        return True

    def _check_fixed_wait(self, node: Node, index: int, message_key: str, require_number: bool = False):
        timeout = numeric_argument(node, index, self.parsed)
        if require_number and timeout is None:
            return
        if self._exceeds_max_timeout(node, timeout) or self._in_setup_hook(node):
            return
        self.report(node, message_key)

    def _check_set_timeout(self, node: Node):
        if is_in_mock_context(node, self.parsed):
            return
        if self._exceeds_max_timeout(node, numeric_argument(node, 1, self.parsed)):
            return
        if self._in_setup_hook(node):
            return

        for parent in _ancestors_until_function(node):
            if looks_like_polling(self.text_of(parent)):
                return
            if promise_executor(parent, self.parsed) is not None:
                return
            if parent.type == NodeKind.ARROW_FUNCTION.value:
                holder = parent.parent
                if holder is not None and holder.type == "arguments":
                    holder = holder.parent
                if holder is not None and promise_executor(holder, self.parsed) is not None:
                    return
        self.report(node, "use_wait_for")

    def _check_set_interval(self, node: Node):
        if is_in_mock_context(node, self.parsed):
            return
        if self._exceeds_max_timeout(node, numeric_argument(node, 1, self.parsed)):
            return
        if self._in_setup_hook(node):
            return
        arguments = call_arguments(node)
        if arguments and interval_has_exit(self.text_of(arguments[0])):
            return
        self.report(node, "wait_without_condition")

    def _check_promise_with_timeout(self, node: Node):
        executor = promise_executor(node, self.parsed)
        if executor is None:
            return
        body = field(executor, "body")
        if body is not None and body.type == NodeKind.CALL_EXPRESSION.value:
            timer = executor_set_timeout(executor, self.parsed)
            if timer is None:
                return
            if self._exceeds_max_timeout(node, numeric_argument(timer, 1, self.parsed)):
                return
            arguments = call_arguments(timer)
            resolver = executor_parameter(executor, self.parsed)
            if (
                arguments
                and arguments[0].type == NodeKind.IDENTIFIER.value
                and resolver is not None
                and self.text_of(arguments[0]) == resolver
                and not self._in_setup_hook(node)
            ):
                self.report(node, "use_wait_for")
        elif body is not None and body.type == NodeKind.STATEMENT_BLOCK.value:
            if re.search(r"if\s*\(|check|poll|retry", self.text_of(body)):
                return
            if executor_set_timeout(executor, self.parsed) is not None and not self._in_setup_hook(node):
                self.report(node, "use_wait_for")

    def _check_wait_for(self, node: Node):
        arguments = call_arguments(node)
        if not arguments or arguments[0].type != NodeKind.ARROW_FUNCTION.value:
            return
        body = field(arguments[0], "body")
        if body is None or body.type != NodeKind.STATEMENT_BLOCK.value:
            return
        statements = named_children(body)
        has_assertion = any(
            statement.type == "return_statement"
            or re.search(r"expect|assert|should|getBy|findBy|queryBy", self.text_of(statement))
            for statement in statements
        )
        if has_assertion or self._in_setup_hook(node):
            return
        self.report(node, "use_wait_for")


HELPER_WORDS = ("helper", "util", "create", "setup", "factory", "mock")
TEST_BLOCK_NAMES = TEST_NAMES | {"describe", "beforeEach", "afterEach", "beforeAll", "afterAll"}
RACE_TIMEOUT_PATTERNS = [
    re.compile(r"new Promise\([^)]*setTimeout.*reject", re.IGNORECASE),
    re.compile(r"rejectAfter\(\d+\)", re.IGNORECASE),
    re.compile(r"setTimeout.*reject", re.IGNORECASE),
    re.compile(r"timeoutPromise", re.IGNORECASE),
    re.compile(r"timeout\(", re.IGNORECASE),
]


@rule
class PromiseRaceDetector(Detector):
    """Detects `Promise.race` in test code."""

    node_kinds = (NodeKind.CALL_EXPRESSION,)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-promise-race",
            name="Promise race",
            description="Avoid Promise.race which can cause non-deterministic test results.",
            severity=Severity.MEDIUM,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.PROMISE_RACE,
            messages={
                "avoid_promise_race": "Avoid Promise.race() in tests as it can cause non-deterministic results. Use Promise.all() or sequential awaits instead.",
                "use_proper_timeout": "Use test framework timeout utilities instead of Promise.race() for timeouts.",
            },
            tags=["timing", "promises"],
        )

    def on_enter(self, node: Node):
        if call_parts(node, self.parsed) != ["Promise", "race"]:
            return
        if self.option("allow_in_helpers", True) and self._in_helper_function(node):
            return

        arguments = call_arguments(node)
        if arguments and arguments[0].type == NodeKind.ARRAY.value:
            has_timeout = any(
                pattern.search(self.text_of(element))
                for element in named_children(arguments[0])
                for pattern in RACE_TIMEOUT_PATTERNS
            )
            if has_timeout:
                if not self.option("allow_with_timeout", False):
                    self.report(node, "use_proper_timeout")
                return
        self.report(node, "avoid_promise_race")

    def _in_helper_function(self, node: Node) -> bool:
        parent = node.parent
        while parent is not None:
            if parent.type in (
                NodeKind.FUNCTION_DECLARATION.value,
                NodeKind.FUNCTION_EXPRESSION.value,
                NodeKind.FUNCTION.value,
                NodeKind.ARROW_FUNCTION.value,
            ):
                if parent.type == NodeKind.FUNCTION_DECLARATION.value:
                    name = self.text_of(field(parent, "name")).lower()
                    if name in ("test", "it", "describe"):
                        return False
                    if any(word in name for word in HELPER_WORDS):
                        return True
                holder = parent.parent
                if holder is not None and holder.type == NodeKind.VARIABLE_DECLARATOR.value:
                    name = self.text_of(field(holder, "name")).lower()
                    if any(word in name for word in HELPER_WORDS):
                        return True
                if enclosing_call(parent, self.parsed, TEST_BLOCK_NAMES) is None:
                    return True
            parent = parent.parent
        return False


ANIMATION_EVENTS = frozenset(event.lower() for event in (
    "transitionend", "animationend", "transitionstart", "animationstart",
    "transitioncancel", "animationcancel", "transitionrun", "animationiteration",
    "webkitTransitionEnd", "webkitAnimationEnd", "oTransitionEnd", "oAnimationEnd",
    "msTransitionEnd", "msAnimationEnd", "mozTransitionEnd", "mozAnimationEnd",
))
JQUERY_ANIMATIONS = frozenset({
    "fadeIn", "fadeOut", "fadeToggle", "fadeTo", "slideUp", "slideDown",
    "slideToggle", "animate", "show", "hide", "toggle",
})
GSAP_OBJECTS = frozenset({"TweenMax", "TweenLite", "gsap", "TimelineMax", "TimelineLite"})
GSAP_METHODS = frozenset({"to", "from", "fromTo", "set", "timeline"})
GSAP_CALLBACKS = frozenset({"onComplete", "onStart", "onUpdate", "onRepeat", "onReverseComplete"})
ANIMATION_HELPERS = (
    "waitForAnimation", "waitForAnimations", "waitForTransition",
    "waitForTransitions", "waitForCSSAnimation", "waitForCSSTransition",
)
CYPRESS_ANIMATION_COMMANDS = frozenset({"waitForAnimations", "waitForAnimation", "ensureAnimations"})
ANIMATION_COMMENT = re.compile(r"animation|transition|css|fade|slide", re.IGNORECASE)
ANIMATION_ASSERTION_HINT = re.compile(r"opacity|transform|transition|animation|fade|slide|collapse|expand", re.IGNORECASE)
ANIMATION_ASSERTION = re.compile(
    r"toHaveStyle.*opacity|toHaveClass.*(fade|slide|collapse|transition|animate)", re.IGNORECASE
)
SPRING_STATE = re.compile(r"animating|isAnimating|animated", re.IGNORECASE)
SPRING_VALUE = re.compile(r"getValue\(\)|spring\.", re.IGNORECASE)
FUNCTION_ARGUMENT_KINDS = (NodeKind.ARROW_FUNCTION.value, NodeKind.FUNCTION_EXPRESSION.value, NodeKind.FUNCTION.value)


@rule
class AnimationWaitDetector(Detector):
    """
    Detects waits tied to animation timing: transition events, animation
    library callbacks, animation frames and assertions on animated styles.

    Nothing is reported when the file disables animations and
    `allow_if_animations_disabled` is on.
    """

    node_kinds = (NodeKind.CALL_EXPRESSION, NodeKind.MEMBER_EXPRESSION)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-animation-wait",
            name="Animation wait",
            description="Avoid waiting for animations which can have variable timing.",
            severity=Severity.MEDIUM,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.ANIMATION,
            messages={
                "avoid_animation_wait": "Avoid waiting for animations. Disable animations in tests or use stable conditions.",
                "avoid_transition_wait": "Avoid waiting for CSS transitions. Disable transitions in tests or use stable conditions.",
                "avoid_animation_frame": "Avoid waiting for animation frames. Consider using stable conditions instead.",
            },
            tags=["timing", "animation"],
        )

    def reset(self, context):
        super().reset(context)
        self._skip = self.option("allow_if_animations_disabled", True) and animations_disabled(context.text)
        self._ignore = [re.compile(pattern) for pattern in self.option("ignore_patterns", []) or []]

    def on_enter(self, node: Node):
        if self._skip:
            return
        if node.type == NodeKind.MEMBER_EXPRESSION.value:
            self._check_finished(node)
            return
        if self._ignore and any(pattern.search(self.text_of(node)) for pattern in self._ignore):
            return
        message_key, target = self._classify_call(node)
        if message_key:
            self.report(target, message_key)

    def _classify_call(self, node: Node):
        parsed = self.parsed
        function = field(node, "function")
        if function is None:
            return None, None
        name = callee_name(node, parsed)
        obj = callee_object(node)
        obj_name = self.text_of(obj) if obj is not None and obj.type == NodeKind.IDENTIFIER.value else None
        arguments = call_arguments(node)
        is_member = function.type == NodeKind.MEMBER_EXPRESSION.value

        if is_member and name in ("addEventListener", "waitFor") and arguments:
            event = string_value(arguments[0], parsed)
            if event is not None and event.lower() in ANIMATION_EVENTS:
                return "avoid_transition_wait", node

        if is_member and name in JQUERY_ANIMATIONS and len(arguments) >= 2:
            if arguments[-1].type in FUNCTION_ARGUMENT_KINDS:
                return "avoid_animation_wait", node

        if obj_name == "Velocity" or (not is_member and name == "Velocity"):
            if len(arguments) >= 3 and "complete" in object_keys(arguments[2], parsed):
                return "avoid_animation_wait", node

        if obj_name in GSAP_OBJECTS and name in GSAP_METHODS and arguments:
            if GSAP_CALLBACKS.intersection(object_keys(arguments[-1], parsed)):
                return "avoid_animation_wait", node

        if is_member and name == "start" and node.parent is not None and node.parent.type == NodeKind.AWAIT_EXPRESSION.value:
            framer_controls = obj_name == "controls" or (
                obj is not None
                and obj.type == NodeKind.CALL_EXPRESSION.value
                and callee_name(obj, parsed) == "useAnimation"
            )
            if framer_controls:
                return "avoid_animation_wait", node.parent

        custom = tuple(self.option("custom_animation_patterns", []) or [])
        if not is_member and name in ANIMATION_HELPERS + custom:
            return "avoid_animation_wait", node

        if name == "requestAnimationFrame" and not self.option("allow_animation_frame", False):
            return "avoid_animation_frame", node

        if obj_name in ("page", "frame"):
            if name == "waitForTimeout" and self._has_animation_comment(node):
                return "avoid_animation_wait", node
            if name == "waitForSelector" and len(arguments) >= 2:
                state = object_value(arguments[1], "state", parsed)
                if string_value(state, parsed) == "visible":
                    return "avoid_animation_wait", node

        if obj_name == "cy" and name in CYPRESS_ANIMATION_COMMANDS:
            return "avoid_animation_wait", node

        if not is_member and name == "waitFor" and arguments and arguments[0].type in FUNCTION_ARGUMENT_KINDS:
            body_text = self.text_of(field(arguments[0], "body"))
            if ANIMATION_ASSERTION_HINT.search(body_text) and ANIMATION_ASSERTION.search(body_text):
                return "avoid_animation_wait", node
            if SPRING_STATE.search(body_text) or SPRING_VALUE.search(body_text):
                return "avoid_animation_wait", node

        return None, None

    def _has_animation_comment(self, node: Node) -> bool:
        """A comment directly above the statement holding node mentions animation."""
        statement = node
        while statement.parent is not None and statement.parent.type not in ("statement_block", "program"):
            statement = statement.parent
        previous = statement.prev_sibling
        while previous is not None and previous.type == NodeKind.COMMENT.value:
            if ANIMATION_COMMENT.search(self.text_of(previous)):
                return True
            previous = previous.prev_sibling
        return False

    def _check_finished(self, node: Node):
        if self.text_of(field(node, "property")) != "finished":
            return
        parent = node.parent
        if parent is None:
            return
        if parent.type == NodeKind.AWAIT_EXPRESSION.value:
            self.report(parent, "avoid_animation_wait")
        elif (
            parent.type == NodeKind.MEMBER_EXPRESSION.value
            and self.text_of(field(parent, "property")) == "then"
            and parent.parent is not None
            and parent.parent.type == NodeKind.CALL_EXPRESSION.value
        ):
            self.report(parent.parent, "avoid_animation_wait")
