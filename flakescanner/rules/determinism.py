"""
Determinism rules.

Detects values that change from run to run (random numbers, clocks,
generated ids, unseeded fake-data libraries) and focused or skipped
tests that silently shrink the suite.
"""

import fnmatch
from typing import Optional

from tree_sitter import Node

from flakescanner.core.findings import Confidence, EditGroup, FindingCategory, FixEdit, Severity
from flakescanner.core.heuristics import library_is_seeded
from flakescanner.core.rules import Detector, RuleMetadata, rule
from flakescanner.core.scope import is_in_hook
from flakescanner.parsers.javascript import (
    NodeKind,
    ancestors,
    call_arguments,
    callee_name,
    field,
    member_parts,
    string_value,
)
from flakescanner.rules.common import is_in_mock_context

RANDOM_SETUP_HOOKS = frozenset({"beforeEach", "beforeAll", "before", "beforeHook", "setup"})
CRYPTO_RANDOM_METHODS = frozenset({"randomUUID", "randomBytes", "randomInt", "getRandomValues"})
UUID_FUNCTIONS = frozenset({"uuid", "uuidv4", "nanoid", "shortid", "generateUUID"})
LODASH_RANDOM_METHODS = frozenset({"random", "sample", "shuffle"})
SEEDED_LIBRARIES = {
    "faker": ("seed", "setSeed"),
    "chance": ("seed",),
    "casual": ("seed", "setSeed"),
}


@rule
class RandomDataDetector(Detector):
    """Detects random values, wall-clock reads and generated ids."""

    node_kinds = (NodeKind.MEMBER_EXPRESSION, NodeKind.CALL_EXPRESSION, NodeKind.NEW_EXPRESSION)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-random-data",
            name="Random data",
            description="Avoid non-deterministic random data generation in tests.",
            severity=Severity.MEDIUM,
            confidence=Confidence.HIGH,
            category=FindingCategory.RANDOMNESS,
            messages={
                "avoid_random": "Avoid Math.random() in tests. Use fixed values or seeded random.",
                "avoid_date_now": "Avoid Date.now() in tests. Use fixed timestamps.",
                "avoid_new_date": "Avoid new Date() without arguments. Use fixed dates.",
                "avoid_uuid": "Avoid generating random UUIDs. Use fixed test IDs.",
                "avoid_performance_now": "Avoid performance.now() in tests. Use fixed timing values.",
                "avoid_crypto_random": "Avoid crypto random methods in tests. Use fixed values or seeded random.",
                "use_seed": "Use a seeded random generator like {library}.seed() instead of unseeded {library}.",
            },
            tags=["determinism", "randomness"],
        )

    def reset(self, context):
        super().reset(context)
        allow_seeded = self.option("allow_seeded_random", True)
        self._seeded = {
            library for library in SEEDED_LIBRARIES
            if allow_seeded and library_is_seeded(context.text, library)
        }
        if allow_seeded and "new Chance(" in context.text and "new Chance()" not in context.text:
            self._seeded.add("chance")

    def on_enter(self, node: Node):
        if self.option("allow_in_setup", False) and is_in_hook(node, self.parsed, RANDOM_SETUP_HOOKS):
            return
        if node.type == NodeKind.MEMBER_EXPRESSION.value:
            self._check_member(node)
        elif node.type == NodeKind.NEW_EXPRESSION.value:
            if self.text_of(field(node, "constructor")) == "Date" and not call_arguments(node):
                if not self._mocked(node):
                    self.report(node, "avoid_new_date")
        else:
            self._check_call(node)

    def _mocked(self, node: Node) -> bool:
        """Whether the nearest call around node is a mock or mock setup."""
        if node.type == NodeKind.CALL_EXPRESSION.value:
            return is_in_mock_context(node, self.parsed)
        for parent in ancestors(node):
            if parent.type == NodeKind.CALL_EXPRESSION.value:
                return is_in_mock_context(parent, self.parsed)
        return False

    def _seeding(self, node: Node) -> bool:
        """Math.random() passed into a `.seed(...)` call."""
        for parent in ancestors(node):
            if parent.type != NodeKind.CALL_EXPRESSION.value:
                continue
            function = field(parent, "function")
            if function is not None and function.type == NodeKind.MEMBER_EXPRESSION.value:
                if self.text_of(field(function, "property")) == "seed":
                    return True
        return False

    def _check_member(self, node: Node):
        obj = self.text_of(field(node, "object"))
        prop = self.text_of(field(node, "property"))
        if obj == "Math" and prop == "random":
            if self.option("allow_seeded_random", True) and self._seeding(node):
                return
            if not self._mocked(node):
                self.report(node, "avoid_random")
            return
        seed_methods = SEEDED_LIBRARIES.get(obj)
        if seed_methods is not None and prop not in seed_methods and obj not in self._seeded:
            self.report(node, "use_seed", {"library": obj})

    def _check_call(self, node: Node):
        parts = member_parts(field(node, "function"), self.parsed)
        name = callee_name(node, self.parsed)
        if name in (self.option("allowed_methods", []) or []):
            return
        if parts == ["Date", "now"]:
            if not self._mocked(node):
                self.report(node, "avoid_date_now")
        elif parts == ["performance", "now"]:
            self.report(node, "avoid_performance_now")
        elif parts is not None and len(parts) == 2 and parts[0] == "crypto" and parts[1] in CRYPTO_RANDOM_METHODS:
            self.report(node, "avoid_crypto_random")
        elif parts is not None and len(parts) == 1 and parts[0] in UUID_FUNCTIONS:
            self.report(node, "avoid_uuid")
        elif parts in (["uuid", "v4"], ["uuid", "v1"]):
            self.report(node, "avoid_uuid")
        elif parts is not None and len(parts) == 2 and parts[0] == "_" and parts[1] in LODASH_RANDOM_METHODS:
            self.report(node, "avoid_random")


FOCUS_BASES = frozenset({"test", "it", "describe", "suite", "context"})
FOCUSED_METHODS = frozenset({"fdescribe", "fit", "ftest", "fcontext", "fsuite"})
SKIPPED_METHODS = frozenset({"xdescribe", "xit", "xtest", "xcontext", "xsuite"})


def matches_pattern(name: str, pattern: str) -> bool:
    if "*" in pattern:
        return fnmatch.fnmatchcase(name, pattern)
    return name == pattern


@rule
class FocusedTestDetector(Detector):
    """
    Detects `.only`, `.skip`, `.todo` and the `f`/`x` prefixed test
    functions.

    The fix removes the modifier or the prefix, leaving the plain test
    call in place.
    """

    node_kinds = (NodeKind.CALL_EXPRESSION,)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-test-focus",
            name="Focused or skipped test",
            description="Prevent focused or skipped tests that can cause incomplete test runs.",
            severity=Severity.HIGH,
            confidence=Confidence.HIGH,
            category=FindingCategory.TEST_FOCUS,
            messages={
                "no_test_only": "Unexpected {method}.only - this will cause other tests to be skipped",
                "no_test_skip": "Unexpected {method}.skip - this test will not run",
                "no_focused_test": "Unexpected focused test ({method}) - this will cause other tests to be skipped",
                "no_skipped_test": "Unexpected skipped test ({method}) - this test will not run",
            },
            tags=["determinism", "focus"],
            fixable=True,
        )

    def on_enter(self, node: Node):
        function = field(node, "function")
        if function is None:
            return
        if function.type == NodeKind.IDENTIFIER.value:
            self._check_prefixed(node, function)
        elif function.type in (NodeKind.MEMBER_EXPRESSION.value, NodeKind.SUBSCRIPT_EXPRESSION.value):
            self._check_modifier(function)

    def _looks_like_test(self, node: Node) -> bool:
        arguments = field(node, "arguments")
        if arguments is not None and arguments.type == NodeKind.TEMPLATE_STRING.value:
            return True
        positional = call_arguments(node)
        return bool(positional) and positional[0].type in (NodeKind.STRING.value, NodeKind.TEMPLATE_STRING.value)

    def _check_prefixed(self, node: Node, callee: Node):
        name = self.text_of(callee)
        allow_only = self.option("allow_only", False)
        allow_skip = self.option("allow_skip", False)

        if not allow_only:
            if name in FOCUSED_METHODS and self._looks_like_test(node):
                self.report(node, "no_focused_test", {"method": name}, fix=self._drop_prefix(callee))
                return
            for pattern in self.option("custom_focus_patterns", []) or []:
                if matches_pattern(name, pattern):
                    fix = self._rename_custom(callee, name, "f", "Only", ".only")
                    self.report(node, "no_focused_test", {"method": name}, fix=fix)
                    return

        if not allow_skip:
            if name in SKIPPED_METHODS and self._looks_like_test(node):
                self.report(node, "no_skipped_test", {"method": name}, fix=self._drop_prefix(callee))
                return
            for pattern in self.option("custom_skip_patterns", []) or []:
                if matches_pattern(name, pattern):
                    fix = self._rename_custom(callee, name, "x", "Skip", ".skip")
                    self.report(node, "no_skipped_test", {"method": name}, fix=fix)
                    return

    def _check_modifier(self, callee: Node):
        obj = field(callee, "object")
        base = self.text_of(obj)
        if base not in FOCUS_BASES:
            return
        if callee.type == NodeKind.SUBSCRIPT_EXPRESSION.value:
            modifier = string_value(field(callee, "index"), self.parsed)
        else:
            modifier = self.text_of(field(callee, "property"))

        if modifier == "only" and not self.option("allow_only", False):
            self.report(callee, "no_test_only", {"method": base}, fix=self._drop_modifier(callee, obj))
        elif modifier in ("skip", "todo") and not self.option("allow_skip", False):
            self.report(callee, "no_test_skip", {"method": base}, fix=self._drop_modifier(callee, obj))

    @staticmethod
    def _drop_prefix(callee: Node):
        return [FixEdit(callee.start_byte, callee.start_byte + 1, "", EditGroup.REMOVE)]

    @staticmethod
    def _drop_modifier(callee: Node, obj: Node):
        return [FixEdit(obj.end_byte, callee.end_byte, "", EditGroup.REMOVE)]

    def _rename_custom(self, callee: Node, name: str, prefix: str, suffix: str, modifier: str) -> Optional[list]:
        """Fix for a custom pattern, when the plain name can be recovered."""
        replacement = None
        if name.startswith(prefix) and name[1:] in FOCUS_BASES:
            replacement = name[1:]
        elif name.endswith(suffix) and len(name) > len(suffix):
            replacement = name[:-len(suffix)]
        elif modifier in name:
            replacement = name.replace(modifier, "", 1)
        if replacement is None:
            return None
        return [FixEdit(callee.start_byte, callee.end_byte, replacement, EditGroup.REPLACE)]
