"""
Test isolation rules.

Detects state that survives from one test to the next: shared mutable
variables, setup that is never torn down, mutated imports and global
objects.
"""

from typing import List, Tuple

from tree_sitter import Node

from flakescanner.core.findings import Confidence, FindingCategory, Severity
from flakescanner.core.heuristics import assigns_name, has_cleanup, needs_cleanup
from flakescanner.core.rules import Detector, RuleMetadata, rule
from flakescanner.core.scope import (
    HOOK_NAMES,
    SETUP_HOOK_NAMES,
    ScopeKind,
    hook_callback,
    is_in_hook,
    is_in_test,
)
from flakescanner.parsers.javascript import NodeKind, field, member_parts, root_identifier, same_node

GLOBAL_ROOTS = ("global", "window", "process")

GLOBAL_OBJECTS = (
    "global", "window", "document", "process", "console",
    "localStorage", "sessionStorage", "navigator", "Math", "Date",
)
STORAGE_OBJECTS = ("localStorage", "sessionStorage")
GLOBAL_METHODS = {
    "localStorage": ("setItem", "removeItem", "clear"),
    "sessionStorage": ("setItem", "removeItem", "clear"),
    "document": ("write", "writeln"),
    "window": ("addEventListener", "removeEventListener"),
}
PER_TEST_HOOKS = frozenset({"beforeEach", "afterEach"})


@rule
class IsolationDetector(Detector):
    """
    Detects variables and setup shared between tests.

    Declarations and their mutations are collected by the scope tracker
    during the traversal; the decisions are made once the whole file has
    been seen.
    """

    node_kinds = (NodeKind.CALL_EXPRESSION, NodeKind.ASSIGNMENT_EXPRESSION)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-test-isolation",
            name="Test isolation",
            description="Prevent test isolation violations through shared state and missing cleanup.",
            severity=Severity.HIGH,
            confidence=Confidence.HIGH,
            category=FindingCategory.SHARED_STATE,
            messages={
                "avoid_shared_state": 'Avoid shared mutable state "{variable}" that can cause test order dependencies. Initialize in beforeEach or use local variables.',
                "needs_cleanup": "Test setup in {hook} should have corresponding cleanup in afterEach/afterAll to prevent state leakage.",
                "init_in_setup": 'Variable "{variable}" should be initialized in beforeEach/beforeAll, not at its declaration.',
                "avoid_module_mutation": "Avoid mutating imported modules as it can affect other tests. Use mocks or local copies instead.",
                "global_state_mutation": 'Avoid modifying global state "{property}" in tests. This can affect other tests.',
            },
            tags=["isolation", "shared-state", "cleanup"],
        )

    def reset(self, context):
        super().reset(context)
        self._setup_callbacks: List[Node] = []

    def on_enter(self, node: Node):
        if node.type == NodeKind.CALL_EXPRESSION.value:
            self._check_setup_hook(node)
        elif self.option("check_global_state", True):
            self._check_global_assignment(node)

    def on_exit(self):
        allowed = set(self.option("allowed_shared_variables", []) or [])
        for record in self.context.scope.records:
            if record.name in allowed or not record.mutation_sites:
                continue

            if record.binding == "import":
                for site in record.mutation_sites:
                    if site.operation.startswith("call:"):
                        continue
                    if site.context_kind == ScopeKind.TEST or (
                        site.context_kind == ScopeKind.HOOK and site.hook_name not in SETUP_HOOK_NAMES
                    ):
                        self.report(site.node, "avoid_module_mutation", category=FindingCategory.MODULE_MUTATION)
                continue

            if not record.is_shared:
                continue

            hook_sites = [s for s in record.mutation_sites if s.context_kind == ScopeKind.HOOK]
            test_sites = [s for s in record.mutation_sites if s.context_kind == ScopeKind.TEST]

            if hook_sites and record.has_initializer:
                self.report(
                    record.declaration,
                    "init_in_setup",
                    {"variable": record.name},
                    category=FindingCategory.INIT_IN_SETUP,
                )
                continue

            if not test_sites:
                continue
            first = min(test_sites, key=lambda s: s.node.start_byte)
            if self._initialized_in_setup(record.name, first.node.start_byte):
                continue
            self.report(
                first.node,
                "avoid_shared_state",
                {"variable": record.name},
                category=FindingCategory.SHARED_STATE,
            )

    def _check_setup_hook(self, node: Node):
        function = field(node, "function")
        if function is None or function.type != NodeKind.IDENTIFIER.value:
            return
        hook = self.text_of(function)
        if hook not in SETUP_HOOK_NAMES:
            return
        callback = hook_callback(node)
        if callback is None:
            return
        self._setup_callbacks.append(callback)
        include_globals = not self.option("allow_shared_setup", True)
        if needs_cleanup(self.text_of(callback), include_globals) and not has_cleanup(self.context.text, hook):
            self.report(node, "needs_cleanup", {"hook": hook}, category=FindingCategory.NEEDS_CLEANUP)

    def _initialized_in_setup(self, name: str, before: int) -> bool:
        """A setup hook declared before `before` whose callback writes `name`."""
        return any(
            assigns_name(self.text_of(callback), name)
            for callback in self._setup_callbacks
            if callback.start_byte < before
        )

    def _check_global_assignment(self, node: Node):
        parts = member_parts(field(node, "left"), self.parsed)
        if not parts or len(parts) < 2 or parts[0] not in GLOBAL_ROOTS:
            return
        in_setup = is_in_hook(node, self.parsed, SETUP_HOOK_NAMES)
        in_hook = is_in_hook(node, self.parsed, HOOK_NAMES)
        if not in_hook and not is_in_test(node, self.parsed):
            return
        if in_hook and (not in_setup or self.option("allow_shared_setup", True)):
            return
        self.report(
            node,
            "global_state_mutation",
            {"property": "%s.%s" % (parts[0], parts[1])},
            category=FindingCategory.GLOBAL_STATE,
        )


@rule
class GlobalStateMutationDetector(Detector):
    """Detects writes to browser and runtime globals from test code."""

    node_kinds = (NodeKind.ASSIGNMENT_EXPRESSION, NodeKind.CALL_EXPRESSION, NodeKind.UNARY_EXPRESSION)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-global-state-mutation",
            name="Global state mutation",
            description="Prevent global state mutations that can cause test interdependencies.",
            severity=Severity.MEDIUM,
            confidence=Confidence.HIGH,
            category=FindingCategory.GLOBAL_STATE,
            messages={
                "avoid_global_mutation": "Avoid mutating {object} in tests. Use beforeEach/afterEach for proper cleanup.",
                "use_local_variable": "Use local variables instead of modifying global state.",
                "needs_storage_cleanup": "{storage} changes need cleanup in afterEach hook.",
                "avoid_process_env": "Modifying process.env can affect other tests. Store original value and restore it.",
                "avoid_document_mutation": "Document mutations can affect other tests. Use test-specific containers.",
            },
            tags=["isolation", "globals"],
        )

    def reset(self, context):
        super().reset(context)
        self._bare_assignments: List[Tuple[str, Node]] = []

    def on_enter(self, node: Node):
        if node.type == NodeKind.ASSIGNMENT_EXPRESSION.value:
            self._check_assignment(node)
        elif node.type == NodeKind.CALL_EXPRESSION.value:
            self._check_method_call(node)
        else:
            self._check_delete(node)

    def on_exit(self):
        scope = self.context.scope
        for name, node in self._bare_assignments:
            if scope.classify(name, node.start_byte) is None:
                self.report(node, "use_local_variable")

    def _allow_in_hooks(self) -> bool:
        return self.option("allow_in_hooks", True)

    def _check_assignment(self, node: Node):
        left = field(node, "left")
        if left is None:
            return

        if left.type == NodeKind.IDENTIFIER.value:
            if not is_in_hook(node, self.parsed):
                self._bare_assignments.append((self.text_of(left), node))
            return

        if left.type not in (NodeKind.MEMBER_EXPRESSION.value, NodeKind.SUBSCRIPT_EXPRESSION.value):
            return

        parts = member_parts(left, self.parsed) or []
        if parts[:2] == ["process", "env"] and len(parts) >= 3:
            if not is_in_hook(node, self.parsed, PER_TEST_HOOKS):
                self.report(node, "avoid_process_env")
            return

        root = root_identifier(left)
        name = self.text_of(root) if root is not None else None
        if name not in GLOBAL_OBJECTS:
            return

        direct = same_node(field(left, "object"), root)
        if direct and self._allow_in_hooks() and is_in_hook(node, self.parsed):
            if is_in_hook(node, self.parsed, ("beforeAll",)):
                self.report(node, "avoid_global_mutation", {"object": name})
            return

        if name == "document":
            self.report(node, "avoid_document_mutation")
        elif direct and name in STORAGE_OBJECTS:
            if not is_in_hook(node, self.parsed, PER_TEST_HOOKS):
                self.report(node, "needs_storage_cleanup", {"storage": name})
        else:
            self.report(node, "avoid_global_mutation", {"object": name})

    def _check_method_call(self, node: Node):
        parts = member_parts(field(node, "function"), self.parsed)
        if not parts or len(parts) != 2:
            return
        obj, method = parts
        if method not in GLOBAL_METHODS.get(obj, ()):
            return
        if is_in_hook(node, self.parsed, PER_TEST_HOOKS):
            return
        if obj in STORAGE_OBJECTS:
            self.report(node, "needs_storage_cleanup", {"storage": obj})
        else:
            self.report(node, "use_local_variable")

    def _check_delete(self, node: Node):
        operator = field(node, "operator")
        if operator is None or self.text_of(operator) != "delete":
            return
        argument = field(node, "argument")
        parts = member_parts(argument, self.parsed) or []
        if parts[:2] == ["process", "env"] and len(parts) >= 3:
            self.report(node, "avoid_process_env")
            return
        if len(parts) == 2 and parts[0] in ("global", "window", "document", "process"):
            if self._allow_in_hooks() and is_in_hook(node, self.parsed):
                return
            self.report(node, "avoid_global_mutation", {"object": parts[0]})
