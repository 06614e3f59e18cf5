"""
External resource rules.

Detects tests that reach outside the process: real network requests,
file system access and database writes. These fail or slow down
depending on the machine, the network and what other tests left behind.
"""

import re
from typing import List, Optional, Tuple

from tree_sitter import Node

from flakescanner.core.findings import Confidence, FindingCategory, Severity
from flakescanner.core.heuristics import is_data_url
from flakescanner.core.rules import Detector, RuleMetadata, rule
from flakescanner.parsers.javascript import (
    NodeKind,
    call_arguments,
    callee_name,
    callee_object,
    enclosing_call,
    field,
    member_parts,
    string_value,
)
from flakescanner.rules.common import is_in_mock_context

Match = Optional[Tuple[str, dict]]

ALWAYS_FLAG_LIBRARIES = ("request", "superagent", "got", "node-fetch")
CONDITIONAL_LIBRARIES = ("http", "https")
HTTP_METHODS = frozenset({"get", "post", "put", "delete", "patch", "request", "head", "options"})
JQUERY_AJAX_METHODS = frozenset({"ajax", "get", "post", "put", "delete", "patch", "getJSON", "load"})
URL_VARIABLE = re.compile(r"\burl(?!s\b|[a-z])", re.IGNORECASE)
API_VARIABLE = re.compile(
    r"\bapi(?!Key|s\b|[a-z])|\bendpoint|\burl(?!s\b|[a-z])|\bhost(?!name\b)|\bdomain(?!s\b|[a-z])",
    re.IGNORECASE,
)
EXTERNAL_APIS = (re.compile(r"jsonplaceholder\.typicode\.com"), re.compile(r"api\.github\.com"))
LOCALHOST = re.compile(r"^https?://(localhost|127\.0\.0\.1)(:\d+)?")
NETWORK_MOCK_LIBRARIES = (
    re.compile(r"import.*from.*[\"']nock[\"']"),
    re.compile(r"require\s*\(\s*[\"']nock[\"']\s*\)"),
    re.compile(r"import.*from.*[\"']fetch-mock[\"']"),
    re.compile(r"require\s*\(\s*[\"']fetch-mock[\"']\s*\)"),
    re.compile(r"(?:jest|vi)\.mock\s*\(\s*[\"']ws[\"']\s*\)"),
)
FETCH_MOCKS = (
    re.compile(r"global\.fetch\s*=\s*jest\.fn"),
    re.compile(r"vi\.stubGlobal\s*\(\s*[\"']fetch[\"']"),
    re.compile(r"jest\.spyOn\s*\(\s*global\s*,\s*[\"']fetch[\"']\s*\)"),
    re.compile(r"(?:jest|vi)\.mock\s*\(\s*[\"']node-fetch[\"']\s*\)"),
)
INTEGRATION_PATH = ("integration", "e2e", "end-to-end")


def module_mock_pattern(module: str) -> re.Pattern:
    return re.compile(r"(?:jest|vi)\.mock\s*\(\s*[\"']%s[\"']\s*\)" % re.escape(module))


@rule
class UnmockedNetworkDetector(Detector):
    """Detects network requests in files that do not mock the client."""

    node_kinds = (NodeKind.CALL_EXPRESSION, NodeKind.NEW_EXPRESSION)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-unmocked-network",
            name="Unmocked network",
            description="Ensure network calls are properly mocked in tests.",
            severity=Severity.HIGH,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.NETWORK,
            messages={
                "mock_network": "Network call using {method} should be mocked in tests",
                "avoid_external_api": "Avoid external API calls in tests. Use mock data instead.",
            },
            tags=["external", "network"],
        )

    def reset(self, context):
        super().reset(context)
        self._mock_modules: List[str] = self.option("mock_modules", ["axios", "fetch", "request", "http", "https"])
        self._skip_file = self.option("allow_in_integration", False) and any(
            part in (context.file_path or "") for part in INTEGRATION_PATH
        )
        self._file_mocked = self._modules_mocked(context.text)

    def _modules_mocked(self, text: str) -> bool:
        patterns = [module_mock_pattern(module) for module in self._mock_modules]
        if "fetch" in self._mock_modules:
            patterns.extend(FETCH_MOCKS)
        patterns.extend(NETWORK_MOCK_LIBRARIES)
        return any(pattern.search(text) for pattern in patterns)

    def on_enter(self, node: Node):
        if self._skip_file or self._file_mocked:
            return
        if node.type == NodeKind.NEW_EXPRESSION.value:
            match = self._classify_constructor(node)
        else:
            if is_in_mock_context(node, self.parsed):
                return
            match = self._classify_call(node)
        if match is not None:
            self.report(node, *match)

    def _allowed_url(self, url: str) -> bool:
        if is_data_url(url):
            return True
        if self.option("allow_localhost", True) and LOCALHOST.match(url):
            return True
        return any(domain in url for domain in self.option("allowed_domains", []) or [])

    @staticmethod
    def _external_api(url: str) -> bool:
        return any(pattern.search(url) for pattern in EXTERNAL_APIS)

    def _classify_call(self, node: Node) -> Match:
        function = field(node, "function")
        if function is None:
            return None
        name = callee_name(node, self.parsed)
        arguments = call_arguments(node)
        first = arguments[0] if arguments else None

        if "fetch" in self._mock_modules and name == "fetch":
            return self._classify_fetch(first)

        if function.type == NodeKind.MEMBER_EXPRESSION.value:
            obj = field(function, "object")
            obj_text = self.text_of(obj)
            if "axios" in self._mock_modules and obj_text == "axios":
                if name not in HTTP_METHODS:
                    return None
                url = string_value(first, self.parsed)
                if url is not None and self._external_api(url):
                    return "avoid_external_api", {}
                if url is not None and self._allowed_url(url):
                    return None
                return "mock_network", {"method": "axios"}
            if obj_text in ("$", "jQuery") and name in JQUERY_AJAX_METHODS:
                return "mock_network", {"method": "ajax"}
            always = any(library in obj_text for library in ALWAYS_FLAG_LIBRARIES)
            conditional = any(
                library in obj_text and library in self._mock_modules for library in CONDITIONAL_LIBRARIES
            )
            if (always or conditional) and name in HTTP_METHODS:
                return "mock_network", {"method": obj_text.split(".")[0] or "http"}
            return None

        if "axios" in self._mock_modules and name == "axios":
            return "mock_network", {"method": "axios"}
        if name == "got":
            return "mock_network", {"method": "got"}
        return None

    def _classify_fetch(self, first: Optional[Node]) -> Match:
        if first is None:
            return None
        url = string_value(first, self.parsed)
        if first.type == NodeKind.STRING.value and url is not None:
            if self._allowed_url(url) or not (re.match(r"^https?://", url) or url.startswith("/")):
                return None
            if self._external_api(url):
                return "avoid_external_api", {}
            return "mock_network", {"method": "fetch"}
        if first.type == NodeKind.IDENTIFIER.value and URL_VARIABLE.search(self.text_of(first)):
            return "mock_network", {"method": "fetch"}
        if first.type in (NodeKind.IDENTIFIER.value, NodeKind.MEMBER_EXPRESSION.value):
            if API_VARIABLE.search(self.text_of(first)):
                return "mock_network", {"method": "fetch"}
        return None

    def _classify_constructor(self, node: Node) -> Match:
        name = self.text_of(field(node, "constructor"))
        if name == "XMLHttpRequest":
            return "mock_network", {"method": "XMLHttpRequest"}
        if name == "WebSocket":
            arguments = call_arguments(node)
            if not arguments:
                return None
            if arguments[0].type == NodeKind.STRING.value:
                url = string_value(arguments[0], self.parsed) or ""
                if not re.match(r"^wss?://", url):
                    return None
            return "mock_network", {"method": "WebSocket"}
        return None


FS_METHODS = frozenset({
    "readFile", "readFileSync", "writeFile", "writeFileSync",
    "appendFile", "appendFileSync", "unlink", "unlinkSync",
    "mkdir", "mkdirSync", "rmdir", "rmdirSync",
    "readdir", "readdirSync", "stat", "statSync",
    "lstat", "lstatSync", "exists", "existsSync",
    "access", "accessSync", "watch", "watchFile",
    "createReadStream", "createWriteStream",
    "copyFile", "copyFileSync", "rename", "renameSync",
    "rm", "rmSync", "cp", "cpSync",
})
READ_WRITE_METHODS = frozenset({"readFile", "readFileSync", "writeFile", "writeFileSync"})
FS_SETUP_HOOKS = frozenset({"beforeAll", "beforeEach", "afterAll", "afterEach", "before", "after", "setup", "teardown"})
FS_MOCK_LIBRARIES = (
    re.compile(r"import.*from.*[\"']mock-fs[\"']"),
    re.compile(r"require\s*\(\s*[\"']mock-fs[\"']\s*\)"),
    re.compile(r"import.*from.*[\"']memfs[\"']"),
    re.compile(r"require\s*\(\s*[\"']memfs[\"']\s*\)"),
)
TEMP_DIRECTORIES = ("/tmp/", "/var/tmp/", "C:/Temp/", "C:/Windows/Temp/", "/private/tmp/", "/private/var/folders/")
CHILD_PROCESS_METHODS = frozenset({"exec", "execSync", "spawn", "spawnSync"})


def is_temp_path(path: str) -> bool:
    normalized = path.replace("\\", "/")
    return any(candidate in normalized for candidate in TEMP_DIRECTORIES)


@rule
class UnmockedFsDetector(Detector):
    """Detects real file system access from tests."""

    node_kinds = (NodeKind.CALL_EXPRESSION,)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-unmocked-fs",
            name="Unmocked file system",
            description="Ensure file system operations are properly mocked in tests.",
            severity=Severity.MEDIUM,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.FILESYSTEM,
            messages={
                "mock_fs": "File system operation {method} should be mocked in tests to prevent flakiness",
                "unmocked_fs": "Unmocked {method} operation can cause test flakiness - consider using jest.mock() or memfs",
                "use_memfs": "Consider using in-memory file system (memfs) instead of {method} for more reliable tests",
                "needs_mock": "File operations can fail due to permissions or parallel test execution - use mocking instead",
            },
            tags=["external", "filesystem"],
        )

    def _module_mocked(self, module: Optional[str] = None) -> bool:
        text = self.context.text
        modules = [module] if module else self.option("mock_modules", ["fs", "fs/promises", "node:fs"])
        if any(module_mock_pattern(name).search(text) for name in modules):
            return True
        return any(pattern.search(text) for pattern in FS_MOCK_LIBRARIES)

    def _allowed_module(self, module: str) -> bool:
        return module in (self.option("allowed_modules", []) or [])

    def _skipped(self, node: Node) -> bool:
        """Mocked, or allowed in a setup hook."""
        if is_in_mock_context(node, self.parsed):
            return True
        return self.option("allow_in_setup", False) and enclosing_call(node, self.parsed, FS_SETUP_HOOKS) is not None

    def _allowed_path(self, node: Node) -> bool:
        arguments = call_arguments(node)
        if not arguments:
            return False
        first = arguments[0]
        value = string_value(first, self.parsed)
        if value is not None:
            if any(value.startswith(prefix) for prefix in self.option("allowed_paths", []) or []):
                return True
            if "__fixtures__" in value or "/fixtures/" in value or value.startswith("./test/fixtures/"):
                return True
            return self.option("allow_temp_files", True) and is_temp_path(value)
        if first.type == NodeKind.CALL_EXPRESSION.value and member_parts(field(first, "function"), self.parsed) == ["path", "join"]:
            for argument in call_arguments(first):
                text = self.text_of(argument)
                if "fixtures" in text:
                    return True
                if self.option("allow_temp_files", True) and "tmpdir()" in text:
                    return True
        return False

    def on_enter(self, node: Node):
        match = self._classify(node)
        if match is not None:
            self.report(node, *match)

    def _classify(self, node: Node) -> Match:
        function = field(node, "function")
        if function is None:
            return None
        name = callee_name(node, self.parsed)
        obj = callee_object(node)
        obj_text = self.text_of(obj)

        if obj_text == "fs":
            if self._allowed_module("fs") or self._module_mocked("fs") or self._allowed_path(node) or self._skipped(node):
                return None
            if name in FS_METHODS:
                return ("unmocked_fs" if name in READ_WRITE_METHODS else "mock_fs"), {"method": name}
            return None

        if obj is not None and re.search(r"fs\.promises|fsPromises", obj_text):
            if self._allowed_module("fs/promises") or self._module_mocked("fs/promises"):
                return None
            if self._allowed_path(node) or self._skipped(node):
                return None
            return "unmocked_fs", {"method": name}

        if (name in ("glob", "globSync") and obj is None) or member_parts(function, self.parsed) == ["glob", "sync"]:
            if self._allowed_module("glob") or self._skipped(node):
                return None
            return "use_memfs", {"method": name if obj is None else "glob"}

        if obj_text == "fg":
            if self._allowed_module("fast-glob") or self._skipped(node):
                return None
            return "use_memfs", {"method": "fast-glob"}

        if (obj is None and name == "rimraf") or member_parts(function, self.parsed) == ["rimraf", "sync"]:
            if self._allowed_module("rimraf") or self._skipped(node):
                return None
            return "use_memfs", {"method": "rimraf"}

        if obj_text in ("fse", "fsExtra"):
            if self._allowed_module("fs-extra") or self._allowed_path(node) or self._skipped(node):
                return None
            return "unmocked_fs", {"method": "fs-extra.%s" % name}

        if obj_text == "child_process" and name in CHILD_PROCESS_METHODS:
            return "needs_mock", {}

        if obj is None and name in FS_METHODS:
            if self._module_mocked() or self._allowed_path(node) or self._skipped(node):
                return None
            return "unmocked_fs", {"method": name}
        return None


ORM_METHODS = frozenset({
    "save", "create", "update", "delete", "destroy", "remove",
    "insert", "upsert", "bulkCreate", "bulkUpdate", "bulkDelete",
    "findOrCreate", "updateOrCreate", "increment", "decrement", "truncate",
})
PRISMA_METHODS = frozenset({"create", "update", "delete", "upsert", "createMany", "updateMany", "deleteMany"})
MONGO_METHODS = frozenset({
    "insertOne", "insertMany", "updateOne", "updateMany", "deleteOne", "deleteMany",
    "replaceOne", "findOneAndUpdate", "findOneAndDelete", "findOneAndReplace", "bulkWrite",
})
KNEX_METHODS = frozenset({"insert", "update", "del", "delete", "truncate"})
QUERY_METHODS = frozenset({"query", "execute", "exec", "run", "all", "get"})
SCHEMA_METHODS = frozenset({"sync", "migrate", "seed"})
DB_OBJECT_PATTERNS = (
    re.compile(r"(model|db|database|repository|entity|collection)", re.IGNORECASE),
    re.compile(
        r"^(User|Post|Comment|Order|Product|Customer|Account|Profile|Article|Category|Tag|Role|Permission|Session)"
        r"(Model|Repository|Entity|Collection|Service)?$",
        re.IGNORECASE,
    ),
    re.compile(r"(Model|Repository|Entity|Collection|Service)$", re.IGNORECASE),
)
SQL_KEYWORDS = re.compile(
    r"\b(SELECT|INSERT|UPDATE|DELETE|CREATE|DROP|ALTER|TRUNCATE|BEGIN|COMMIT|ROLLBACK)\b", re.IGNORECASE
)
SQL_TEMPLATE = re.compile(r"SELECT|INSERT|UPDATE|DELETE", re.IGNORECASE)
KNEX_CALL = re.compile(r"knex\([\"']?\w+[\"']?\)")
DB_HOOKS = frozenset({"beforeEach", "beforeAll", "afterEach", "afterAll"})


@rule
class DatabaseOperationsDetector(Detector):
    """Detects database writes and raw queries issued from tests."""

    node_kinds = (NodeKind.CALL_EXPRESSION,)

    @property
    def metadata(self) -> RuleMetadata:
        return RuleMetadata(
            rule_id="no-database-operations",
            name="Database operations",
            description="Prevent direct database operations that can interfere between tests.",
            severity=Severity.MEDIUM,
            confidence=Confidence.MEDIUM,
            category=FindingCategory.DATABASE,
            messages={
                "avoid_db_operation": "Avoid direct database {operation} in tests. Use mocks or test fixtures.",
                "use_transaction": "Database operations should be wrapped in transactions for proper cleanup.",
                "avoid_raw_query": "Avoid raw SQL queries in tests. Use test data builders or factories.",
                "needs_isolation": "Database operations need proper test isolation.",
            },
            tags=["external", "database"],
        )

    def on_enter(self, node: Node):
        function = field(node, "function")
        if function is None or function.type != NodeKind.MEMBER_EXPRESSION.value:
            return
        method = self.text_of(field(function, "property"))
        obj = field(function, "object")
        for match in (
            self._check_prisma(node, method, obj),
            self._check_orm(node, method, obj),
            self._check_sql(node, method),
            self._check_mongo(node, method),
            self._check_knex(node, method),
        ):
            if match is not None:
                self.report(node, *match)
                return

    def _is_prisma(self, node: Node, obj: Node) -> bool:
        if obj.type == NodeKind.MEMBER_EXPRESSION.value and self.text_of(field(obj, "object")) == "prisma":
            return True
        return self.text_of(node).startswith("prisma.")

    def _check_prisma(self, node: Node, method: str, obj: Node) -> Match:
        if method not in PRISMA_METHODS:
            return None
        if obj.type != NodeKind.MEMBER_EXPRESSION.value or self.text_of(field(obj, "object")) != "prisma":
            return None
        if is_in_mock_context(node, self.parsed):
            return None
        return "avoid_db_operation", {"operation": "Prisma operation"}

    def _check_orm(self, node: Node, method: str, obj: Node) -> Match:
        if method in SCHEMA_METHODS:
            return "needs_isolation", {}
        if method not in ORM_METHODS or self._is_prisma(node, obj):
            return None
        obj_text = self.text_of(obj)
        if not any(pattern.search(obj_text) for pattern in DB_OBJECT_PATTERNS):
            return None
        if is_in_mock_context(node, self.parsed):
            return None
        in_hook = enclosing_call(node, self.parsed, DB_HOOKS) is not None
        if self.option("allow_in_hooks", True) and in_hook:
            return "use_transaction", {"operation": method}
        return "avoid_db_operation", {"operation": method}

    def _check_sql(self, node: Node, method: str) -> Match:
        if method not in QUERY_METHODS:
            return None
        arguments = call_arguments(node)
        if not arguments:
            return None
        first = arguments[0]
        if first.type == NodeKind.STRING.value and SQL_KEYWORDS.search(string_value(first, self.parsed) or ""):
            return "avoid_raw_query", {}
        if first.type == NodeKind.TEMPLATE_STRING.value and SQL_TEMPLATE.search(self.text_of(first)):
            return "avoid_raw_query", {}
        return None

    def _check_mongo(self, node: Node, method: str) -> Match:
        if method in MONGO_METHODS and not is_in_mock_context(node, self.parsed):
            return "avoid_db_operation", {"operation": method}
        return None

    def _check_knex(self, node: Node, method: str) -> Match:
        if method in KNEX_METHODS and KNEX_CALL.search(self.text_of(node)) and not is_in_mock_context(node, self.parsed):
            return "avoid_db_operation", {"operation": "Knex operation"}
        return None
