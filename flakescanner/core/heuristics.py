"""
Named text heuristics.

Regex predicates over source text, used where matching on tree shape alone
is impractical (for example scanning a whole hook callback for a spy
setup).
"""

import re

NEEDS_CLEANUP_PATTERNS = [
    re.compile(r"jest\.spyOn\("),
    re.compile(r"vi\.spyOn\("),
    re.compile(r"sinon\.spy\("),
    re.compile(r"sinon\.stub\("),
    re.compile(r"sinon\.mock\("),
    re.compile(r"jest\.mock\("),
    re.compile(r"vi\.mock\("),
    re.compile(r"setTimeout\("),
    re.compile(r"setInterval\("),
    re.compile(r"document\.createElement\("),
    re.compile(r"document\.body\.appendChild\("),
]

SHARED_GLOBAL_SETUP_PATTERNS = [
    re.compile(r"global\.\w+\s*=(?!=)"),
    re.compile(r"window\.\w+\s*=(?!=)"),
    re.compile(r"process\.env\.\w+\s*=(?!=)"),
]

STATIC_CLEANUP_PATTERNS = [
    re.compile(r"\.mockRestore\(\)"),
    re.compile(r"\.restore\(\)"),
    re.compile(r"\.resetAllMocks\(\)"),
    re.compile(r"\.clearAllMocks\(\)"),
    re.compile(r"\.restoreAllMocks\(\)"),
    re.compile(r"\.resetModules\(\)"),
    re.compile(r"document\.body\.innerHTML\s*=\s*['\"]"),
    re.compile(r"\.removeChild\("),
    re.compile(r"\.remove\(\)"),
    re.compile(r"clearInterval\("),
    re.compile(r"clearTimeout\("),
]

CLEANUP_HOOK_FOR = {
    "beforeEach": "afterEach",
    "beforeAll": "afterAll",
    "before": "after",
}

MOCK_CALLEE_PATTERNS = [
    re.compile(r"^jest\."),
    re.compile(r"^vi\."),
    re.compile(r"^sinon\."),
    re.compile(r"^mock", re.IGNORECASE),
    re.compile(r"^stub", re.IGNORECASE),
    re.compile(r"^spy", re.IGNORECASE),
    re.compile(r"^fake", re.IGNORECASE),
    re.compile(r"\.mock"),
    re.compile(r"\.spyOn"),
    re.compile(r"\.stub"),
    re.compile(r"\.fake"),
]

ANIMATIONS_DISABLED_PATTERNS = [
    re.compile(r"animation-duration:\s*0", re.IGNORECASE),
    re.compile(r"transition-duration:\s*0", re.IGNORECASE),
    re.compile(r"animation:\s*none", re.IGNORECASE),
    re.compile(r"transition:\s*none", re.IGNORECASE),
    re.compile(r"disableAnimations", re.IGNORECASE),
    re.compile(r"skipAnimations", re.IGNORECASE),
    re.compile(r"instantAnimations", re.IGNORECASE),
    re.compile(r"DISABLE_ANIMATIONS"),
    re.compile(r"prefersReducedMotion.*true"),
    re.compile(r"matchMedia.*prefers-reduced-motion.*reduce"),
]

POLLING_CONTEXT = re.compile(r"if\s*\(.*\)|check|poll|retry|clearInterval")
INTERVAL_EXIT = re.compile(r"clearInterval|if\s*\(")
DATA_URL = re.compile(r"^(data:|blob:|file:)")

DYNAMIC_TEXT_PATTERNS = [
    re.compile(r"\d{9}"),
    re.compile(r"\d{4}-\d{2}-\d{2}"),
    re.compile(r"\$\{|\{\{"),
    re.compile(r"\d+[.,]\d+[.,]\d+"),
]


def assigns_name(callback_text: str, name: str) -> bool:
    """
    Whether a hook callback's text writes to `name`.

    This is a textual approximation: a write to a different variable of the
    same name, for example in a hook of an unrelated suite block, satisfies
    it too.
    """
    escaped = re.escape(name)
    pattern = re.compile(
        r"(?<![\w$.])%s\s*(?:=(?![=>])|\+\+|--|[-+*/%%]=)|(?:\+\+|--)\s*%s\b" % (escaped, escaped)
    )
    return pattern.search(callback_text) is not None


def needs_cleanup(callback_text: str, include_globals: bool = False) -> bool:
    """Whether a setup hook body creates state that must be torn down."""
    patterns = list(NEEDS_CLEANUP_PATTERNS)
    if include_globals:
        patterns.extend(SHARED_GLOBAL_SETUP_PATTERNS)
    return any(pattern.search(callback_text) for pattern in patterns)


def has_cleanup(text: str, setup_hook: str) -> bool:
    """Whether the file tears down what `setup_hook` sets up."""
    cleanup_hook = CLEANUP_HOOK_FOR.get(setup_hook)
    if cleanup_hook is None:
        return False
    if re.search(r"\b%s\s*\(" % cleanup_hook, text):
        return True
    return any(pattern.search(text) for pattern in STATIC_CLEANUP_PATTERNS)


def is_mock_callee(callee_text: str) -> bool:
    return any(pattern.search(callee_text) for pattern in MOCK_CALLEE_PATTERNS)


def method_is_mocked(text: str, obj: str, method: str) -> bool:
    """A spy, stub or direct mock assignment for `obj.method` in the text."""
    escaped = re.escape(obj)
    patterns = [
        r"(?:jest|vi)\.spyOn\s*\(\s*%s\s*,\s*['\"]%s['\"]\s*\)" % (escaped, method),
        r"sinon\.stub\s*\(\s*%s\s*,\s*['\"]%s['\"]\s*\)" % (escaped, method),
        r"td\.replace\s*\(\s*%s\s*,\s*['\"]%s['\"]\s*\)" % (escaped, method),
        r"%s\.%s\s*=\s*(?:jest\.fn|vi\.fn|\w*[mM]ock\w*)" % (escaped, method),
    ]
    return any(re.search(pattern, text, re.IGNORECASE) for pattern in patterns)


def animations_disabled(text: str) -> bool:
    return any(pattern.search(text) for pattern in ANIMATIONS_DISABLED_PATTERNS)


def looks_like_polling(text: str) -> bool:
    return POLLING_CONTEXT.search(text) is not None


def interval_has_exit(callback_text: str) -> bool:
    return INTERVAL_EXIT.search(callback_text) is not None


def is_data_url(value: str) -> bool:
    return DATA_URL.match(value) is not None


def looks_dynamic(text: str) -> bool:
    """Long numbers, ISO dates, template variables or version-like numbers."""
    return any(pattern.search(text) for pattern in DYNAMIC_TEXT_PATTERNS)


def library_is_seeded(text: str, library: str) -> bool:
    pattern = re.compile(r"\b%s\.(?:seed|setSeed)\s*\(" % re.escape(library))
    return pattern.search(text) is not None
