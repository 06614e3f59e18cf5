"""
Test-file classification and framework detection.
"""

import re
from enum import Enum
from typing import Optional

TEST_FILE_PATTERNS = [
    re.compile(r"\.(test|spec)\.(js|jsx|ts|tsx|mjs|cjs)$"),
    re.compile(r"\.(test|spec)\.stories\.(js|jsx|ts|tsx)$"),
    re.compile(r"(^|/)__tests__/"),
    re.compile(r"(^|/)(test|tests|spec|specs)/"),
    re.compile(r"\.(e2e|integration|cy)\.(js|jsx|ts|tsx)$"),
    re.compile(r"(^|/)cypress/"),
    re.compile(r"(^|/)playwright/"),
    re.compile(r"\.steps?\.(js|jsx|ts|tsx)$"),
]


class Framework(Enum):
    """Test, assertion and automation frameworks the scanner distinguishes."""
    TESTING_LIBRARY = "testing-library"
    PLAYWRIGHT = "playwright"
    CYPRESS = "cypress"
    VITEST = "vitest"
    JEST = "jest"


# Frameworks that do not expose the waitFor polling helper
WITHOUT_WAIT_FOR = frozenset({Framework.PLAYWRIGHT, Framework.CYPRESS})

IMPORT_HINTS = [
    (re.compile(r"""(?:from\s+|require\s*\(\s*)['"]@testing-library"""), Framework.TESTING_LIBRARY),
    (re.compile(r"""(?:from\s+|require\s*\(\s*)['"]@playwright"""), Framework.PLAYWRIGHT),
    (re.compile(r"""(?:from\s+|require\s*\(\s*)['"]cypress"""), Framework.CYPRESS),
    (re.compile(r"""(?:from\s+|require\s*\(\s*)['"]vitest"""), Framework.VITEST),
    (re.compile(r"""(?:from\s+|require\s*\(\s*)['"]jest"""), Framework.JEST),
]

GLOBAL_TEST_CALL = re.compile(r"\b(describe|it|test|expect)\s*\(")


def _normalize(path: str) -> str:
    return path.replace("\\", "/")


def is_test_file(path: Optional[str]) -> bool:
    """Whether a file path looks like a test source."""
    if not path:
        return False
    path = _normalize(path)
    return any(pattern.search(path) for pattern in TEST_FILE_PATTERNS)


def detect_framework(text: str, path: str = "") -> Optional[Framework]:
    """
    Guess which framework idioms a file uses.

    Imports win over global usage, which wins over the file path.
    """
    for pattern, framework in IMPORT_HINTS:
        if pattern.search(text):
            return framework

    if GLOBAL_TEST_CALL.search(text):
        if re.search(r"\bvi\.", text):
            return Framework.VITEST
        if re.search(r"\bjest\.", text):
            return Framework.JEST
        if re.search(r"\bcy\.", text):
            return Framework.CYPRESS

    path = _normalize(path or "")
    if re.search(r"(^|/)cypress/", path, re.IGNORECASE):
        return Framework.CYPRESS
    if re.search(r"(^|/)playwright/", path, re.IGNORECASE):
        return Framework.PLAYWRIGHT
    if re.search(r"\.cy\.", path, re.IGNORECASE):
        return Framework.CYPRESS
    if re.search(r"\.spec\.", path, re.IGNORECASE):
        return Framework.JEST

    return None


def supports_wait_for(framework: Optional[Framework]) -> bool:
    return framework not in WITHOUT_WAIT_FOR
