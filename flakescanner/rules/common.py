"""
Predicates shared by several detectors.
"""

import math
import re
from typing import Dict, Optional

from tree_sitter import Node

from flakescanner.core.framework import Framework
from flakescanner.core.heuristics import is_mock_callee, method_is_mocked
from flakescanner.parsers.javascript import (
    NodeKind,
    ParsedFile,
    call_arguments,
    callee_object,
    field,
    member_parts,
    number_value,
    statement_of,
)

MOCK_SETUP_CALLEE = re.compile(r"mock|stub|spy|fake|jest\.fn|vi\.fn|sinon\.", re.IGNORECASE)

# How far up the tree a surrounding mock setup call is looked for
MOCK_PARENT_DEPTH = 5


def is_in_mock_context(call: Node, parsed: ParsedFile) -> bool:
    """
    Whether a call is itself a mock, targets a mocked method, or sits
    inside a mock setup call.
    """
    function = field(call, "function")
    if function is None:
        return False
    if is_mock_callee(parsed.text_of(function)):
        return True

    obj = callee_object(call)
    if obj is not None:
        method = parsed.text_of(field(function, "property"))
        obj_text = parsed.text_of(obj)
        if method_is_mocked(parsed.text_of(statement_of(call)), obj_text, method):
            return True
        if method_is_mocked(parsed.text, obj_text, method):
            return True

    parent = call.parent
    level = 0
    while parent is not None and level < MOCK_PARENT_DEPTH:
        if parent.type == NodeKind.CALL_EXPRESSION.value:
            parent_function = field(parent, "function")
            if MOCK_SETUP_CALLEE.search(parsed.text_of(parent_function)):
                return True
            if member_parts(parent_function, parsed) in (["jest", "mock"], ["vi", "mock"]):
                return True
        parent = parent.parent
        level += 1
    return False


def framework_message(base: str, framework: Optional[Framework], variants: Dict[Framework, str]) -> str:
    """Pick the framework-specific message key, falling back to base."""
    if framework is None:
        return base
    return variants.get(framework, base)


def numeric_argument(call: Node, index: int, parsed: ParsedFile) -> Optional[float]:
    """The numeric literal at a call's argument position, if any."""
    arguments = call_arguments(call)
    if len(arguments) <= index:
        return None
    return number_value(arguments[index], parsed)


def format_number(value: float) -> str:
    """Render a number the way JavaScript source spells it."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return str(int(value)) if value == int(value) else str(value)
