"""
Flakiness rules.

Importing this package registers every detector with the global
registry.
"""

# Import all rules to register them
from flakescanner.rules import isolation, timing, async_flow, external, determinism, selectors

__all__ = [
    "isolation",
    "timing",
    "async_flow",
    "external",
    "determinism",
    "selectors",
]
