"""
Parsers for the languages the scanner analyses.

Only JavaScript test sources are supported; files are parsed with
tree-sitter's JavaScript grammar.
"""

from flakescanner.parsers.javascript import (
    EXTENSIONS,
    NodeKind,
    ParsedFile,
    iter_nodes,
    parse_file,
    parse_source,
)

__all__ = [
    "EXTENSIONS",
    "NodeKind",
    "ParsedFile",
    "iter_nodes",
    "parse_file",
    "parse_source",
]
