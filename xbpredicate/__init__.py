"""Parse and evaluate XPath-style predicates on a small stack machine, and parse XPath queries."""

__version__ = "0.1.0"
__all__ = ["errors", "opcode", "context", "stack", "compare", "textfuncs", "machine", "query"]