"""
Procurement Kernel

Shared foundation for the procurement allocation core:
- Structured JSON logging with request-scoped context
- Typed exception hierarchy with machine-readable codes
- Injectable clock
- Canonical entities for indents, stock, purchase and inspection records
- Document collection store (in-memory and SQLAlchemy-backed)
"""

__version__ = "0.1.0"
