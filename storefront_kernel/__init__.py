"""
Storefront Kernel - shared infrastructure for the storefront backend.

Provides:
- Declarative ORM base and engine/session management
- Injectable clock
- Structured JSON logging with request/job context
- Typed exception hierarchy with machine-readable codes
- Local order store (orders, items, status history)
"""

__version__ = "0.1.0"
