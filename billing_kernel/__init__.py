"""
Billing Kernel

Shared foundation for the subscription billing core:
- Typed, code-carrying exceptions
- Structured JSON logging
- Injectable clock and workflow value objects
- SQLAlchemy base classes, engine management and locked sequence counters
"""

__version__ = "0.1.0"
