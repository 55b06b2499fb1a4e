"""Therma - idempotent, encrypted, budget-gated journal entry core."""

__version__ = "0.4.0"

__all__ = [
    "__version__",
]
