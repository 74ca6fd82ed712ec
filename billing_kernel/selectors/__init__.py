"""Read-only selectors over the entity store."""

from billing_kernel.selectors.base import BaseSelector

__all__ = ["BaseSelector"]
