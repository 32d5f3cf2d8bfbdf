"""Game policy — executable parameters loaded from config/."""

from fairdrop.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
