"""Decision enum for policy evaluation outcomes.

These values define the possible outcomes of policy evaluation,
used by the policy engine to communicate decisions to enforcement points.
"""

from __future__ import annotations

__all__ = ["Decision"]

from enum import Enum


class Decision(str, Enum):
    """Policy decision outcome.

    Inherits from str for easy serialization and comparison.

    Attributes:
        ALLOW: Operation is permitted on the path.
        DENY: Operation is refused.
    """

    ALLOW = "allow"
    DENY = "deny"
