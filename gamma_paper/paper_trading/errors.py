"""
Paper trading error types

Every error carries a ``reason`` string suitable for direct display,
separate from any traceback.
"""

from typing import List, Optional


class PaperTradingError(Exception):
    """Base class for engine errors"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(PaperTradingError):
    """Malformed trade request, rejected before any state change"""

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid {field}: {reason}")
        self.field = field


class RiskLimitRejection(PaperTradingError):
    """Well-formed request that breaches a heat, concentration or balance cap"""

    def __init__(
        self,
        reason: str,
        recommended_size: int = 0,
        violations: Optional[List[str]] = None,
    ):
        super().__init__(f"Trade rejected: {reason}")
        self.recommended_size = recommended_size
        self.violations = violations or []


class PositionClosedError(PaperTradingError, AttributeError):
    """Attempted to modify a position after it left the OPEN state"""

    def __init__(self, position_id: str, attribute: str):
        super().__init__(f"Position {position_id} is closed; cannot set {attribute}")
        self.position_id = position_id
