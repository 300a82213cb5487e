"""Operator diagnostics for non-fatal resolution events (data not found, bad rules)."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

NO_PRODUCT = "NO_PRODUCT"
NO_PROTECTION_PRODUCT = "NO_PROTECTION_PRODUCT"
NO_ENCLOSURE_PRODUCT = "NO_ENCLOSURE_PRODUCT"
GROUP_REF_CYCLE = "GROUP_REF_CYCLE"
UNKNOWN_PACKAGE = "UNKNOWN_PACKAGE"
MISSING_RATES = "MISSING_RATES"


@dataclass
class Diagnostic:
    code: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": dict(self.context)}


def report(
    logger: logging.Logger,
    diagnostics: List[Diagnostic],
    code: str,
    message: str,
    **context: Any,
) -> None:
    """Log a warning and record it for the caller."""
    logger.warning(f"[{code}] {message}")
    diagnostics.append(Diagnostic(code=code, message=message, context=context))
