"""Answer validation.

Pure decision functions: given an item definition and a candidate value,
decide whether the value is acceptable for the item type and whether it
counts as a pass. Nothing here touches the database.
"""
import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import ValidationError
from .schema import ChecklistItem, ItemType


@dataclass(frozen=True)
class AnswerCheck:
    valid: bool
    passed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class GateResult:
    """Outcome of the completion gate for one run."""

    unanswered_item_ids: List[str]
    missing_photo_item_ids: List[str]

    @property
    def satisfied(self) -> bool:
        return not self.unanswered_item_ids and not self.missing_photo_item_ids


def _is_number(value: Any) -> bool:
    # bool is an int subclass, but True is not a measurement
    return isinstance(value, Real) and not isinstance(value, bool)


def _is_finite(value: Real) -> bool:
    try:
        return math.isfinite(value)
    except (OverflowError, TypeError, ValueError):
        # ints too large for a float
        return False


def check_answer(item: ChecklistItem, value: Any) -> AnswerCheck:
    """Check ``value`` against ``item``.

    yes_no: must be a boolean, passes when true.
    numeric: must be a finite number; when both bounds are set it passes
    inside ``[min, max]``, otherwise any number passes.
    text: any non-empty string, always passes.
    """
    if value is None:
        return AnswerCheck(valid=False, passed=False, reason="a value is required")

    if item.type == ItemType.YES_NO:
        if not isinstance(value, bool):
            return AnswerCheck(valid=False, passed=False, reason="expected true or false")
        return AnswerCheck(valid=True, passed=value)

    if item.type == ItemType.NUMERIC:
        if not _is_number(value) or not _is_finite(value):
            return AnswerCheck(valid=False, passed=False, reason="expected a finite number")
        if item.min_value is not None and item.max_value is not None:
            passed = item.min_value <= value <= item.max_value
            reason = None if passed else f"outside {item.min_value:g}-{item.max_value:g}{item.unit or ''}"
            return AnswerCheck(valid=True, passed=passed, reason=reason)
        return AnswerCheck(valid=True, passed=True)

    if item.type == ItemType.TEXT:
        if not isinstance(value, str) or value == "":
            return AnswerCheck(valid=False, passed=False, reason="expected non-empty text")
        return AnswerCheck(valid=True, passed=True)

    return AnswerCheck(valid=False, passed=False, reason=f"unsupported item type {item.type}")


def require_valid(item: ChecklistItem, value: Any) -> AnswerCheck:
    """Like :func:`check_answer` but raises :class:`ValidationError` on a bad value."""
    result = check_answer(item, value)
    if not result.valid:
        raise ValidationError(item.id, result.reason)
    return result


def photo_satisfied(item: ChecklistItem, photo_url: Optional[str]) -> bool:
    if not item.photo_required:
        return True
    return bool(photo_url and photo_url.strip())


def evaluate_gate(items: Iterable[ChecklistItem], answers: Dict[str, Any]) -> GateResult:
    """Evaluate the completion gate.

    ``answers`` maps item id to an object with a ``photo_url`` attribute.
    An answer counts purely by existing, a failing value still satisfies
    it. Answers whose item is no longer in the definition are ignored.
    """
    unanswered = []
    missing_photo = []
    for item in items:
        answer = answers.get(item.id)
        if answer is None:
            unanswered.append(item.id)
            if item.photo_required:
                missing_photo.append(item.id)
            continue
        if not photo_satisfied(item, getattr(answer, "photo_url", None)):
            missing_photo.append(item.id)
    return GateResult(unanswered_item_ids=unanswered, missing_photo_item_ids=missing_photo)
