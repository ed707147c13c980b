"""
Marketplace validation error recovery.

A 400 from the marketplace during create or update is categorized from
its message and causes. Some categories allow exactly one corrected
retry; the helpers here build that corrected request or return None.
"""

import enum
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from core.exceptions import MarketplaceValidationError


class ErrorCategory(str, enum.Enum):
    TITLE = "title"
    PRICE = "price"
    CATEGORY = "category"
    IMAGE = "image"
    DESCRIPTION = "description"
    ATTRIBUTES = "attributes"
    VALIDATION = "validation"
    AUTH = "auth"
    UNKNOWN = "unknown"


# Checked in order; the first matching group wins
_CATEGORY_KEYWORDS: Tuple[Tuple[ErrorCategory, Tuple[str, ...]], ...] = (
    (ErrorCategory.TITLE, ("title", "título")),
    (ErrorCategory.PRICE, ("price", "precio")),
    (ErrorCategory.CATEGORY, ("category", "categoría")),
    (ErrorCategory.IMAGE, ("picture", "image", "foto")),
    (ErrorCategory.DESCRIPTION, ("description", "descripción")),
    (ErrorCategory.ATTRIBUTES, ("attributes", "atributos")),
    (ErrorCategory.VALIDATION, ("validation", "validación")),
    (ErrorCategory.AUTH, ("token", "auth")),
)


def categorize(error: MarketplaceValidationError) -> ErrorCategory:
    text = error.cause_text
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return ErrorCategory.UNKNOWN


def correct_update(category: ErrorCategory, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Corrected update body, or None when no retry makes sense.

    A rejected price is dropped so the title still goes through, and
    vice versa.
    """
    if category == ErrorCategory.PRICE:
        corrected = {k: v for k, v in changes.items() if k != "price"}
    elif category == ErrorCategory.TITLE:
        corrected = {k: v for k, v in changes.items() if k != "title"}
    else:
        return None
    return corrected or None


@dataclass(frozen=True)
class CreateAttempt:
    """The variable parts of a create request."""
    title: str
    pictures: Tuple[str, ...] = ()
    include_description: bool = True
    minimal_attributes: bool = False


def correct_create(
    category: ErrorCategory,
    attempt: CreateAttempt,
    safe_title: str
) -> Optional[CreateAttempt]:
    """
    Corrected create request, or None when no retry makes sense.

    Category, price, auth and unrecognized errors are not retried.
    """
    if category == ErrorCategory.TITLE and safe_title != attempt.title:
        return replace(attempt, title=safe_title)
    if category == ErrorCategory.IMAGE and attempt.pictures:
        return replace(attempt, pictures=())
    if category == ErrorCategory.ATTRIBUTES and not attempt.minimal_attributes:
        return replace(attempt, minimal_attributes=True)
    if category == ErrorCategory.DESCRIPTION and attempt.include_description:
        return replace(attempt, include_description=False)
    return None
