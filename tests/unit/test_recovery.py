import pytest

from catalog_sync.recovery import CreateAttempt, ErrorCategory, categorize, correct_create, correct_update
from core.exceptions import MarketplaceValidationError


def validation_error(payload) -> MarketplaceValidationError:
    return MarketplaceValidationError("rejected", status_code=400, payload=payload)


@pytest.mark.parametrize("payload, category", [
    ({"message": "Validation error", "cause": [{"code": "item.title.length", "message": "Title too long"}]}, ErrorCategory.TITLE),
    ({"message": "El precio no es válido"}, ErrorCategory.PRICE),
    ({"message": "x", "cause": [{"code": "item.category_id.invalid"}]}, ErrorCategory.CATEGORY),
    ({"cause": [{"message": "Picture could not be downloaded"}]}, ErrorCategory.IMAGE),
    ({"error": "description too long"}, ErrorCategory.DESCRIPTION),
    ({"cause": {"code": "item.attributes.missing_required"}}, ErrorCategory.ATTRIBUTES),
    ({"message": "validation_error"}, ErrorCategory.VALIDATION),
    ({"message": "invalid access token"}, ErrorCategory.AUTH),
    ({"message": "something else"}, ErrorCategory.UNKNOWN),
    ("Plain text title error", ErrorCategory.TITLE),
])
def test_categorize(payload, category):
    assert categorize(validation_error(payload)) == category


def test_update_price_error_resends_title_only():
    assert correct_update(ErrorCategory.PRICE, {"price": 18990, "title": "New"}) == {"title": "New"}


def test_update_title_error_resends_price_only():
    assert correct_update(ErrorCategory.TITLE, {"price": 18990, "title": "New"}) == {"price": 18990}


@pytest.mark.parametrize("category", [ErrorCategory.CATEGORY, ErrorCategory.AUTH, ErrorCategory.UNKNOWN])
def test_update_without_correction(category):
    assert correct_update(category, {"price": 18990}) is None


def test_update_correction_leaving_nothing_is_not_retried():
    assert correct_update(ErrorCategory.PRICE, {"price": 18990}) is None


def test_create_corrections():
    attempt = CreateAttempt(title="Pokémon | Steam Código Digital", pictures=("a", "b"))

    assert correct_create(ErrorCategory.TITLE, attempt, "Pokemon | Steam Codigo Digital").title == \
        "Pokemon | Steam Codigo Digital"
    assert correct_create(ErrorCategory.IMAGE, attempt, "").pictures == ()
    assert correct_create(ErrorCategory.ATTRIBUTES, attempt, "").minimal_attributes is True
    assert correct_create(ErrorCategory.DESCRIPTION, attempt, "").include_description is False


@pytest.mark.parametrize("category", [
    ErrorCategory.CATEGORY, ErrorCategory.PRICE, ErrorCategory.AUTH,
    ErrorCategory.VALIDATION, ErrorCategory.UNKNOWN,
])
def test_create_without_correction(category):
    assert correct_create(category, CreateAttempt(title="Some Game | PC"), "Safe | PC") is None


def test_create_correction_is_not_repeated():
    attempt = CreateAttempt(title="Safe | PC", pictures=())
    assert correct_create(ErrorCategory.TITLE, attempt, "Safe | PC") is None
    assert correct_create(ErrorCategory.IMAGE, attempt, "Safe | PC") is None
