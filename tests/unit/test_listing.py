import pytest

from catalog_sync.listing import (
    MAX_TITLE_LENGTH,
    build_attributes,
    build_description,
    build_item_payload,
    build_pictures,
    build_title,
    classify_product,
    fallback_title,
    normalize_platform,
    sanitize_description,
    sanitize_title,
)
from schemas.supplier import SourceProduct
from tests.fakes import make_product


def product(**kwargs) -> SourceProduct:
    return SourceProduct.from_payload("123", make_product(**kwargs))


@pytest.mark.parametrize("platform, expected", [
    ("Steam", "Steam"),
    ("EA App", "EA App"),
    ("Origin", "Origin"),
    ("GOG COM", "GOG"),
    ("Epic Games", "Epic Games"),
    ("Uplay", "Ubisoft"),
    ("Battle.net", "Battle.net"),
    ("Xbox One", "Microsoft Store"),
    ("Nintendo", "PC"),
    (None, "PC"),
])
def test_normalize_platform(platform, expected):
    assert normalize_platform(platform) == expected


@pytest.mark.parametrize("kwargs, expected", [
    ({"name": "Steam Wallet Gift Card 20 USD"}, "gift_card"),
    ({"name": "Hades Altergift"}, "altergift"),
    ({"name": "Cyberpunk 2077 - Phantom Liberty DLC"}, "dlc"),
    ({"name": "Portal 2 Steam Gift"}, "gift"),
    ({"name": "Elden Ring Offline Account", "description": "Login and password included"}, "account"),
    ({"name": "Hollow Knight"}, "key"),
])
def test_classify_product(kwargs, expected):
    assert classify_product(product(**kwargs)) == expected


def test_title_format():
    assert build_title(product(), "key") == "Hollow Knight | Steam Código Digital"


def test_title_strips_platform_noise_and_unsafe_characters():
    title = build_title(product(name="Hades™ (PC) Steam Key"), "key")
    assert title == "Hades | Steam Código Digital"


def test_long_title_is_truncated_keeping_suffix():
    name = "The Incredibly Long Adventure Of Someone Who Never Stops Walking"
    title = build_title(product(name=name), "dlc")

    assert len(title) <= MAX_TITLE_LENGTH
    assert title.endswith("... | Steam DLC")


def test_fallback_title_is_ascii():
    title = fallback_title(product(name="Pokémon Légendes™ Edición"))
    assert title.isascii()
    assert title.endswith("| Steam Codigo Digital")
    assert len(title) <= MAX_TITLE_LENGTH


def test_sanitize_title():
    assert sanitize_title("  Año   Ñu <b>2</b> ") == "Año Ñu b2b"


def test_sanitize_description():
    raw = "Hola 🎮 mundo\r\n\r\n\r\n• punto\x07   uno"
    assert sanitize_description(raw) == "Hola mundo\n\n- punto uno"
    assert sanitize_description(None) == ""


def test_description_template_mentions_platform():
    text = build_description(product(), "key")
    assert text.startswith("Hollow Knight para Steam (código digital).")
    assert "¿Cómo funciona?" in text
    assert "🎮" not in text


def test_pictures_cover_first_and_capped():
    pictures = build_pictures(product(), max_pictures=2)
    assert pictures == ["https://img.test/cover.jpg", "https://img.test/shot0.jpg"]


def test_attributes_minimal_keeps_sku():
    full = build_attributes(product())
    minimal = build_attributes(product(), minimal=True)

    assert {"id": "SELLER_SKU", "value_name": "123"} in minimal
    assert len(minimal) < len(full)
    assert any(a["id"] == "PUBLISHERS" and a["value_name"] == "Team Cherry" for a in full)


def test_item_payload():
    p = product()
    payload = build_item_payload(
        p, "Hollow Knight | Steam Código Digital", 18990, "desc", build_pictures(p),
        category_id="MLC159270", currency_id="CLP", listing_type="gold_pro",
    )

    assert payload["price"] == 18990
    assert payload["available_quantity"] == 1
    assert payload["category_id"] == "MLC159270"
    assert payload["pictures"][0] == {"source": "https://img.test/cover.jpg"}
    assert payload["description"] == {"plain_text": "desc"}


def test_item_payload_without_description_or_pictures():
    payload = build_item_payload(
        product(), "Hollow Knight | Steam Código Digital", 18990, None, [],
        category_id="MLC159270", currency_id="CLP", listing_type="gold_pro",
    )
    assert "description" not in payload
    assert "pictures" not in payload
