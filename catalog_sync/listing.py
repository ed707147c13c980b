"""
Listing content derived from a supplier product.

This module provides:
- Platform normalization and product-type classification
- Marketplace-safe titles (<= 60 chars) and plain-text descriptions
- Region allow-list verdicts
- Marketplace item payloads, including the reduced variants used when a
  create request has to be corrected and resent
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from schemas.supplier import SourceProduct

MAX_TITLE_LENGTH = 60
MIN_TITLE_LENGTH = 10

PRODUCT_TYPES = ("gift_card", "altergift", "dlc", "gift", "account", "key")

# (needle, platform) checked in order
_PLATFORM_RULES = (
    (("ea app",), "EA App"),
    (("origin",), "Origin"),
    (("gog",), "GOG"),
    (("steam",), "Steam"),
    (("epic",), "Epic Games"),
    (("ubisoft", "uplay"), "Ubisoft"),
    (("battle.net", "battlenet"), "Battle.net"),
    (("microsoft", "xbox"), "Microsoft Store"),
)

_MONEY_PATTERN = re.compile(r"\$\d+|\d+\s?usd|\d+\s?eur")
_ACCOUNT_HINTS = (
    "login", "credential", "password", "usuario", "contraseña", "full access",
    "offline account", "preloaded account", "compartida", "shared account",
)
_DLC_HINTS = ("dlc", "downloadable content", "expansion", "add-on", "season pass")

_TITLE_NOISE = re.compile(r"\b(pc|steam|gog|epic|ubisoft|origin|ea app|key|digital|gift|dlc)\b", re.IGNORECASE)
_TITLE_UNSAFE = re.compile(r"[^A-Za-z0-9_\s\-|.áéíóúñÁÉÍÓÚÑüÜ]")
_SPACES = re.compile(r"\s+")

_TITLE_SUFFIXES = {
    "altergift": "{platform} Altergift",
    "dlc": "{platform} DLC",
    "account": "{platform} Cuenta",
    "gift": "{platform} Steam Gift",
}
_DEFAULT_TITLE_SUFFIX = "{platform} Código Digital"


def normalize_platform(platform: Optional[str]) -> str:
    """Map the supplier platform string onto a display name (default PC)."""
    if not platform:
        return "PC"
    value = platform.strip().lower()
    for needles, name in _PLATFORM_RULES:
        if any(needle in value for needle in needles):
            return name
    return "PC"


def _classifier_text(product: SourceProduct) -> str:
    parts: Iterable[Any] = [
        product.name,
        product.original_name,
        product.format,
        product.platform,
        *product.features,
        product.description,
    ]
    return " ".join(str(p).lower() for p in parts if p)


def classify_product(product: SourceProduct) -> str:
    """
    Tag a product as gift_card, altergift, dlc, gift, account or key.

    Checks run in that order over name, original name, format, platform,
    features and description.
    """
    text = _classifier_text(product)
    is_altergift = "altergift" in text or "alter gift" in text

    is_gift_card = (
        "gift card" in text
        or "tarjeta de regalo" in text
        or "wallet" in text
        or _MONEY_PATTERN.search(text) is not None
    )
    if is_gift_card and "altergift" not in text:
        return "gift_card"
    if is_altergift:
        return "altergift"
    if any(hint in text for hint in _DLC_HINTS):
        return "dlc"
    if "gift" in text:
        return "gift"
    if "account" in text and any(hint in text for hint in _ACCOUNT_HINTS):
        return "account"
    return "key"


@dataclass(frozen=True)
class RegionVerdict:
    normalized: str
    allowed: bool


def region_verdict(region_limitations: Optional[str], allowed_regions: Iterable[str]) -> RegionVerdict:
    """Empty regions are allowed; otherwise any allow-list entry must be a substring."""
    normalized = (region_limitations or "").strip().lower()
    allowed = normalized == "" or any(region.lower() in normalized for region in allowed_regions)
    return RegionVerdict(normalized=normalized, allowed=allowed)


# ============================================================================
# Titles
# ============================================================================

def _collapse(text: str) -> str:
    return _SPACES.sub(" ", text).strip()


def sanitize_title(text: str) -> str:
    """Keep letters, digits, spaces, dashes, pipes, dots and Spanish accents."""
    text = unicodedata.normalize("NFC", text or "")
    return _collapse(_TITLE_UNSAFE.sub("", text))


def build_title(product: SourceProduct, product_type: str) -> str:
    """
    ``"{name} | {platform suffix}"`` capped at 60 characters.

    Platform and format words are removed from the name first. When the
    result is too long the name is shortened and marked with "...", the
    suffix is always kept.
    """
    platform = normalize_platform(product.platform)
    suffix = _TITLE_SUFFIXES.get(product_type, _DEFAULT_TITLE_SUFFIX).format(platform=platform)

    name = _TITLE_NOISE.sub("", product.display_name or "Videojuego")
    name = sanitize_title(name)

    title = f"{name} | {suffix}"
    if len(title) > MAX_TITLE_LENGTH:
        keep = max(0, MAX_TITLE_LENGTH - 6 - len(suffix))
        title = f"{name[:keep].rstrip()}... | {suffix}"

    title = _collapse(title)
    if len(title) > MAX_TITLE_LENGTH:
        title = title[:MAX_TITLE_LENGTH - 3] + "..."
    return title


def fallback_title(product: SourceProduct) -> str:
    """Plain ASCII title used when the marketplace rejects the regular one."""
    name = unicodedata.normalize("NFKD", product.display_name or "Videojuego")
    name = name.encode("ascii", "ignore").decode("ascii")
    name = _collapse(re.sub(r"[^A-Za-z0-9 ]", " ", _TITLE_NOISE.sub("", name)))
    platform = normalize_platform(product.platform)
    suffix = f"{platform} Codigo Digital"
    name = name[:MAX_TITLE_LENGTH - 3 - len(suffix)].rstrip() or "Videojuego"
    return f"{name} | {suffix}"


# ============================================================================
# Descriptions
# ============================================================================

_SERVICE_HOURS = "Atención de lunes a domingo de 9:00 a 23:00 hrs."
_SUPPORT = "Soporte en español durante todo el proceso de activación."
_ADVANTAGES = (
    "- Sin tarjeta de crédito internacional: pagas directamente en la plataforma.\n"
    "- Sin costos ocultos, pagas exactamente el precio publicado.\n"
    "- Entrega dentro del horario de atención una vez confirmado el pago.\n"
    "- Garantía de activación o devolución de tu dinero."
)

_TEMPLATES = {
    "gift_card": (
        "Recarga tu cuenta {platform} de forma rápida y segura.\n\n{name}{amount} para {platform}.",
        ("Compra y paga en la plataforma.", "Recibe tu código digital.", "Canjea el saldo en tu cuenta."),
        "Verifica que tu cuenta sea compatible con la región de la tarjeta. "
        "No se aceptan devoluciones por error de región.",
    ),
    "altergift": (
        "{name} en formato Altergift para {platform}.\n\n"
        "Recibirás un enlace: al abrirlo, un bot te agrega como amigo y envía el juego como regalo.",
        ("Compra y paga en la plataforma.", "Recibe el enlace especial.", "Acepta la solicitud y recibe el juego."),
        "Necesitas una cuenta activa en {platform}. No hay devoluciones una vez enviado el regalo.",
    ),
    "gift": (
        "{name} en formato Steam Gift.\n\nRecibirás un enlace oficial de Steam para aceptar el regalo.",
        ("Compra y paga en la plataforma.", "Recibe el enlace del regalo.", "Acepta el regalo y juega."),
        "Necesitas una cuenta activa en Steam. No hay devoluciones una vez entregado el regalo.",
    ),
    "account": (
        "Cuenta de {name} para {platform}.\n\nRecibirás los datos de acceso y las instrucciones de uso.",
        ("Compra y paga en la plataforma.", "Recibe los datos de acceso.", "Sigue las instrucciones y juega."),
        "Sigue las instrucciones para mantener el acceso. No hay devoluciones salvo error inicial de acceso.",
    ),
    "dlc": (
        "Contenido adicional (DLC) de {name} para {platform}.",
        ("Compra y paga en la plataforma.", "Recibe el código del DLC.", "Actívalo en tu cuenta de {platform}."),
        "Requiere el juego base. No hay devoluciones salvo error de activación.",
    ),
    "key": (
        "{name} para {platform} (código digital).\n\nActiva el juego completo en tu cuenta.",
        ("Compra y paga en la plataforma.", "Recibe el código digital.", "Actívalo en tu cuenta de {platform}."),
        "Una vez entregado el código no hay devoluciones, salvo código defectuoso.",
    ),
}

_AMOUNT_PATTERN = re.compile(
    r"[0-9]+\s?(usd|eur|clp|mxn|\$|€|£|¥|dólares?|euros?|pesos?|reales?|soles?|libras?)",
    re.IGNORECASE
)

_BULLETS = re.compile("[\u2022\u25cf\u25aa\u00b7\u2013\u2014\u2212]\ufe0e?")
_NON_BMP = re.compile("[\U00010000-\U0010FFFF\ud800-\udfff]")
_CONTROL = re.compile(r"[\x00-\x09\x0b-\x1f\x7f]")


def sanitize_description(text: Optional[str]) -> str:
    """
    Make a description safe for the marketplace plain-text field.

    Removes emoji and other astral characters, normalizes bullets to "-",
    normalizes line breaks, collapses blank lines and runs of spaces,
    drops control characters and applies NFC.
    """
    if not text:
        return ""
    s = _NON_BMP.sub("", str(text))
    s = _BULLETS.sub("-", s)
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    s = re.sub(r"[ \t]+\n", "\n", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    s = re.sub(r"[ \t]{2,}", " ", s)
    s = _CONTROL.sub("", s)
    return unicodedata.normalize("NFC", s).strip()


def build_description(product: SourceProduct, product_type: str) -> str:
    platform = normalize_platform(product.platform)
    name = product.display_name or "este producto"
    intro, steps, note = _TEMPLATES.get(product_type, _TEMPLATES["key"])

    amount = ""
    if product_type == "gift_card":
        match = _AMOUNT_PATTERN.search(name)
        if match:
            amount = f" ({match.group(0).upper()})"

    values = {"name": name, "platform": platform, "amount": amount}
    how_to = "\n".join(f"{i}. {step.format(**values)}" for i, step in enumerate(steps, start=1))

    text = (
        f"{intro.format(**values)}\n\n"
        f"¿Cómo funciona?\n{how_to}\n\n"
        f"Ventajas:\n{_ADVANTAGES}\n\n"
        f"{_SERVICE_HOURS}\n{_SUPPORT}\n\n"
        f"Importante: {note.format(**values)}"
    )
    return sanitize_description(text)


def fallback_description(product: SourceProduct) -> str:
    """Short generic description used when the templated one is empty."""
    platform = normalize_platform(product.platform)
    name = product.display_name or "este producto"
    return (
        f"{name} {platform} (código digital).\n\n"
        f"Videojuego digital completo. Se activa en tu cuenta de {platform}.\n\n"
        f"- Entrega de 9:00 a 23:00 hrs.\n"
        f"- Sin devoluciones una vez entregado el código, salvo código defectuoso.\n"
        f"- Soporte en español durante la activación."
    )


# ============================================================================
# Marketplace payloads
# ============================================================================

def build_pictures(product: SourceProduct, max_pictures: int = 6) -> List[str]:
    """Cover first, then screenshots, at most ``max_pictures``."""
    pictures = []
    if product.cover_image:
        pictures.append(product.cover_image)
    for url in product.screenshots:
        if len(pictures) >= max_pictures:
            break
        if url not in pictures:
            pictures.append(url)
    return pictures[:max_pictures]


def build_attributes(product: SourceProduct, minimal: bool = False) -> List[Dict[str, Any]]:
    """Category attributes; ``minimal`` keeps only the SKU and mandatory ones."""
    attributes = [
        {"id": "SELLER_SKU", "value_name": product.supplier_id},
        {"id": "ITEM_CONDITION", "value_id": "2230284"},
        {"id": "EMPTY_GTIN_REASON", "value_id": "17055159"},
    ]
    if minimal:
        return attributes

    name = product.display_name or "Videojuego Digital"
    attributes.extend([
        {"id": "VIDEO_GAME_TITLE", "value_name": name},
        {"id": "EDITION", "value_name": product.name or "Código Digital Standard"},
        {"id": "FORMAT", "value_id": "2132699"},
        {"id": "VIDEO_GAME_PLATFORM", "value_id": "126552"},
        {"id": "PUBLISHERS", "value_name": product.publishers[0] if product.publishers else "Desarrollador Independiente"},
        {"id": "US_GAME_CLASSIFICATION", "value_name": "RP (Rating Pending)"},
    ])
    return attributes


def build_item_payload(
    product: SourceProduct,
    title: str,
    price: int,
    description: Optional[str],
    pictures: List[str],
    *,
    category_id: str,
    currency_id: str,
    listing_type: str,
    minimal_attributes: bool = False
) -> Dict[str, Any]:
    """
    Body of the marketplace create request.

    ``description=None`` leaves the description out of the body (it is
    still set afterwards through the description endpoint).
    """
    payload: Dict[str, Any] = {
        "title": title,
        "category_id": category_id,
        "price": price,
        "currency_id": currency_id,
        "available_quantity": 1,
        "buying_mode": "buy_it_now",
        "listing_type_id": listing_type,
        "condition": "new",
        "attributes": build_attributes(product, minimal=minimal_attributes),
        "sale_terms": [
            {"id": "WARRANTY_TYPE", "value_name": "Garantía del vendedor"},
            {"id": "WARRANTY_TIME", "value_name": "1 día"},
        ],
        "shipping": {"mode": "not_specified", "free_shipping": False, "local_pick_up": False},
    }
    if pictures:
        payload["pictures"] = [{"source": url} for url in pictures]
    if description:
        payload["description"] = {"plain_text": description}
    return payload
