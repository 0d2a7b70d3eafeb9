"""
Display category classification.

Maps the raw provider taxonomy (category, brand) onto a small closed set of
display categories. The function is pure so it can be re-applied on every read
to heal historically miscategorized records.
"""
from typing import Tuple

PULSA = "Pulsa"
TOKEN_LISTRIK = "Token Listrik"
GAME_TOPUP = "Game Topup"
E_MONEY = "E-Money"
DEFAULT = "Default"

GAME_BRANDS: Tuple[str, ...] = (
    "FREE FIRE",
    "MOBILE LEGENDS",
    "GENSHIN IMPACT",
    "HONKAI STAR RAIL",
)

PULSA_KEYWORDS = ("PULSA", "PAKET DATA")
PLN_CATEGORY_KEYWORDS = ("PLN", "TOKEN LISTRIK", "TOKEN")
GAME_KEYWORDS = ("GAME", "TOPUP", "VOUCHER GAME")
EMONEY_KEYWORDS = ("E-MONEY", "E-WALLET", "SALDO DIGITAL")

CATEGORIES: Tuple[str, ...] = (PULSA, TOKEN_LISTRIK, *GAME_BRANDS, GAME_TOPUP, E_MONEY, DEFAULT)


def _any_in(keywords: Tuple[str, ...], *haystacks: str) -> bool:
    return any(keyword in haystack for keyword in keywords for haystack in haystacks)


def classify(product_category: str, product_brand: str) -> str:
    """
    Return the display category for a provider category/brand pair.

    Rules are checked in priority order; the first match wins.
    """
    category = (product_category or "").upper()
    brand = (product_brand or "").upper()

    if _any_in(PULSA_KEYWORDS, category, brand):
        return PULSA
    if "PLN" in brand or _any_in(PLN_CATEGORY_KEYWORDS, category):
        return TOKEN_LISTRIK
    for game in GAME_BRANDS:
        if game in brand:
            return game
    if _any_in(GAME_KEYWORDS, category, brand):
        return GAME_TOPUP
    if _any_in(EMONEY_KEYWORDS, category, brand):
        return E_MONEY
    return DEFAULT
