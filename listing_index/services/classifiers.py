"""Pure label classifiers used for listing and host facets."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from typing import TypeVar

OTHER_FAMILY = "other"

T = TypeVar("T")

# First match wins; specific patterns must come before the ones they contain
# ("tiny home" before "home", "aparthotel" before "hotel", ...).
PROPERTY_FAMILY_RULES: list[tuple[tuple[str, ...], str]] = [
    (("rental unit",), "rental unit"),
    (("condo",), "condo"),
    (("guesthouse",), "guesthouse"),
    (("guest suite",), "guest suite"),
    (("townhouse",), "townhouse"),
    (("vacation home",), "vacation home"),
    (("tiny home",), "tiny home"),
    (("earthen home",), "earthen home"),
    (("houseboat", "boat"), "boat"),
    (("treehouse",), "treehouse"),
    (("lighthouse",), "lighthouse"),
    (("home", "house"), "home"),
    (("aparthotel",), "aparthotel"),
    (("hotel",), "hotel"),
    (("bungalow",), "bungalow"),
    (("villa",), "villa"),
    (("loft",), "loft"),
    (("serviced apartment",), "serviced apartment"),
    (("cabin",), "cabin"),
    (("cottage",), "cottage"),
    (("resort",), "resort"),
    (("barn",), "barn"),
    (("camper", "rv"), "camper"),
    (("campsite", "tent"), "campsite"),
    (("castle",), "castle"),
    (("cave",), "cave"),
    (("dome",), "dome"),
    (("farm stay",), "farm stay"),
    (("hostel",), "hostel"),
    (("hut", "shepherd"), "hut"),
    (("yurt",), "yurt"),
    (("bed and breakfast",), "bed and breakfast"),
    (("nature lodge",), "nature lodge"),
    (("ranch",), "ranch"),
    (("tower",), "tower"),
    (("train",), "train"),
    (("shipping container",), "shipping container"),
    (("tipi",), "tipi"),
    (("island",), "island"),
    (("floor",), "floor"),
    (("minsu",), "minsu"),
    (("casa particular",), "casa particular"),
]

PRICE_LABELS = ("barato", "asequible", "caro")
RATING_LABELS = ("0-2", "2-3", "3-4", "4-4.5", "4.5-5")
REVIEWS_LABELS = ("0", "1-5", "6-34", "35-110", "111+")
BEDROOMS_LABELS = ("0", "1", "2", "3", "4", "5+")
HOST_SINCE_LABELS = ("<2008", "2008-2015", "2015-2020", "2020-2026", "2026+")

_PRICE_RULES: list[tuple[Callable[[float], bool], str]] = [
    (lambda price: price < 150, "barato"),
    (lambda price: price <= 300, "asequible"),
]

_RATING_RULES: list[tuple[Callable[[float], bool], str]] = [
    (lambda rating: rating < 2, "0-2"),
    (lambda rating: rating < 3, "2-3"),
    (lambda rating: rating < 4, "3-4"),
    (lambda rating: rating < 4.5, "4-4.5"),
]

_REVIEWS_RULES: list[tuple[Callable[[int], bool], str]] = [
    (lambda count: count <= 0, "0"),
    (lambda count: count <= 5, "1-5"),
    (lambda count: count <= 34, "6-34"),
    (lambda count: count <= 110, "35-110"),
]

_BEDROOMS_RULES: list[tuple[Callable[[int], bool], str]] = [
    (lambda count: count <= 0, "0"),
    (lambda count: count == 1, "1"),
    (lambda count: count == 2, "2"),
    (lambda count: count == 3, "3"),
    (lambda count: count == 4, "4"),
]

_HOST_SINCE_RULES: list[tuple[Callable[[date], bool], str]] = [
    (lambda day: day < date(2008, 1, 1), "<2008"),
    (lambda day: day <= date(2015, 1, 1), "2008-2015"),
    (lambda day: day <= date(2020, 1, 1), "2015-2020"),
    (lambda day: day <= date(2026, 1, 1), "2020-2026"),
]


def _first_match(value: T, rules: list[tuple[Callable[[T], bool], str]], fallback: str) -> str:
    for predicate, label in rules:
        if predicate(value):
            return label
    return fallback


def classify_property_type(property_type: str | None) -> str:
    """Map a raw `property_type` to its family, e.g. "Entire rental unit" -> "rental unit"."""

    if property_type is None or not property_type.strip():
        return OTHER_FAMILY
    lowered = property_type.lower()
    for keywords, family in PROPERTY_FAMILY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return family
    return OTHER_FAMILY


def price_range_label(price: float) -> str:
    """Bucket a nightly price: < 150 barato, 150-300 asequible, > 300 caro."""

    return _first_match(price, _PRICE_RULES, "caro")


def rating_range_label(rating: float) -> str:
    """Bucket `review_scores_rating` into star bands; anything >= 4.5 is "4.5-5"."""

    return _first_match(rating, _RATING_RULES, "4.5-5")


def reviews_range_label(number_of_reviews: int) -> str:
    """Bucket a review count; zero and negative counts both land in "0"."""

    return _first_match(number_of_reviews, _REVIEWS_RULES, "111+")


def bedrooms_category(bedrooms: int | None) -> str:
    """Discretize bedrooms into "0".."4" and "5+"; a missing count counts as "0"."""

    if bedrooms is None:
        return "0"
    return _first_match(bedrooms, _BEDROOMS_RULES, "5+")


def host_since_range_label(since: date) -> str:
    return _first_match(since, _HOST_SINCE_RULES, "2026+")
