"""Build listing (property) and host records from CSV rows and map them to index documents."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date

from listing_index.services.classifiers import (
    bedrooms_category,
    classify_property_type,
    host_since_range_label,
    price_range_label,
    rating_range_label,
    reviews_range_label,
)
from listing_index.services.fields import (
    Header,
    epoch_millis,
    html_to_text,
    is_blank,
    parse_amenities,
    parse_date,
    parse_float,
    parse_int,
    parse_price,
)
from listing_index.services.search_index import Document, FacetsConfig

CONTENTS_FIELD = "contents"
PROPERTY_KEY_FIELD = "id"
HOST_KEY_FIELD = "host_id"
HOST_ID_COLUMN = "host_id"

SUPERHOST_TRUE_TOKENS = {"t", "true", "yes", "1"}

PROPERTY_FACET_DIMS = (
    "property_type",
    "property_type_simple",
    "neighbourhood_cleansed",
    "neighbourhood_group_cleansed",
    "price_range",
    "reviews_range",
    "rating_range",
)
HOST_FACET_DIMS = ("host_response_time", "host_since_range")


@dataclass(frozen=True)
class Categorical:
    """A categorical cell kept both verbatim (for display) and lowercased/trimmed (for lookups)."""

    original: str
    normalized: str

    @classmethod
    def from_raw(cls, raw_value: str | None) -> Categorical | None:
        if is_blank(raw_value):
            return None
        return cls(original=raw_value, normalized=raw_value.strip().lower())


@dataclass
class PropertyRecord:
    """One listing row, typed and enriched with facet labels."""

    id: int
    listing_url: str | None = None
    name: str | None = None
    description: str | None = None
    neighborhood_overview: str | None = None
    neighbourhood: Categorical | None = None
    neighbourhood_group: Categorical | None = None
    latitude: float | None = None
    longitude: float | None = None
    property_type: Categorical | None = None
    property_family: str | None = None
    amenities: list[str] = field(default_factory=list)
    price: float | None = None
    price_range: str | None = None
    number_of_reviews: int | None = None
    reviews_range: str | None = None
    rating: float | None = None
    rating_range: str | None = None
    bathrooms: float | None = None
    bathrooms_text: str | None = None
    bedrooms: int | None = None
    bedrooms_category: str | None = None
    host_id: str | None = None
    contents: str = ""

    @property
    def property_type_path(self) -> str | None:
        """Hierarchical facet path rendered as ``family/normalized-type``."""

        if self.property_type is None:
            return None
        return f"{self.property_family}/{self.property_type.normalized}"


@dataclass
class HostRecord:
    """One host, taken from the first listing row that mentions it."""

    host_id: str
    host_url: str | None = None
    host_name: str | None = None
    host_since: date | None = None
    host_since_original: str | None = None
    host_since_range: str | None = None
    host_location: str | None = None
    host_neighbourhood: str | None = None
    host_about: str | None = None
    response_time: Categorical | None = None
    is_superhost: int = 0
    contents: str = ""


def _join_contents(parts: Sequence[str | None]) -> str:
    return " ".join(part for part in parts if part is not None)


def _strip(value: str | None) -> str | None:
    return None if is_blank(value) else value.strip()


def build_property_record(
    row: Sequence[str],
    header: Header,
    *,
    id_field: str = "id",
) -> PropertyRecord | None:
    """Build a listing record, or None when the id does not parse as an integer."""

    listing_id = parse_int(header.get(row, id_field))
    if listing_id is None:
        return None

    name = header.get(row, "name")
    description = html_to_text(header.get(row, "description"))
    overview = html_to_text(header.get(row, "neighborhood_overview"))
    neighbourhood_raw = header.get(row, "neighbourhood_cleansed")
    property_type_raw = header.get(row, "property_type")
    amenities = parse_amenities(header.get(row, "amenities"))
    bathrooms = parse_float(header.get(row, "bathrooms"))
    bathrooms_text = header.get(row, "bathrooms_text")
    bedrooms = parse_int(header.get(row, "bedrooms"))
    price = parse_price(header.get(row, "price"))
    number_of_reviews = parse_int(header.get(row, "number_of_reviews"))
    rating = parse_float(header.get(row, "review_scores_rating"))
    latitude = parse_float(header.get(row, "latitude"))
    longitude = parse_float(header.get(row, "longitude"))
    if latitude is None or longitude is None:
        latitude = longitude = None

    record = PropertyRecord(
        id=listing_id,
        listing_url=_strip(header.get(row, "listing_url")),
        name=name,
        description=description,
        neighborhood_overview=overview,
        neighbourhood=Categorical.from_raw(neighbourhood_raw),
        neighbourhood_group=Categorical.from_raw(header.get(row, "neighbourhood_group_cleansed")),
        latitude=latitude,
        longitude=longitude,
        property_type=Categorical.from_raw(property_type_raw),
        amenities=amenities,
        price=price,
        number_of_reviews=number_of_reviews,
        rating=rating,
        bathrooms=bathrooms,
        bathrooms_text=bathrooms_text,
        bedrooms=bedrooms,
        host_id=_strip(header.get(row, HOST_ID_COLUMN)),
    )
    if record.property_type is not None:
        record.property_family = classify_property_type(property_type_raw)
    if price is not None:
        record.price_range = price_range_label(price)
    if number_of_reviews is not None:
        record.reviews_range = reviews_range_label(number_of_reviews)
    if rating is not None:
        record.rating_range = rating_range_label(rating)
    if bedrooms is not None:
        record.bedrooms_category = bedrooms_category(bedrooms)

    record.contents = _join_contents(
        [
            name,
            description,
            overview,
            neighbourhood_raw,
            property_type_raw,
            *amenities,
            f"{bathrooms} bathrooms" if bathrooms is not None else None,
            bathrooms_text,
            f"{bedrooms} bedrooms" if bedrooms is not None else None,
            f"price {price}" if price is not None else None,
            f"{number_of_reviews} reviews" if number_of_reviews is not None else None,
            f"rating {rating}" if rating is not None else None,
        ]
    )
    return record


def parse_superhost(raw_value: str | None) -> int:
    if raw_value is None:
        return 0
    return 1 if raw_value.strip().lower() in SUPERHOST_TRUE_TOKENS else 0


def build_host_record(row: Sequence[str], header: Header) -> HostRecord | None:
    """Build a host record, or None when `host_id` is missing or blank."""

    host_id = _strip(header.get(row, HOST_ID_COLUMN))
    if host_id is None:
        return None

    host_name = header.get(row, "host_name")
    host_location = header.get(row, "host_location")
    host_neighbourhood = header.get(row, "host_neighbourhood")
    host_about = html_to_text(header.get(row, "host_about"))
    response_time_raw = header.get(row, "host_response_time")
    since_raw = header.get(row, "host_since")
    since = parse_date(since_raw)
    is_superhost = parse_superhost(header.get(row, "host_is_superhost"))

    record = HostRecord(
        host_id=host_id,
        host_url=_strip(header.get(row, "host_url")),
        host_name=host_name,
        host_since=since,
        host_since_original=since_raw if since is not None else None,
        host_since_range=host_since_range_label(since) if since is not None else None,
        host_location=host_location,
        host_neighbourhood=host_neighbourhood,
        host_about=host_about,
        response_time=Categorical.from_raw(response_time_raw),
        is_superhost=is_superhost,
    )
    record.contents = _join_contents(
        [
            host_name,
            host_location,
            host_neighbourhood,
            host_about,
            response_time_raw,
            "superhost" if is_superhost else None,
        ]
    )
    return record


def create_facets_config() -> FacetsConfig:
    config = FacetsConfig()
    config.set_hierarchical("property_type")
    return config


def _add_categorical(doc: Document, name: str, value: Categorical | None, *, facet: bool = True) -> None:
    if value is None:
        return
    doc.add_stored(f"{name}_original", value.original)
    if facet:
        doc.add_facet(name, value.normalized)
    doc.add_string(name, value.normalized)
    doc.add_sorted(name, value.normalized)


def property_document(record: PropertyRecord) -> Document:
    """Map a listing record to index fields; `contents` is indexed but never stored."""

    doc = Document()
    doc.add_string(PROPERTY_KEY_FIELD, str(record.id))
    doc.add_point(PROPERTY_KEY_FIELD, record.id)
    doc.add_sorted(PROPERTY_KEY_FIELD, record.id)
    if record.listing_url:
        doc.add_string("listing_url", record.listing_url)
    doc.add_text("name", record.name)
    doc.add_text("description", record.description)
    doc.add_text("neighborhood_overview", record.neighborhood_overview)
    _add_categorical(doc, "neighbourhood_cleansed", record.neighbourhood)
    _add_categorical(doc, "neighbourhood_group_cleansed", record.neighbourhood_group)
    if record.latitude is not None and record.longitude is not None:
        doc.add_latlon("location", record.latitude, record.longitude)
        doc.add_stored("latitude", record.latitude)
        doc.add_stored("longitude", record.longitude)
    if record.property_type is not None:
        _add_categorical(doc, "property_type", record.property_type, facet=False)
        doc.add_facet("property_type", record.property_family or "other", record.property_type.normalized)
        doc.add_facet("property_type_simple", record.property_type.normalized)
    for amenity in record.amenities:
        doc.add_text("amenity", amenity)
    if record.price is not None:
        doc.add_point("price", record.price)
        doc.add_stored("price", record.price)
        doc.add_sorted("price", record.price)
        doc.add_facet("price_range", record.price_range)
    if record.number_of_reviews is not None:
        doc.add_point("number_of_reviews", record.number_of_reviews)
        doc.add_stored("number_of_reviews", record.number_of_reviews)
        doc.add_sorted("number_of_reviews", record.number_of_reviews)
        doc.add_facet("reviews_range", record.reviews_range)
    if record.rating is not None:
        doc.add_point("review_scores_rating", record.rating)
        doc.add_stored("review_scores_rating", record.rating)
        doc.add_sorted("review_scores_rating", record.rating)
        doc.add_facet("rating_range", record.rating_range)
    if record.bathrooms is not None:
        bathrooms = int(record.bathrooms)
        doc.add_point("bathrooms", bathrooms)
        doc.add_stored("bathrooms", bathrooms)
        doc.add_sorted("bathrooms", bathrooms)
    doc.add_text("bathrooms_text", record.bathrooms_text)
    if record.bedrooms is not None:
        doc.add_point("bedrooms", record.bedrooms)
        doc.add_stored("bedrooms", record.bedrooms)
        doc.add_sorted("bedrooms", record.bedrooms)
        doc.add_string("bedrooms_category", record.bedrooms_category)
        doc.add_sorted("bedrooms_category", record.bedrooms_category)
    if record.host_id:
        doc.add_string("host_id", record.host_id)
        doc.add_sorted("host_id", record.host_id)
    doc.add_text(CONTENTS_FIELD, record.contents, stored=False)
    return doc


def host_document(record: HostRecord) -> Document:
    doc = Document()
    doc.add_string(HOST_KEY_FIELD, record.host_id, stored=False)
    doc.add_sorted(HOST_KEY_FIELD, record.host_id)
    if record.host_url:
        doc.add_string("host_url", record.host_url)
    doc.add_text("host_name", record.host_name)
    if record.host_since is not None:
        millis = epoch_millis(record.host_since)
        doc.add_point("host_since", millis)
        doc.add_stored("host_since", millis)
        doc.add_stored("host_since_original", record.host_since_original)
        doc.add_sorted("host_since", millis)
        doc.add_facet("host_since_range", record.host_since_range)
    doc.add_text("host_location", record.host_location, stored=False)
    doc.add_text("host_neighbourhood", record.host_neighbourhood)
    doc.add_text("host_about", record.host_about)
    _add_categorical(doc, "host_response_time", record.response_time)
    doc.add_point("host_is_superhost", record.is_superhost)
    doc.add_stored("host_is_superhost", record.is_superhost)
    doc.add_sorted("host_is_superhost", record.is_superhost)
    doc.add_text(CONTENTS_FIELD, record.contents, stored=False)
    return doc
