"""Listing content model - image list, main image and amenity set.

Edits are expressed as small immutable commands applied to an immutable
``ListingContent`` snapshot. Each ``apply`` returns a new snapshot and never
touches persistence, so every invariant can be checked in isolation:

* ``image_urls`` holds no duplicates and keeps insertion order;
* a non-empty image list always has a ``main_image_url`` taken from it;
* an empty image list has no ``main_image_url``;
* ``amenities`` is a set.
"""

import math
from typing import Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from src.models.listing import ListingAttributes
from src.utils.errors import ImageNotInList, ValidationFailed


class ListingContent(BaseModel):
    """Immutable snapshot of a listing's images and amenities."""
    model_config = ConfigDict(frozen=True)

    image_urls: tuple[str, ...] = ()
    main_image_url: Optional[str] = None
    amenities: frozenset[str] = frozenset()

    @model_validator(mode="after")
    def _check_invariants(self) -> "ListingContent":
        if len(set(self.image_urls)) != len(self.image_urls):
            raise ValueError("image_urls must be unique")
        if self.image_urls:
            if self.main_image_url not in self.image_urls:
                raise ValueError("main_image_url must be one of image_urls")
        elif self.main_image_url is not None:
            raise ValueError("main_image_url must be empty when there are no images")
        return self

    @classmethod
    def from_attributes(cls, attributes: ListingAttributes) -> "ListingContent":
        """Build a snapshot from stored or submitted listing fields."""
        images = tuple(dict.fromkeys(u.strip() for u in attributes.image_urls if u and u.strip()))
        main = (attributes.main_image_url or "").strip() or None
        if images and main is None:
            main = images[0]
        amenities = frozenset(a.strip() for a in attributes.amenities if a and a.strip())
        try:
            return cls(image_urls=images, main_image_url=main, amenities=amenities)
        except ValidationError as e:
            raise ValidationFailed("main_image_url", e.errors()[0]["msg"]) from e

    def to_fields(self) -> dict:
        """Column values for persistence; amenities are stored sorted."""
        return {
            "image_urls": list(self.image_urls),
            "main_image_url": self.main_image_url,
            "amenities": sorted(self.amenities),
        }


def _clean(value: str, field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationFailed(field, f"{field} entry must not be blank")
    return cleaned


class AddImage(BaseModel):
    """Append an image; the first image becomes the main image."""
    model_config = ConfigDict(frozen=True)
    url: str

    def apply(self, content: ListingContent) -> ListingContent:
        url = _clean(self.url, "image_urls")
        if url in content.image_urls:
            return content
        return ListingContent(
            image_urls=content.image_urls + (url,),
            main_image_url=content.main_image_url or url,
            amenities=content.amenities,
        )


class RemoveImage(BaseModel):
    """Remove an image; a removed main image hands over to the first remaining one."""
    model_config = ConfigDict(frozen=True)
    url: str

    def apply(self, content: ListingContent) -> ListingContent:
        url = _clean(self.url, "image_urls")
        if url not in content.image_urls:
            return content
        remaining = tuple(u for u in content.image_urls if u != url)
        main = content.main_image_url
        if main == url:
            main = remaining[0] if remaining else None
        return ListingContent(image_urls=remaining, main_image_url=main, amenities=content.amenities)


class SetMainImage(BaseModel):
    """Point the main image at an existing image."""
    model_config = ConfigDict(frozen=True)
    url: str

    def apply(self, content: ListingContent) -> ListingContent:
        url = (self.url or "").strip()
        if url not in content.image_urls:
            raise ImageNotInList(f"Image is not part of this listing: {self.url}")
        if url == content.main_image_url:
            return content
        return content.model_copy(update={"main_image_url": url})


class ToggleAmenity(BaseModel):
    """Add the amenity if absent, remove it if present."""
    model_config = ConfigDict(frozen=True)
    label: str

    def apply(self, content: ListingContent) -> ListingContent:
        label = _clean(self.label, "amenities")
        return content.model_copy(update={"amenities": content.amenities ^ {label}})


ContentCommand = Union[AddImage, RemoveImage, SetMainImage, ToggleAmenity]

COMMANDS_BY_NAME = {
    "add_image": AddImage,
    "remove_image": RemoveImage,
    "set_main_image": SetMainImage,
    "toggle_amenity": ToggleAmenity,
}


def apply_commands(content: ListingContent, commands: Iterable[ContentCommand]) -> ListingContent:
    """Fold a sequence of commands over a snapshot."""
    for command in commands:
        content = command.apply(content)
    return content


def parse_command(payload: dict) -> ContentCommand:
    """Build a command from ``{"op": "add_image", "url": ...}`` style input."""
    op = payload.get("op")
    command_cls = COMMANDS_BY_NAME.get(op)
    if command_cls is None:
        raise ValidationFailed("op", f"Unknown content operation: {op}")
    try:
        return command_cls(**{k: v for k, v in payload.items() if k != "op"})
    except ValidationError as e:
        error = e.errors()[0]
        field = str(error["loc"][0]) if error["loc"] else "op"
        raise ValidationFailed(field, error["msg"]) from e


VALIDATION_ORDER = ("title", "description", "price", "floor_area", "address", "city", "bedrooms", "bathrooms")


def _positive(value: float) -> bool:
    return math.isfinite(value) and value > 0


def _validation_rank(field: str) -> int:
    if field in VALIDATION_ORDER:
        return VALIDATION_ORDER.index(field)
    return len(VALIDATION_ORDER)


def validate_listing_attributes(attributes: ListingAttributes) -> ListingAttributes:
    """Check the static rules in a fixed order and raise on the first failure.

    Order: title, description, price, floor_area, address, city, then room
    counts and the image/main-image pairing.
    """
    if not attributes.title.strip():
        raise ValidationFailed("title", "Property title is required")
    if not attributes.description.strip():
        raise ValidationFailed("description", "Property description is required")
    if not _positive(attributes.price):
        raise ValidationFailed("price", "Valid price is required")
    if not _positive(attributes.floor_area):
        raise ValidationFailed("floor_area", "Valid floor area is required")
    if not attributes.address.strip():
        raise ValidationFailed("address", "Complete address is required")
    if not attributes.city.strip():
        raise ValidationFailed("city", "Complete address is required")
    if attributes.bedrooms < 0:
        raise ValidationFailed("bedrooms", "Bedroom count cannot be negative")
    if attributes.bathrooms < 0:
        raise ValidationFailed("bathrooms", "Bathroom count cannot be negative")
    ListingContent.from_attributes(attributes)
    return attributes


def parse_listing_attributes(payload: dict) -> ListingAttributes:
    """Turn raw input into ``ListingAttributes``; schema errors become ValidationFailed.

    Schema errors and static rule failures are reported together in
    ``VALIDATION_ORDER``: a blank title wins over a malformed price.
    """
    try:
        return ListingAttributes.model_validate(payload)
    except ValidationError as e:
        schema_errors: dict[str, str] = {}
        for error in e.errors():
            field = str(error["loc"][0]) if error["loc"] else "attributes"
            schema_errors.setdefault(field, error["msg"])
        if not isinstance(payload, dict) or "attributes" in schema_errors:
            raise ValidationFailed("attributes", schema_errors.get("attributes")) from e

    field = min(schema_errors, key=_validation_rank)
    remaining = {k: v for k, v in payload.items() if k not in schema_errors}
    try:
        validate_listing_attributes(ListingAttributes.model_validate(remaining))
    except ValidationFailed as static_error:
        if _validation_rank(static_error.field) < _validation_rank(field):
            raise
    raise ValidationFailed(field, schema_errors[field])


def normalize_attributes(attributes: ListingAttributes) -> ListingAttributes:
    """Validated attributes with content fields brought into canonical form."""
    validate_listing_attributes(attributes)
    content = ListingContent.from_attributes(attributes)
    return attributes.model_copy(update={
        "title": attributes.title.strip(),
        "description": attributes.description.strip(),
        "address": attributes.address.strip(),
        "city": attributes.city.strip(),
        **content.to_fields(),
    })
