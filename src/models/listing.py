"""Listing models - property listings (properties table)."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ListingStatus(str, Enum):
    """Lifecycle states."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class PropertyType(str, Enum):
    """Property types accepted by the marketplace."""
    CONDO = "condo"
    APARTMENT = "apartment"
    HOUSE = "house"
    VILLA = "villa"
    STUDIO = "studio"
    TOWNHOUSE = "townhouse"
    PENTHOUSE = "penthouse"
    SHOPHOUSE = "shophouse"
    LAND = "land"
    COMMERCIAL = "commercial"


class ListingType(str, Enum):
    """Listing type values."""
    SALE = "sale"
    RENT = "rent"


class ListingAttributes(BaseModel):
    """Agent-editable listing fields.

    Text and numeric fields default to empty/zero so that missing input is
    reported by the ordered static validation rather than by the schema.
    """
    title: str = Field("", description="Listing title")
    description: str = Field("", description="Listing description")
    property_type: PropertyType = Field(default=PropertyType.CONDO, description="Property type")
    listing_type: ListingType = Field(default=ListingType.SALE, description="sale or rent")
    price: float = Field(0, description="Asking price or monthly rent")
    bedrooms: int = Field(0, description="Bedroom count")
    bathrooms: int = Field(0, description="Bathroom count")
    floor_area: float = Field(0, description="Built-up area in square feet")
    address: str = Field("", description="Street address")
    city: str = Field("", description="City")
    state: Optional[str] = Field(None, description="State/region")
    postal_code: Optional[str] = Field(None, description="Postal code")
    image_urls: list[str] = Field(default_factory=list, description="Ordered image URLs")
    main_image_url: Optional[str] = Field(None, description="Primary thumbnail, one of image_urls")
    amenities: list[str] = Field(default_factory=list, description="Amenity labels (set semantics)")


MUTABLE_LISTING_FIELDS = tuple(ListingAttributes.model_fields.keys())


class Listing(ListingAttributes):
    """Stored property listing."""
    id: str = Field(..., description="Listing ID (text)")
    agent_id: str = Field(..., description="Owning agent account ID")
    status: ListingStatus = Field(default=ListingStatus.PENDING, description="Lifecycle state")
    views_count: int = Field(default=0, ge=0, description="View counter")
    revision: int = Field(default=0, ge=0, description="Bumped on every edit, used for conditional writes")
    psf_price: Optional[float] = Field(None, description="Price per square foot")
    is_featured: bool = Field(default=False, description="Shown in the featured section")
    featured_until: Optional[str] = Field(None, description="End of the current boost")
    boost_count: int = Field(default=0, ge=0, description="Times the listing was boosted")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def attributes(self) -> ListingAttributes:
        """Return the editable part of the listing."""
        return ListingAttributes(**self.model_dump(include=set(MUTABLE_LISTING_FIELDS)))
