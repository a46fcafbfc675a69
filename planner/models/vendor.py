from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class CategoryEnum(str, Enum):
    BAKER = "baker"
    CATERER = "caterer"
    DESIGNER = "designer"
    DJ = "dj"
    FLORIST = "florist"
    PHOTOGRAPHER = "photographer"
    PLANNER = "planner"
    RENTALS = "rentals"
    VENUE = "venue"
    VIDEOGRAPHER = "videographer"


class VendorStatusEnum(str, Enum):
    BOOKED = "booked"
    CONSIDERING = "considering"
    REJECTED = "rejected"


class VendorModel(BaseModel):
    # Immutable fields
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), frozen=True)
    id: UUID = Field(default_factory=uuid4, frozen=True)
    # Editable fields
    category: CategoryEnum
    city: str | None = None
    email: str | None = None
    name: str = Field(min_length=1)
    notes: str | None = None
    phone: str | None = None
    starting_price: float | None = Field(default=None, ge=0)
    state: str | None = None
    status: VendorStatusEnum = VendorStatusEnum.CONSIDERING
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    website: str | None = None

    @property
    def label(self) -> str:
        return f"Vendor: {self.name} ({self.category.value})"
