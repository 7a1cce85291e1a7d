"""Service catalog data model."""

from pydantic import BaseModel, ConfigDict, Field


class Service(BaseModel):
    """Bookable service as seen by the scheduling core.

    Duration drives slot length; the advance-booking fields bound how
    soon and how far ahead a customer may book.
    """
    model_config = ConfigDict(frozen=True)

    service_id: str
    business_id: str
    name: str = ""
    duration_minutes: int = Field(gt=0)
    min_advance_booking_hours: int = Field(default=0, ge=0)
    max_advance_booking_days: int = Field(default=90, ge=1)
    requires_approval: bool = False
    is_active: bool = True
