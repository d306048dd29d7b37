from datetime import datetime
from uuid import UUID

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

# Request fields are optional so a missing one reaches the service and comes
# back as a billing validation error naming the field.


class CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CheckoutRequest(CamelRequest):
    price_id: str | None = Field(default=None, alias="priceId")
    club_name: str | None = Field(default=None, alias="clubName")


class UpgradeCheckoutRequest(CamelRequest):
    price_id: str | None = Field(default=None, alias="priceId")
    club_id: str | None = Field(default=None, alias="clubId")


class FulfilRequest(CamelRequest):
    session_id: str | None = Field(default=None, alias="sessionId")


class ClubRequest(CamelRequest):
    club_id: str | None = Field(default=None, alias="clubId")


class CheckoutResponse(BaseModel):
    url: str


class FulfilResponse(BaseModel):
    success: bool
    created: bool
    # None once the fulfilled club has been deleted
    club_id: UUID | None = Field(default=None, serialization_alias="clubId")
    club_slug: str | None = Field(default=None, serialization_alias="clubSlug")


class Price(BaseModel):
    id: str
    unit_amount: int = Field(serialization_alias="unitAmount")
    currency: str
    interval: str

    model_config = ConfigDict(from_attributes=True)


class ClubSubscription(BaseModel):
    club_id: UUID = Field(serialization_alias="clubId")
    club_name: str = Field(serialization_alias="clubName")
    club_slug: str = Field(serialization_alias="clubSlug")
    plan_type: str | None = Field(default=None, serialization_alias="planType")
    status: str | None = None
    current_period_end: datetime | None = Field(default=None, serialization_alias="currentPeriodEnd")
    is_active: bool = Field(serialization_alias="isActive")


class DowngradeResponse(BaseModel):
    success: bool
    subscription: ClubSubscription
