"""
What a checkout should do once the processor reports it complete.

The intent travels through the processor as checkout session metadata, a flat
map of strings. It is validated into one of the models below on the way back
so the reconciler can branch on the variant type instead of on loose keys.
"""

from typing import Annotated, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator

from .exceptions import InvalidIntent


class BaseIntent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    user_id: str

    @field_validator("user_id", mode="before")
    @classmethod
    def user_id_as_string(cls, v):
        if v is None or str(v).strip() == "":
            raise ValueError("user_id is required")
        return str(v)

    def to_metadata(self) -> Dict[str, str]:
        """Flatten to the string-only map the processor stores."""
        return {key: str(value) for key, value in self.model_dump().items()}


class ClubNameIntent(BaseIntent):
    club_name: str

    @field_validator("club_name")
    @classmethod
    def club_name_not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("club_name must not be blank")
        return v


class NewClubIntent(ClubNameIntent):
    intent: Literal["new"] = "new"


class TrialIntent(ClubNameIntent):
    intent: Literal["trial"] = "trial"


class UpgradeIntent(BaseIntent):
    intent: Literal["upgrade"] = "upgrade"
    club_id: str

    @field_validator("club_id", mode="before")
    @classmethod
    def club_id_as_string(cls, v):
        if v is None or str(v).strip() == "":
            raise ValueError("club_id is required")
        return str(v)


FulfillmentIntent = Annotated[
    Union[NewClubIntent, TrialIntent, UpgradeIntent],
    Field(discriminator="intent"),
]

_intent_adapter = TypeAdapter(FulfillmentIntent)


def parse_intent(metadata: Optional[Mapping[str, str]]) -> FulfillmentIntent:
    """Validate checkout session metadata into an intent.

    Raises:
        InvalidIntent: If the metadata is missing or does not match a variant
    """
    if not metadata:
        raise InvalidIntent("Checkout session carries no intent metadata")

    try:
        return _intent_adapter.validate_python(dict(metadata))
    except PydanticValidationError as e:
        raise InvalidIntent(f"Invalid checkout intent metadata: {e.error_count()} error(s)")
