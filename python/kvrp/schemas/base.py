"""Base row schema shared by every table model.

Rows are immutable snapshots of backend state. The backend names the creation
column either `timestamp` or `created_at`; both land in `created_at`.
"""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Row(BaseModel):
    """A single backend row as held by the client.

    Attributes:
        id: Store-assigned identifier, unique within its collection.
        created_at: Server-assigned creation time used for feed ordering.
    """

    id: str
    created_at: datetime = Field(validation_alias=AliasChoices("created_at", "timestamp"))

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> str:
        if value is None:
            raise ValueError("id is required")
        return str(value)
