"""
WAPI object models
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Fields requested on every CNAME read or write so all results compare alike
CNAME_RETURN_FIELDS = ("name", "canonical", "view", "ttl", "comment")


class CNAME(BaseModel):
    """A record:cname object as returned by the appliance"""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    ref: str | None = Field(default=None, alias="_ref", description="Opaque WAPI object reference")
    name: str = Field(..., description="Alias FQDN")
    canonical: str = Field(..., description="Canonical (target) FQDN")
    view: str | None = None
    ttl: int | None = None
    comment: str | None = None

    @classmethod
    def from_wapi(cls, data: dict[str, Any]) -> "CNAME":
        return cls.model_validate(data)

    def to_wapi(self) -> dict[str, Any]:
        """Writable fields in WAPI wire form"""
        return self.model_dump(exclude={"ref"}, exclude_none=True)
