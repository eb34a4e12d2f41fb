import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

PHONE_PATTERN = re.compile(r"^\+?[1-9][\d\s\-()]{7,15}$")


class Address(BaseModel):
    """Postal address used for shipping and billing.

    Kept as a typed value object in memory; it is turned into a plain mapping
    only when written to a checkout or order row (see ``to_storage`` and
    ``from_storage``).
    """

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    company: Optional[str] = Field(None, max_length=100)
    address_line_1: str = Field(min_length=1, max_length=255)
    address_line_2: Optional[str] = Field(None, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state_province: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=2, max_length=2, description="ISO 3166-1 alpha-2 code")
    phone: Optional[str] = None

    @field_validator("country")
    @classmethod
    def upcase_country(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("must be a 2-letter country code")
        return v.upper()

    @field_validator("company", "address_line_2", "phone", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone format")
        return v

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def formatted(self) -> str:
        lines = [
            self.full_name,
            self.company,
            self.address_line_1,
            self.address_line_2,
            f"{self.city}, {self.state_province} {self.postal_code}",
            self.country,
        ]
        return "\n".join(line for line in lines if line)

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    @classmethod
    def from_storage(cls, data: Optional[Dict[str, Any]]) -> Optional["Address"]:
        """Rebuild an address from a stored mapping; empty or unreadable data yields None."""
        if not data:
            return None
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None


def field_errors(exc: ValidationError, prefix: Optional[str] = None) -> Dict[str, List[str]]:
    """Flatten a pydantic ValidationError into ``{field: [messages]}``."""
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "__root__"
        if prefix:
            field = f"{prefix}.{field}"
        errors.setdefault(field, []).append(error["msg"])
    return errors
