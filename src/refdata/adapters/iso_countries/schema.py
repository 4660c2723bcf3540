"""Pydantic model for one row of an ISO 3166-1 country CSV."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class IsoCountryRow(BaseModel):
    """Accepts both the ``lukes/ISO-3166`` headers and the ``datasets/country-codes`` ones.

    Every field is optional here; presence and shape are enforced by the loader's
    validation step so that a bad row becomes a validation issue, not a parse error.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    name: str | None = Field(
        default=None, validation_alias=AliasChoices("name", "official_name_en", "CLDR display name")
    )
    alpha_2: str | None = Field(
        default=None, validation_alias=AliasChoices("alpha-2", "ISO3166-1-Alpha-2", "alpha_2")
    )
    alpha_3: str | None = Field(
        default=None, validation_alias=AliasChoices("alpha-3", "ISO3166-1-Alpha-3", "alpha_3")
    )
    numeric_code: str | None = Field(
        default=None,
        validation_alias=AliasChoices("country-code", "ISO3166-1-numeric", "numeric_code"),
    )
    region: str | None = Field(
        default=None, validation_alias=AliasChoices("region", "Region Name")
    )
    sub_region: str | None = Field(
        default=None, validation_alias=AliasChoices("sub-region", "Sub-region Name", "sub_region")
    )

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("alpha_2", "alpha_3", mode="after")
    @classmethod
    def upper_codes(cls, value: str | None) -> str | None:
        return value.upper() if value is not None else None

    @field_validator("numeric_code", mode="after")
    @classmethod
    def zero_pad_numeric(cls, value: str | None) -> str | None:
        if value is not None and value.isdigit():
            return value.zfill(3)
        return value
