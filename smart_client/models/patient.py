"""
Minimal Patient model.

Only the fields the client sorts and displays by are modelled; the rest of
the resource is kept as extra data.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from smart_client.constants import UNNAMED_PATIENT


class HumanName(BaseModel):
    """FHIR HumanName; ``family`` is a list in DSTU2 and a string in R4."""

    model_config = ConfigDict(extra="allow")

    use: str | None = None
    family: str | list[str] | None = None
    given: list[str] = Field(default_factory=list)

    @property
    def family_name(self) -> str | None:
        if isinstance(self.family, list):
            return " ".join(self.family) if self.family else None
        return self.family


class Patient(BaseModel):
    """FHIR Patient resource."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    resource_type: str = Field(default="Patient", alias="resourceType")
    id: str | None = None
    name: list[HumanName] = Field(default_factory=list)
    gender: str | None = None
    birth_date: str | None = Field(default=None, alias="birthDate")

    @property
    def given_name(self) -> str | None:
        """First given name of the first name entry."""
        if self.name and self.name[0].given:
            return self.name[0].given[0]
        return None

    @property
    def family_name(self) -> str | None:
        """Family name of the first name entry."""
        if self.name:
            return self.name[0].family_name
        return None

    @property
    def birth_datetime(self) -> datetime | None:
        """Birth date as a datetime; partial dates ("1970", "1970-05") are padded."""
        if not self.birth_date:
            return None
        parts = self.birth_date[:10].split("-")
        try:
            year = int(parts[0])
            month = int(parts[1]) if len(parts) > 1 else 1
            day = int(parts[2]) if len(parts) > 2 else 1
            return datetime(year, month, day)
        except ValueError:
            return None

    @property
    def display_name_family_given(self) -> str:
        """
        Display name in "Family, Given" form.

        Falls back to "Mr./Ms. Family" without given names and to
        "Unnamed Patient" without any name.
        """
        if self.name:
            human_name = self.name[0]
            given = " ".join(human_name.given) if human_name.given else None
            family = human_name.family_name
            if given:
                if family:
                    return f"{family}, {given}"
                return given
            if family:
                prefix = "Mr." if self.gender == "male" else "Ms."
                return f"{prefix} {family}"
        return UNNAMED_PATIENT

    def current_age(self, today: date | None = None) -> str:
        """Human readable age, e.g. "3 days old" or "42 yrs, 3 mths"."""
        born = self.birth_datetime
        if born is None:
            return ""
        born_date = born.date()
        today = today or date.today()

        total_months = (today.year - born_date.year) * 12 + (today.month - born_date.month)
        if today.day < born_date.day:
            total_months -= 1
        years, months = divmod(max(total_months, 0), 12)

        # babies
        if years < 1:
            if months < 1:
                days = (today - born_date).days
                if days < 1:
                    return "just born"
                return f"{days} {'day old' if days == 1 else 'days old'}"
            return f"{months} {'month old' if months == 1 else 'months old'}"

        # kids and adults
        if months != 0:
            yr = "yr" if years == 1 else "yrs"
            mth = "mth" if months == 1 else "mths"
            return f"{years} {yr}, {months} {mth}"
        return f"{years} {'year old' if years == 1 else 'years old'}"

    def to_resource(self) -> dict[str, Any]:
        """Serialize back to FHIR JSON."""
        return self.model_dump(by_alias=True, exclude_none=True)
