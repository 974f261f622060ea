"""Pydantic models for the HeadHunter ``/vacancies`` API payloads."""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# HH sends offsets without a colon ("+0300")
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


class _HHModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class IDName(_HHModel):
    id: str = ""
    name: str = ""


class Area(_HHModel):
    id: str = ""
    name: str = ""
    url: str = ""


class Salary(_HHModel):
    from_: int | None = Field(default=None, alias="from")
    to: int | None = None
    currency: str = ""
    gross: bool = False


class Employer(_HHModel):
    id: str | None = None
    name: str = ""
    url: str | None = None
    alternate_url: str | None = None
    trusted: bool = False


class Snippet(_HHModel):
    requirement: str | None = None
    responsibility: str | None = None


class VacancyItem(_HHModel):
    id: str
    name: str = ""
    area: Area = Field(default_factory=Area)
    salary: Salary | None = None
    employer: Employer = Field(default_factory=Employer)
    published_at: datetime | None = None
    created_at: datetime | None = None
    archived: bool = False
    url: str = ""
    alternate_url: str = ""
    snippet: Snippet | None = None
    schedule: IDName | None = None
    experience: IDName | None = None
    employment: IDName | None = None
    professional_roles: list[IDName] = Field(default_factory=list)

    @field_validator("published_at", "created_at", mode="before")
    @classmethod
    def _normalize_offset(cls, value):
        if isinstance(value, str):
            return _COMPACT_OFFSET.sub(r"\1:\2", value)
        return value


class VacancySearchResponse(_HHModel):
    items: list[VacancyItem] = Field(default_factory=list)
    found: int = 0
    pages: int = 0
    page: int = 0
    per_page: int = 0


class HHErrorResponse(_HHModel):
    description: str = ""
    errors: list[dict] = Field(default_factory=list)


class SearchParams(BaseModel):
    """Query for ``GET /vacancies``; empty fields are omitted from the request."""

    text: str = ""
    area: str = ""
    experience: str = ""
    schedule: str = ""
    salary: int = 0
    date_from: datetime | None = None
    date_to: datetime | None = None
    per_page: int = 20

    def to_query(self, page: int = 0) -> dict[str, str]:
        query: dict[str, str] = {}
        if self.text:
            query["text"] = self.text
        if self.area:
            query["area"] = self.area
        if self.experience:
            query["experience"] = self.experience
        if self.schedule:
            query["schedule"] = self.schedule
        if self.salary > 0:
            query["salary"] = str(self.salary)
            query["only_with_salary"] = "true"
        if self.date_from is not None:
            query["date_from"] = self.date_from.isoformat(timespec="seconds")
        if self.date_to is not None:
            query["date_to"] = self.date_to.isoformat(timespec="seconds")
        if page > 0:
            query["page"] = str(page)
        query["per_page"] = str(self.per_page if self.per_page > 0 else 20)
        return query


def extract_vacancy_ids(response: VacancySearchResponse) -> list[str]:
    return [item.id for item in response.items]
