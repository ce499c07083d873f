"""Typed records exchanged between the parser, the comparator and reports."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SECONDARY_SEPARATOR = " + "
NOT_FOUND = "Not Found"


@dataclass(frozen=True, slots=True)
class AuthoritativeRecord:
    """A policy row taken from the Salesforce export."""

    key: str
    status: str = ""
    premium: str = ""
    product: str = ""


@dataclass(frozen=True, slots=True)
class IncomingRecord:
    """A policy row taken from the incoming carrier submission."""

    key: str
    status: str = ""
    premium: str = ""
    product: str = ""
    secondary: str = ""

    @property
    def effective_product(self) -> str:
        """Product string with the tiered-risk qualifier appended when present."""

        if self.secondary:
            return f"{self.product}{SECONDARY_SEPARATOR}{self.secondary}"
        return self.product


class DiscrepancyRecord(BaseModel):
    """Outcome of comparing one incoming record with its Salesforce counterpart.

    Field names serialise in camelCase so exported CSV and JSON keep the
    column layout used by the original browser tool.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    policy_id: str
    salesforce_status: str
    incoming_status: str
    salesforce_premium: str
    incoming_premium: str
    salesforce_product: str
    incoming_product: str
    status_mismatch: bool
    premium_mismatch: bool
    product_mismatch: bool
    found: bool = Field(default=True, exclude=True)

    @property
    def has_mismatch(self) -> bool:
        return self.status_mismatch or self.premium_mismatch or self.product_mismatch


REPORT_FIELDS: tuple[str, ...] = tuple(
    to_camel(name) for name in DiscrepancyRecord.model_fields if name != "found"
)


__all__ = [
    "AuthoritativeRecord",
    "DiscrepancyRecord",
    "IncomingRecord",
    "NOT_FOUND",
    "REPORT_FIELDS",
    "SECONDARY_SEPARATOR",
]
