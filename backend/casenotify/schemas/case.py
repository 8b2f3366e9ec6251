"""
Case snapshot schema.

WHAT: The case record handed over by the booking workflow when a case
changes status.

WHY: The booking application owns cases. This service only needs a
snapshot to pick recipients and fill templates, so unknown fields are
kept (extra="allow") and exposed to templates instead of rejected.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CaseSnapshot(BaseModel):
    """Case record at the moment of a status change (camelCase or snake_case keys)."""

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    id: Optional[str] = None
    case_reference_number: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "case_reference_number", "caseReferenceNumber", "caseReference"
        ),
    )
    country: Optional[str] = None
    hospital: Optional[str] = None
    department: Optional[str] = None
    date_of_surgery: Optional[str] = None
    time_of_procedure: Optional[str] = None
    procedure_type: Optional[str] = None
    procedure_name: Optional[str] = None
    doctor_name: Optional[str] = None
    status: Optional[str] = None
    submitted_by: Optional[str] = None
    submitter_email: Optional[str] = None
    submitted_at: Optional[str] = None
    special_instruction: Optional[str] = None
    surgery_set_selection: List[str] = Field(default_factory=list)
    implant_box: List[str] = Field(default_factory=list)
    process_order_details: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[str] = None
    order_summary: Optional[str] = None
    do_number: Optional[str] = None
    delivery_details: Optional[str] = None
    amended_by: Optional[str] = None
    amended_at: Optional[str] = None
    is_amended: Optional[bool] = None

    @property
    def submitter_address(self) -> Optional[str]:
        """
        Mailbox of whoever submitted the case, if known.

        ``submitter_email`` wins; otherwise ``submitted_by`` is used when
        the booking system recorded an address rather than a name.
        """
        for candidate in (self.submitter_email, self.submitted_by):
            if candidate and "@" in candidate:
                return candidate.strip()
        return None

    def field_values(self) -> Dict[str, Any]:
        """
        Every field keyed by both its snake_case and camelCase name, plus extras.
        """
        values: Dict[str, Any] = {}
        for name in type(self).model_fields:
            value = getattr(self, name)
            values[name] = value
            values[to_camel(name)] = value
        values.update(self.model_extra or {})
        return values
