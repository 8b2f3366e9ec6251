"""
Template Renderer.

WHAT: Fills ``{{placeholder}}`` variables in a rule's subject and body
from the case that triggered the notification.

WHY: Case records arrive incomplete more often than not (no doctor yet,
no delivery order number). A notification with "(Not specified)" in it
is more useful than one that was never sent, so rendering never fails.

HOW: Templates render through the sandboxed Jinja2 environment in
casenotify.core.templating. Substituted values are not scanned again, so
case data cannot inject further placeholders. Unknown names render as
"(Not specified)", and the output never contains raw ``{{`` / ``}}``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from jinja2 import TemplateError

from casenotify.core.templating import (
    NOT_SPECIFIED,
    break_delimiters,
    format_value,
    placeholder_names,
    template_env,
)
from casenotify.models.base import utcnow
from casenotify.schemas.case import CaseSnapshot
from casenotify.schemas.notification_rule import MessageTemplate, TemplateVariable


logger = logging.getLogger(__name__)


CURRENT_DATETIME = "currentDateTime"

# (placeholder, CaseSnapshot field, description, legacy aliases)
CASE_VARIABLES = [
    ("caseReferenceNumber", "case_reference_number", "Case reference number", ["caseReference"]),
    ("hospital", "hospital", "Hospital name", []),
    ("department", "department", "Department", []),
    ("dateOfSurgery", "date_of_surgery", "Date of surgery", ["date"]),
    ("timeOfProcedure", "time_of_procedure", "Time of procedure", []),
    ("procedureType", "procedure_type", "Procedure type", []),
    ("procedureName", "procedure_name", "Procedure name", ["procedure"]),
    ("doctorName", "doctor_name", "Doctor", ["doctor"]),
    ("status", "status", "Case status", []),
    ("submittedBy", "submitted_by", "Submitted by", ["submitter"]),
    ("submittedAt", "submitted_at", "Submission time", []),
    ("country", "country", "Country", []),
    ("specialInstruction", "special_instruction", "Special instructions", ["specialInstructions"]),
    ("surgerySetSelection", "surgery_set_selection", "Surgery sets", ["surgerySets"]),
    ("implantBox", "implant_box", "Implant boxes", ["implantBoxes"]),
    ("processOrderDetails", "process_order_details", "Order processing details", []),
    ("processedBy", "processed_by", "Processed by", []),
    ("processedAt", "processed_at", "Processing time", []),
    ("orderSummary", "order_summary", "Order summary", []),
    ("doNumber", "do_number", "Delivery order number", []),
    ("deliveryDetails", "delivery_details", "Delivery details", []),
    ("amendedBy", "amended_by", "Amended by", []),
    ("amendedAt", "amended_at", "Amendment time", []),
    ("isAmended", "is_amended", "Whether the case was amended (Yes/No)", []),
]


def available_variables() -> List[TemplateVariable]:
    """Placeholders the console offers when editing a template."""
    variables = [
        TemplateVariable(name=name, description=description, aliases=aliases)
        for name, _, description, aliases in CASE_VARIABLES
    ]
    variables.append(
        TemplateVariable(name=CURRENT_DATETIME, description="Date and time the email is sent")
    )
    return variables


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str


class TemplateRenderer:
    """
    Renders message templates against case snapshots.

    Example:
        renderer = TemplateRenderer()
        message = renderer.render(
            MessageTemplate(subject="New case {{caseReference}}"),
            CaseSnapshot(caseReference="SG-2024-001"),
        )
        message.subject  # "New case SG-2024-001"
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def variables_for(
        self, case: CaseSnapshot, extra: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """Raw variable values keyed by every accepted placeholder name."""
        values = case.field_values()
        for name, field, _, aliases in CASE_VARIABLES:
            for alias in aliases:
                values.setdefault(alias, values.get(field))
        values[CURRENT_DATETIME] = self.clock().strftime("%d %b %Y %H:%M UTC")
        if extra:
            values.update(extra)
        return values

    def render_text(self, text: str, values: Mapping[str, Any]) -> str:
        """
        Render one template string.

        Text that does not parse (stored before validation existed) is
        sent with its delimiters broken up rather than not at all.
        """
        try:
            ast = template_env.parse(text)
            unknown = placeholder_names(ast) - set(values)
            if unknown:
                logger.debug(f"Unknown template placeholders replaced: {', '.join(sorted(unknown))}")
            rendered = template_env.from_string(ast).render(values)
        except TemplateError as e:
            logger.warning(f"Template could not be rendered, sending it as text: {e}")
            rendered = text
        return break_delimiters(rendered)

    def render(
        self,
        template: MessageTemplate,
        case: CaseSnapshot,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> RenderedMessage:
        values = self.variables_for(case, extra)
        return RenderedMessage(
            subject=self.render_text(template.subject, values),
            body=self.render_text(template.body, values),
        )
