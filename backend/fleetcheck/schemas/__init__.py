"""Pydantic schemas consolidating backend API contracts."""

# purpose: aggregate request and response schemas for FastAPI surfaces
# status: active

from .reminders import (
    AuditEventOut,
    ReminderCreate,
    ReminderOut,
    ReminderUpdate,
    TickOutcomeOut,
    TickReportOut,
)
from .runs import (
    EvidenceAttachOut,
    EvidenceLinkOut,
    EvidenceOut,
    ResponseAnswer,
    ResponseBatch,
    ResponseOut,
    ResponsePayload,
    RunCreate,
    RunCreateOut,
    RunDetailOut,
    RunOut,
    RunSummaryOut,
    SubmitOut,
    SubmitTallyOut,
    TemplateItemOut,
)

__all__ = [
    "AuditEventOut",
    "EvidenceAttachOut",
    "EvidenceLinkOut",
    "EvidenceOut",
    "ReminderCreate",
    "ReminderOut",
    "ReminderUpdate",
    "ResponseAnswer",
    "ResponseBatch",
    "ResponseOut",
    "ResponsePayload",
    "RunCreate",
    "RunCreateOut",
    "RunDetailOut",
    "RunOut",
    "RunSummaryOut",
    "SubmitOut",
    "SubmitTallyOut",
    "TemplateItemOut",
    "TickOutcomeOut",
    "TickReportOut",
]
