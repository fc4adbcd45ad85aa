"""Shared data models for the service reminder sync agent."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


# Reminder attribute -> remote wire name
REMINDER_WIRE_FIELDS = {
    "id": "Id",
    "source_job_id": "SourceJobId",
    "customer_id": "CustomerId",
    "site_id": "SiteId",
    "due_date": "DueDate",
    "description": "Description",
    "status": "Status",
    "created_on": "CreatedOn",
    "created_by": "CreatedBy",
    "tenant_id": "TenantId",
    "number": "ServiceReminderNumber",
    "sequence": "ServiceReminderSequence",
    "last_manual_email_sent_on": "LastManualEmailSentOn",
    "last_automatic_email_sent_on": "LastAutomaticEmailSentOn",
    "email_send_mode": "ReminderEmailSendMode",
    "email_template_id": "ReminderEmailTemplateId",
}


@dataclass
class Job:
    """Snapshot of a job as last observed in the host application."""
    id: str
    number: Optional[str]
    customer_id: Optional[str]
    site_id: Optional[str] = None
    trigger_value: str = ""

    @classmethod
    def from_wire(cls, data: Dict[str, Any], trigger_field: str = "Custom4") -> "Job":
        """Build a Job from the host's wire representation."""
        return cls(
            id=data["Id"],
            number=data.get("JobNumber"),
            customer_id=data.get("CustomerId"),
            site_id=data.get("SiteId"),
            trigger_value=str(data.get(trigger_field) or ""),
        )


@dataclass
class Reminder:
    """A service reminder as returned by the remote system."""
    id: str
    source_job_id: Optional[str]
    customer_id: Optional[str] = None
    site_id: Optional[str] = None
    due_date: Optional[str] = None
    description: Optional[str] = None
    status: Optional[int] = None
    created_on: Optional[str] = None
    created_by: Optional[str] = None
    tenant_id: Optional[str] = None
    number: Optional[str] = None
    sequence: Optional[int] = None
    last_manual_email_sent_on: Optional[str] = None
    last_automatic_email_sent_on: Optional[str] = None
    email_send_mode: Optional[int] = None
    email_template_id: Optional[str] = None
    # Wire keys we don't model; echoed back so modify/delete carry the full record
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Reminder":
        values = {attr: data.get(wire) for attr, wire in REMINDER_WIRE_FIELDS.items()}
        known = set(REMINDER_WIRE_FIELDS.values()) | {"entityAspect"}
        extra = {key: value for key, value in data.items() if key not in known}
        return cls(extra=extra, **values)

    def to_wire(self) -> Dict[str, Any]:
        data = dict(self.extra)
        for attr, wire in REMINDER_WIRE_FIELDS.items():
            data[wire] = getattr(self, attr)
        return data


@dataclass
class StatusEvent:
    """State transition published to the status sink."""
    kind: str  # checking, no_reminder, has_reminder, error
    reminder: Optional[Reminder] = None
    message: Optional[str] = None

    @classmethod
    def checking(cls) -> "StatusEvent":
        return cls(kind="checking")

    @classmethod
    def no_reminder(cls) -> "StatusEvent":
        return cls(kind="no_reminder")

    @classmethod
    def has_reminder(cls, reminder: Reminder) -> "StatusEvent":
        return cls(kind="has_reminder", reminder=reminder)

    @classmethod
    def error(cls, message: str) -> "StatusEvent":
        return cls(kind="error", message=message)


@dataclass
class Notification:
    """Human-readable message for the notification sink."""
    job_number: Optional[str]
    level: str  # success, info, error
    title: str
    message: str = ""
    link: Optional[str] = None


@dataclass
class ObservedExchange:
    """One HTTP exchange between the host page and its API."""
    method: str
    url: str
    request_headers: Dict[str, str] = field(default_factory=dict)
    request_body: Optional[str] = None
    status_code: Optional[int] = None
    response_body: Optional[str] = None
