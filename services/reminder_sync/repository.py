"""Reminder Repository - typed service reminder operations on the remote API."""

import logging
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from shared.config import SyncSettings
from shared.models import Job, Reminder
from services.reminder_sync.credentials import CredentialSource
from services.reminder_sync.dates import format_wire_datetime, to_wire_midnight
from services.reminder_sync.errors import UnexpectedResponseShape
from services.reminder_sync.transport import Transport

logger = logging.getLogger(__name__)

SEARCH_ENDPOINT = "ServiceReminder/GetServiceReminderList"
SAVE_ENDPOINT = "SaveChanges/SaveChanges"
JOB_DETAIL_ENDPOINT = "Job/GetJobDetailData"


def extract_job_snapshot(data: Any, trigger_field: str) -> Optional[Job]:
    """Pull the job out of a job-detail response, or None if it isn't there."""
    try:
        raw_job = data["ChildData"]["JobStaffMembers"][0]["Job"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(raw_job, dict) or "Id" not in raw_job:
        return None
    return Job.from_wire(raw_job, trigger_field)


class ReminderRepository:
    """Search, create, update and delete service reminders."""

    def __init__(
        self,
        transport: Transport,
        credentials: CredentialSource,
        settings: SyncSettings
    ):
        """
        Initialize the repository.

        Args:
            transport: Retrying transport to the remote API
            credentials: Source of the session token, read before every call
            settings: Agent settings (entity names, ownership metadata)
        """
        self.transport = transport
        self.credentials = credentials
        self.settings = settings

    async def search(self, job_number: Optional[str], job_id: str) -> Optional[Reminder]:
        """
        Find the reminder whose source job is job_id.

        The server-side query is free text on the job number, so results are
        filtered locally by SourceJobId.

        Args:
            job_number: Human-readable job number used as search text
            job_id: Identifier the reminder must reference

        Returns:
            The matching Reminder, or None
        """
        if not job_number:
            logger.warning(f"Searching reminders for job {job_id} without a job number")

        page_size = self.settings.search_page_size

        for page_index in range(1, self.settings.search_max_pages + 1):
            token = await self.credentials.acquire()
            response = await self.transport.call(
                SEARCH_ENDPOINT,
                "POST",
                token,
                body=self._build_search_payload(job_number, page_index)
            )

            rows = response.get("Data") if isinstance(response, dict) else None
            if not isinstance(rows, list):
                raise UnexpectedResponseShape("Reminder list response has no Data list")

            for row in rows:
                if isinstance(row, dict) and row.get("SourceJobId") == job_id:
                    reminder = Reminder.from_wire(row)
                    logger.info(f"Found existing reminder {reminder.number} for job {job_number}")
                    return reminder

            if len(rows) < page_size:
                break

        logger.info(f"No existing reminder for job {job_number}")
        return None

    async def create(self, job: Job, due_date: date) -> Reminder:
        """
        Create a reminder for the job, due at midnight of due_date.

        Returns:
            The reminder as saved by the remote system
        """
        logger.info(f"Creating reminder for job {job.number} due {due_date.isoformat()}")

        reminder = Reminder(
            id=str(uuid.uuid4()),
            source_job_id=job.id,
            customer_id=job.customer_id,
            site_id=job.site_id,
            due_date=to_wire_midnight(due_date),
            description=self.settings.description,
            status=1,
            created_on=format_wire_datetime(datetime.now()),
            created_by=self.settings.created_by_user_id,
            tenant_id=self.settings.tenant_id,
            number="New Service Reminder",
            sequence=0,
            email_send_mode=self.settings.email_send_mode,
            email_template_id=self.settings.email_template_id,
        )

        saved = await self._save(reminder, "Added")
        logger.info(f"Created reminder {saved.number} for job {job.number}")
        return saved

    async def update(self, existing: Reminder, due_date: date) -> Reminder:
        """
        Move an existing reminder to a new due date.

        The full record is sent with only DueDate changed, together with the
        previous DueDate as change-tracking metadata.
        """
        logger.info(f"Updating reminder {existing.number} to {due_date.isoformat()}")

        changed = Reminder.from_wire(existing.to_wire())
        changed.due_date = to_wire_midnight(due_date)

        saved = await self._save(
            changed,
            "Modified",
            original_values={"DueDate": existing.due_date}
        )
        logger.info(f"Updated reminder {saved.number}")
        return saved

    async def delete(self, existing: Reminder) -> bool:
        """Delete an existing reminder."""
        logger.info(f"Deleting reminder {existing.number}")

        token = await self.credentials.acquire()
        await self.transport.call(
            SAVE_ENDPOINT,
            "POST",
            token,
            body=self._build_envelope(existing, "Deleted")
        )

        logger.info(f"Deleted reminder {existing.number}")
        return True

    async def fetch_job(self, job_id: str) -> Job:
        """
        Fetch a job snapshot directly, for when the host's own fetch was missed.

        Raises:
            UnexpectedResponseShape: If the response carries no job
        """
        logger.info(f"Fetching job detail for {job_id}")

        token = await self.credentials.acquire()
        response = await self.transport.call(
            JOB_DETAIL_ENDPOINT,
            "GET",
            token,
            params={"id": job_id}
        )

        job = extract_job_snapshot(response, self.settings.trigger_field)
        if job is None:
            raise UnexpectedResponseShape(f"Job detail response for {job_id} has no job")
        return job

    async def _save(
        self,
        reminder: Reminder,
        entity_state: str,
        original_values: Optional[Dict[str, Any]] = None
    ) -> Reminder:
        token = await self.credentials.acquire()
        response = await self.transport.call(
            SAVE_ENDPOINT,
            "POST",
            token,
            body=self._build_envelope(reminder, entity_state, original_values)
        )

        entities = response.get("Entities") if isinstance(response, dict) else None
        if not isinstance(entities, list) or not entities or not isinstance(entities[0], dict):
            raise UnexpectedResponseShape(
                f"SaveChanges response for {entity_state} reminder has no Entities"
            )
        return Reminder.from_wire(entities[0])

    def _build_search_payload(self, job_number: Optional[str], page_index: int) -> Dict[str, Any]:
        return {
            "searchQuery": job_number or "",
            "sort": {"expression": "dueDate", "isAscending": True},
            "page": {"pageIndex": page_index, "pageSize": self.settings.search_page_size},
            "selectedIds": [],
            "dateFrom": None,
            "dateTo": None,
            "serviceReminderListFilter": 1
        }

    def _build_envelope(
        self,
        reminder: Reminder,
        entity_state: str,
        original_values: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        entity = reminder.to_wire()
        entity["entityAspect"] = {
            "entityTypeName": self.settings.reminder_entity_type,
            "defaultResourceName": self.settings.reminder_resource_name,
            "entityState": entity_state,
            "originalValuesMap": original_values or {},
            "autoGeneratedKey": None
        }
        entities: List[Dict[str, Any]] = [entity]
        return {"entities": entities, "saveOptions": {}}
