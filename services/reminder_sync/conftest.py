"""Shared fixtures for reminder sync tests."""

import json
from datetime import date

import httpx
import pytest

from shared.config import SyncSettings
from shared.models import Job
from services.reminder_sync.credentials import CredentialSource, MemoryStore
from services.reminder_sync.notifications import NotificationService, StatusBoard
from services.reminder_sync.repository import ReminderRepository
from services.reminder_sync.transport import Transport

TOKEN_KEY = "tradify.antiforgery"


class FakeRemote:
    """In-memory stand-in for the remote reminder API."""

    def __init__(self):
        self.reminders = {}
        self.jobs = {}
        self.requests = []
        self.saves = []
        self.fail_next = 0
        self.counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.fail_next:
            self.fail_next -= 1
            return httpx.Response(503, text="Service Unavailable")

        path = request.url.path

        if path.endswith("/ServiceReminder/GetServiceReminderList"):
            body = json.loads(request.content)
            page = body["page"]
            rows = sorted(self.reminders.values(), key=lambda r: r["DueDate"])
            start = (page["pageIndex"] - 1) * page["pageSize"]
            return httpx.Response(200, json={"Data": rows[start:start + page["pageSize"]]})

        if path.endswith("/SaveChanges/SaveChanges"):
            entity = json.loads(request.content)["entities"][0]
            aspect = entity.pop("entityAspect")
            state = aspect["entityState"]
            self.saves.append((state, dict(entity), aspect))

            if state == "Added":
                self.counter += 1
                entity["ServiceReminderNumber"] = f"SR-{self.counter:04d}"
                entity["ServiceReminderSequence"] = self.counter
                self.reminders[entity["Id"]] = entity
            elif state == "Modified":
                self.reminders[entity["Id"]] = entity
            elif state == "Deleted":
                self.reminders.pop(entity["Id"], None)
                return httpx.Response(200, json={"Entities": [], "KeyMappings": []})
            return httpx.Response(200, json={"Entities": [entity], "KeyMappings": []})

        if path.endswith("/Job/GetJobDetailData"):
            job = self.jobs.get(request.url.params.get("id"))
            members = [{"Job": job}] if job else []
            return httpx.Response(200, json={"ChildData": {"JobStaffMembers": members}})

        return httpx.Response(404)

    def save_states(self):
        return [state for state, _, _ in self.saves]

    def reminders_for(self, job_id):
        return [r for r in self.reminders.values() if r["SourceJobId"] == job_id]


@pytest.fixture
def settings():
    """Settings with delays shrunk for tests."""
    return SyncSettings(
        retry_initial_delay=0,
        debounce_seconds=0.05,
        settle_seconds=0,
        snapshot_wait_seconds=0.05,
        credential_poll_interval=0.01,
        credential_max_wait=0.05,
        search_page_size=2,
        search_max_pages=3,
    )


@pytest.fixture
def token_store():
    return MemoryStore({TOKEN_KEY: json.dumps({"token": "tok-123"})})


@pytest.fixture
def credentials(token_store, settings):
    return CredentialSource(
        token_store,
        TOKEN_KEY,
        poll_interval=settings.credential_poll_interval,
        max_wait=settings.credential_max_wait
    )


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def http_client(fake_remote, settings):
    return httpx.AsyncClient(
        base_url=settings.base_url,
        transport=httpx.MockTransport(fake_remote.handler)
    )


@pytest.fixture
def repository(http_client, credentials, settings):
    return ReminderRepository(Transport(http_client, settings), credentials, settings)


@pytest.fixture
def status_board():
    return StatusBoard()


@pytest.fixture
def notifier():
    return NotificationService(enabled=False)


@pytest.fixture
def job():
    return Job(id="J1", number="J-100", customer_id="C1", site_id=None, trigger_value="")


@pytest.fixture
def today():
    return lambda: date(2025, 6, 1)
