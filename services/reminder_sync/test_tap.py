"""Unit tests for the traffic tap."""

import json
from unittest.mock import Mock

import httpx
import pytest

from shared.config import SyncSettings
from shared.models import ObservedExchange
from services.reminder_sync.credentials import CredentialSource, MemoryStore
from services.reminder_sync.tap import TrafficTap

BASE = "https://go.tradifyhq.com/api"
JOB_WIRE = {"Id": "J1", "JobNumber": "J-100", "CustomerId": "C1", "SiteId": None, "Custom4": "2025-12-25"}


def job_detail_body(job=JOB_WIRE):
    return json.dumps({"ChildData": {"JobStaffMembers": [{"Job": job}]}})


def save_body(entity_type="Job:#Tradify.Models", **fields):
    entity = {"Id": "J1", "JobNumber": "J-100", **fields}
    entity["entityAspect"] = {"entityTypeName": entity_type, "entityState": "Modified"}
    return json.dumps({"entities": [entity], "saveOptions": {}})


@pytest.fixture
def mock_engine():
    return Mock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def tap(mock_engine, store):
    settings = SyncSettings()
    credentials = CredentialSource(store, settings.credential_storage_key)
    return TrafficTap(mock_engine, settings, credential_store=store, credentials=credentials)


class TestObserveExchange:
    """Tests for forwarded exchanges."""

    def test_job_detail_publishes_snapshot(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="GET",
            url=f"{BASE}/Job/GetJobDetailData?id=J1",
            status_code=200,
            response_body=job_detail_body()
        ))

        job = mock_engine.job_observed.call_args.args[0]
        assert job.id == "J1"
        assert job.number == "J-100"
        assert job.trigger_value == "2025-12-25"

    def test_job_detail_without_job_is_ignored(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="GET",
            url=f"{BASE}/Job/GetJobDetailData",
            status_code=200,
            response_body=json.dumps({"ChildData": {"JobStaffMembers": []}})
        ))

        mock_engine.job_observed.assert_not_called()

    def test_job_save_with_trigger_field_publishes_change(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/SaveChanges/SaveChanges",
            request_body=save_body(Custom4="2025-12-25"),
            status_code=200,
            response_body="{}"
        ))

        mock_engine.field_changed.assert_called_once_with("J1", "2025-12-25")

    def test_cleared_trigger_field_publishes_empty_value(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/SaveChanges/SaveChanges",
            request_body=save_body(Custom4=None),
            status_code=200
        ))

        mock_engine.field_changed.assert_called_once_with("J1", "")

    def test_non_string_trigger_value_is_passed_as_text(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/SaveChanges/SaveChanges",
            request_body=save_body(Custom4=20251225),
            status_code=200
        ))

        mock_engine.field_changed.assert_called_once_with("J1", "20251225")

    def test_save_of_other_entity_is_ignored(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/SaveChanges/SaveChanges",
            request_body=save_body(entity_type="ServiceReminder:#Tradify.Models", Custom4="2025-12-25"),
            status_code=200
        ))

        mock_engine.field_changed.assert_not_called()

    def test_job_save_without_trigger_field_is_ignored(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/SaveChanges/SaveChanges",
            request_body=save_body(Description="new notes"),
            status_code=200
        ))

        mock_engine.field_changed.assert_not_called()

    def test_rejected_save_is_ignored(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/SaveChanges/SaveChanges",
            request_body=save_body(Custom4="2025-12-25"),
            status_code=500
        ))

        mock_engine.field_changed.assert_not_called()

    def test_malformed_bodies_are_swallowed(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/SaveChanges/SaveChanges",
            request_body="{not json",
            status_code=200
        ))
        tap.observe_exchange(ObservedExchange(
            method="GET",
            url=f"{BASE}/Job/GetJobDetailData",
            status_code=200,
            response_body="<html>"
        ))

        mock_engine.field_changed.assert_not_called()
        mock_engine.job_observed.assert_not_called()

    def test_engine_fault_does_not_escape(self, tap, mock_engine):
        mock_engine.field_changed.side_effect = RuntimeError("engine down")

        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/SaveChanges/SaveChanges",
            request_body=save_body(Custom4="2025-12-25"),
            status_code=200
        ))

    def test_unrelated_urls_pass_through(self, tap, mock_engine):
        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/Customer/GetCustomerList",
            request_body=save_body(Custom4="2025-12-25"),
            status_code=200
        ))

        mock_engine.field_changed.assert_not_called()
        mock_engine.job_observed.assert_not_called()

    @pytest.mark.asyncio
    async def test_captured_token_is_readable_by_credential_source(self, tap, store):
        tap.observe_exchange(ObservedExchange(
            method="POST",
            url=f"{BASE}/Customer/GetCustomerList",
            request_headers={"RequestVerificationAntiForgeryToken": "host-token"},
            status_code=200
        ))

        source = CredentialSource(store, SyncSettings().credential_storage_key)
        assert await source.acquire() == "host-token"

    def test_rotated_token_replaces_previous(self, tap, store):
        key = SyncSettings().credential_storage_key
        for token in ("first", "second"):
            tap.capture_token({"requestverificationantiforgerytoken": token})

        assert json.loads(store.get(key)) == {"token": "second"}


class TestHttpxHooks:
    """Tests for the httpx event hook integration."""

    def host_handler(self, request):
        if request.url.path.endswith("/Job/GetJobDetailData"):
            return httpx.Response(200, text=job_detail_body())
        return httpx.Response(200, json={"Entities": [], "KeyMappings": []})

    @pytest.mark.asyncio
    async def test_hooks_observe_without_altering_responses(self, tap, mock_engine):
        client = httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(self.host_handler))
        tap.install(client)

        detail = await client.get("Job/GetJobDetailData", params={"id": "J1"})
        saved = await client.post(
            "SaveChanges/SaveChanges",
            content=save_body(Custom4="2026-01-01"),
            headers={"requestverificationantiforgerytoken": "host-token"}
        )

        # The host still sees the full bodies
        assert detail.json()["ChildData"]["JobStaffMembers"][0]["Job"]["Id"] == "J1"
        assert saved.json() == {"Entities": [], "KeyMappings": []}

        assert mock_engine.job_observed.call_args.args[0].number == "J-100"
        mock_engine.field_changed.assert_called_once_with("J1", "2026-01-01")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_hooks_keep_existing_hooks(self, tap):
        seen = []

        async def existing_hook(request):
            seen.append(request.url.path)

        client = httpx.AsyncClient(
            base_url=BASE,
            transport=httpx.MockTransport(self.host_handler),
            event_hooks={"request": [existing_hook]}
        )
        tap.install(client)

        await client.post("SaveChanges/SaveChanges", content="{broken")

        assert seen == ["/api/SaveChanges/SaveChanges"]
        await client.aclose()
