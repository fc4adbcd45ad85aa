"""Traffic tap - passively reads the host application's API exchanges."""

import json
import logging
from typing import Any, Mapping, Optional

import httpx

from shared.config import SyncSettings
from shared.models import ObservedExchange
from services.reminder_sync.repository import JOB_DETAIL_ENDPOINT, SAVE_ENDPOINT, extract_job_snapshot

logger = logging.getLogger(__name__)

PENDING_SAVE_EXTENSION = "reminder_sync.pending_save"


class TrafficTap:
    """
    Observes host exchanges and feeds the reconciliation engine.

    Two signals are extracted: job snapshots from job-detail responses,
    and saves of a job's triggering field. Every other exchange passes
    through untouched. Nothing here ever raises into the host's request
    lifecycle.
    """

    def __init__(self, engine, settings: SyncSettings, credential_store=None, credentials=None):
        """
        Initialize the tap.

        Args:
            engine: ReconciliationEngine receiving job_observed/field_changed
            settings: Agent settings (URL patterns, trigger field, header name)
            credential_store: Optional store that captured tokens are written to
            credentials: CredentialSource used to wrap captured tokens
        """
        self.engine = engine
        self.settings = settings
        self.credential_store = credential_store
        self.credentials = credentials

    # httpx integration

    def install(self, client: httpx.AsyncClient) -> None:
        """Attach request/response hooks to the host's HTTP client."""
        hooks = client.event_hooks
        hooks["request"] = list(hooks.get("request", [])) + [self._on_request]
        hooks["response"] = list(hooks.get("response", [])) + [self._on_response]
        client.event_hooks = hooks
        logger.info("Traffic monitoring active")

    async def _on_request(self, request: httpx.Request) -> None:
        try:
            self.capture_token(request.headers)
            url = str(request.url)
            if SAVE_ENDPOINT in url:
                body = request.content.decode("utf-8", errors="replace") if request.content else None
                pending = self.inspect_save(body)
                if pending is not None:
                    request.extensions[PENDING_SAVE_EXTENSION] = pending
        except Exception as e:
            logger.warning(f"Error inspecting outgoing request: {e}")

    async def _on_response(self, response: httpx.Response) -> None:
        try:
            url = str(response.request.url)
            if JOB_DETAIL_ENDPOINT in url:
                await response.aread()
                self.handle_job_detail(response.status_code, response.text)
            pending = response.request.extensions.get(PENDING_SAVE_EXTENSION)
            if pending is not None:
                self.handle_save_completed(response.status_code, pending)
        except Exception as e:
            logger.warning(f"Error inspecting response: {e}")

    # Forwarded exchanges

    def observe_exchange(self, exchange: ObservedExchange) -> None:
        """Process an exchange reported by an external forwarder."""
        try:
            self.capture_token(exchange.request_headers)
            if JOB_DETAIL_ENDPOINT in exchange.url:
                self.handle_job_detail(exchange.status_code, exchange.response_body)
            elif SAVE_ENDPOINT in exchange.url:
                pending = self.inspect_save(exchange.request_body)
                if pending is not None:
                    self.handle_save_completed(exchange.status_code, pending)
        except Exception as e:
            logger.warning(f"Error inspecting exchange {exchange.method} {exchange.url}: {e}")

    # Signal extraction

    def capture_token(self, headers: Optional[Mapping[str, str]]) -> None:
        """Store the host's anti-forgery token when a request carries one."""
        if not headers or self.credential_store is None:
            return

        wanted = self.settings.credential_header.lower()
        token = None
        for name, value in headers.items():
            if name.lower() == wanted:
                token = value
                break
        if not token:
            return

        key = self.settings.credential_storage_key
        envelope = self.credentials.envelope(token) if self.credentials else json.dumps({"token": token})
        if self.credential_store.get(key) != envelope:
            self.credential_store.set(key, envelope)
            logger.info("Token captured")

    def inspect_save(self, body: Optional[str]) -> Optional[dict]:
        """
        Look for a job save touching the triggering field.

        Returns:
            {"job_id", "value"} when the save is relevant, otherwise None
        """
        if not body:
            return None

        try:
            payload = json.loads(body)
        except ValueError as e:
            logger.warning(f"Error parsing save request: {e}")
            return None

        entity = _first_entity(payload)
        if entity is None:
            return None

        aspect = entity.get("entityAspect") or {}
        if aspect.get("entityTypeName") != self.settings.job_entity_type:
            return None
        if self.settings.trigger_field not in entity:
            return None

        value = entity.get(self.settings.trigger_field)
        value = "" if value is None else str(value)
        job_id = entity.get("Id")
        if not job_id:
            logger.warning("Job save without an Id, ignoring")
            return None

        return {"job_id": job_id, "value": value}

    def handle_save_completed(self, status_code: Optional[int], pending: dict) -> None:
        if status_code is None or not 200 <= status_code < 300:
            logger.warning(f"Job save for {pending['job_id']} was rejected ({status_code}), ignoring")
            return
        self.engine.field_changed(pending["job_id"], pending["value"])

    def handle_job_detail(self, status_code: Optional[int], body: Optional[str]) -> None:
        if status_code is None or not 200 <= status_code < 300 or not body:
            return

        try:
            data = json.loads(body)
        except ValueError as e:
            logger.warning(f"Error parsing job data: {e}")
            return

        job = extract_job_snapshot(data, self.settings.trigger_field)
        if job is None:
            logger.debug("Job detail response without a job snapshot")
            return
        self.engine.job_observed(job)


def _first_entity(payload: Any) -> Optional[dict]:
    if not isinstance(payload, dict):
        return None
    entities = payload.get("entities")
    if not isinstance(entities, list) or not entities:
        return None
    entity = entities[0]
    return entity if isinstance(entity, dict) else None
