"""Side-effect hooks invoked by action nodes."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

import requests

from .config import HrflowConfig, load_config

logger = logging.getLogger(__name__)


class WorkflowHooks(metaclass=abc.ABCMeta):
    """Outbound notifications and document requests raised by action nodes."""

    @abc.abstractmethod
    async def send_email(
        self,
        template: str,
        *,
        run_id: UUID,
        tenant_id: str,
        employee_id: Optional[str],
        context: Dict[str, Any],
    ) -> None:
        """Send the email rendered from ``template``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def request_documents(
        self,
        documents: List[str],
        *,
        run_id: UUID,
        tenant_id: str,
        employee_id: Optional[str],
    ) -> None:
        """Ask the document service to expect ``documents`` from an employee."""
        raise NotImplementedError


class LoggingHooks(WorkflowHooks):
    """Record side effects in the log only."""

    async def send_email(self, template, *, run_id, tenant_id, employee_id, context):
        logger.info(
            f"Send email template={template} run_id={run_id} tenant_id={tenant_id} "
            f"employee_id={employee_id}"
        )

    async def request_documents(self, documents, *, run_id, tenant_id, employee_id):
        logger.info(
            f"Request documents {documents} run_id={run_id} employee_id={employee_id}"
        )


class WebhookHooks(WorkflowHooks):
    """POST every side effect as JSON to a webhook."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    def _post(self, body: Dict[str, Any]) -> None:
        resp = requests.post(self.url, json=body, timeout=self.timeout)
        resp.raise_for_status()

    async def send_email(self, template, *, run_id, tenant_id, employee_id, context):
        await asyncio.to_thread(
            self._post,
            {
                "event": "email",
                "template": template,
                "run_id": str(run_id),
                "tenant_id": tenant_id,
                "employee_id": employee_id,
                "context": context,
            },
        )

    async def request_documents(self, documents, *, run_id, tenant_id, employee_id):
        await asyncio.to_thread(
            self._post,
            {
                "event": "document_request",
                "documents": documents,
                "run_id": str(run_id),
                "tenant_id": tenant_id,
                "employee_id": employee_id,
            },
        )


def get_hooks(config: Optional[HrflowConfig] = None) -> WorkflowHooks:
    """Factory function to get the configured hooks backend."""

    config = config or load_config()
    notifications = config.notifications
    if notifications.backend == "logging":
        return LoggingHooks()
    elif notifications.backend == "webhook":
        if not notifications.webhook_url:
            raise ValueError("notifications.webhook_url is required for webhook hooks")
        return WebhookHooks(notifications.webhook_url, timeout=notifications.timeout)
    else:
        raise ValueError(f"Unsupported notification backend: {notifications.backend}")
