"""Notification sink that writes job events to the log."""

import logging
from typing import Any, Dict, Optional

from .base import BaseNotificationSink
from ..models.core import JobEvent

logger = logging.getLogger(__name__)


class LoggingNotificationSink(BaseNotificationSink):
    """Logs every job event; failure events are logged at warning level."""

    def notify(self, job_id: str, event: JobEvent, details: Optional[Dict[str, Any]] = None) -> None:
        message = f"[job {job_id}] {event.value}"
        if details:
            message += f" | {details}"
        if event in (JobEvent.LANGUAGE_FAILED, JobEvent.JOB_FAILED):
            logger.warning(message)
        else:
            logger.info(message)
