"""Activity indicator reported to the host.

Only transitions are reported: the host sees one message when reporting
starts, one when it breaks and one when it recovers.
"""

from __future__ import annotations

import logging

from retrieve_checker.interfaces import Host
from retrieve_checker.utils.exceptions import HttpResponseError

logger = logging.getLogger(__name__)

MSG_STARTED = "Retrieval checker started reporting results"
MSG_RESUMED = "Retrieval checker result reporting resumed"
MSG_FAILED = "Retrieval checker failed reporting results"
MSG_OUTDATED = "Retrieval checker is outdated. Please upgrade to the latest version."
OUTDATED_CLIENT_STATUS = 400
OUTDATED_CLIENT_MESSAGE = "OUTDATED CLIENT"


class ActivityState:
    """Healthy/unhealthy state machine; ``healthy`` is None until the first event."""

    def __init__(self, host: Host):
        self.host = host
        self.healthy: bool | None = None

    def on_outdated_client(self) -> None:
        self.on_error(MSG_OUTDATED)

    def on_error(self, message: str | None = None) -> None:
        if self.healthy is None or self.healthy:
            self.healthy = False
            self.host.activity_error(message or MSG_FAILED)

    def on_run_error(self, err: BaseException) -> None:
        """Report a failed task, recognising the server's outdated-client answer."""
        if (
            isinstance(err, HttpResponseError)
            and err.status_code == OUTDATED_CLIENT_STATUS
            and err.server_message == OUTDATED_CLIENT_MESSAGE
        ):
            self.on_outdated_client()
        else:
            self.on_error()

    def on_healthy(self) -> None:
        if self.healthy is None:
            self.healthy = True
            self.host.activity_info(MSG_STARTED)
        elif not self.healthy:
            self.healthy = True
            self.host.activity_info(MSG_RESUMED)


class LoggingHost:
    """Host that only writes to the log; used when no runtime is attached."""

    def __init__(self) -> None:
        self.jobs_completed = 0

    def job_completed(self) -> None:
        self.jobs_completed += 1
        logger.debug("Job completed (%d total)", self.jobs_completed)

    def activity_info(self, message: str) -> None:
        logger.info(message)

    def activity_error(self, message: str) -> None:
        logger.error(message)
