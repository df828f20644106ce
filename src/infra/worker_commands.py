"""
Worker command channel.

Commands ("cancel", "abort") are fire-and-forget from the scheduler's
point of view: the caller never waits for an acknowledgement and a
missing worker is simply nothing to notify.

Sinks:
- WorkerCommandSink: base class, logs and drops
- RecordingCommandSink: keeps every command in memory (CLI dry runs, tests)
- HttpCommandSink: POSTs the command from a background thread with httpx
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT_SECONDS = 10
COMMAND_MAX_RETRIES = 3
COMMAND_RETRY_BASE_DELAY = 0.5  # seconds
COMMAND_RETRY_MAX_DELAY = 5.0  # seconds


def build_command_payload(worker_id: int, command: str, job_id: Optional[int]) -> Dict[str, Any]:
    """
    Build the JSON body sent to a worker.

    Args:
        worker_id: Target worker
        command: Command name ("cancel", "abort")
        job_id: Job the command refers to

    Returns:
        Dictionary payload for the command POST
    """
    return {
        "command": command,
        "job_id": job_id,
        "worker_id": worker_id,
        "timestamp": datetime.now().isoformat(),
    }


class WorkerCommandSink:
    """Abstract command sink; the base implementation only logs."""

    def send_command(self, worker, command: str, job_id: Optional[int] = None) -> bool:
        """
        Send a command to a worker.

        Args:
            worker: Worker entity (anything with an ``id``), may be None
            command: Command name
            job_id: Job the command refers to

        Returns:
            True if the command was handed to the transport
        """
        if worker is None:
            logger.debug(f"No worker to send '{command}' for job {job_id}, ignoring")
            return False
        command = getattr(command, "value", command)
        logger.info(f"Command '{command}' for job {job_id} -> worker {worker.id}")
        return self._deliver(worker.id, command, job_id)

    def _deliver(self, worker_id: int, command: str, job_id: Optional[int]) -> bool:
        return True


class RecordingCommandSink(WorkerCommandSink):
    """Keeps (worker_id, command, job_id) tuples in ``sent``."""

    def __init__(self):
        self.sent: list[tuple[int, str, Optional[int]]] = []
        self._lock = threading.Lock()

    def _deliver(self, worker_id: int, command: str, job_id: Optional[int]) -> bool:
        with self._lock:
            self.sent.append((worker_id, command, job_id))
        return True

    def commands_for(self, job_id: int) -> list[str]:
        with self._lock:
            return [command for _, command, target in self.sent if target == job_id]


def _post_command_in_thread(
    url: str,
    payload: Dict[str, Any],
    timeout: float = COMMAND_TIMEOUT_SECONDS,
    max_retries: int = COMMAND_MAX_RETRIES,
) -> None:
    """
    POST a command with retries; runs in a background thread.

    Errors are logged, never raised: the scheduler does not wait for
    worker acknowledgement.
    """
    last_error: Optional[str] = None

    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(
                    url,
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "X-Worker-Command": payload["command"],
                    },
                )

                if 200 <= response.status_code < 300:
                    logger.debug(
                        f"Command {payload['command']} delivered to {url} "
                        f"(attempt {attempt + 1}/{max_retries}, status={response.status_code})"
                    )
                    return

                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                logger.warning(
                    f"Command delivery failed to {url} "
                    f"(attempt {attempt + 1}/{max_retries}): {last_error}"
                )

        except httpx.TimeoutException:
            last_error = f"Timeout after {timeout}s"
            logger.warning(
                f"Command delivery timeout to {url} "
                f"(attempt {attempt + 1}/{max_retries})"
            )

        except httpx.RequestError as e:
            last_error = f"Request error: {str(e)}"
            logger.warning(
                f"Command delivery request error to {url} "
                f"(attempt {attempt + 1}/{max_retries}): {e}"
            )

        if attempt < max_retries - 1:
            delay = min(
                COMMAND_RETRY_BASE_DELAY * (2 ** attempt),
                COMMAND_RETRY_MAX_DELAY
            )
            time.sleep(delay)

    logger.error(
        f"Command {payload['command']} for job {payload['job_id']} "
        f"not delivered after {max_retries} attempts: {last_error}"
    )


class HttpCommandSink(WorkerCommandSink):
    """
    Deliver commands to ``{base_url}/workers/{worker_id}/commands``.

    Each command gets its own daemon thread, so send_command returns
    immediately.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = COMMAND_TIMEOUT_SECONDS,
        max_retries: int = COMMAND_MAX_RETRIES,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries

    def command_url(self, worker_id: int) -> str:
        return f"{self.base_url}/workers/{worker_id}/commands"

    def _deliver(self, worker_id: int, command: str, job_id: Optional[int]) -> bool:
        payload = build_command_payload(worker_id, command, job_id)
        thread = threading.Thread(
            target=_post_command_in_thread,
            args=(self.command_url(worker_id), payload, self.timeout, self.max_retries),
            daemon=True,
        )
        thread.start()
        return True


def create_command_sink(config: Optional[dict] = None) -> WorkerCommandSink:
    """
    Build the sink configured through WORKER_COMMAND_* variables.

    Without a URL commands are only logged.
    """
    if config is None:
        from src.infra.data_paths import get_worker_command_config
        config = get_worker_command_config()

    if not config.get("url"):
        return WorkerCommandSink()
    return HttpCommandSink(
        config["url"],
        timeout=config.get("timeout", COMMAND_TIMEOUT_SECONDS),
        max_retries=config.get("max_retries", COMMAND_MAX_RETRIES),
    )
