"""In-memory outbox delivering notification mails on background threads."""

from __future__ import annotations

import logging
import smtplib
import threading
import time
import uuid
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Callable, Optional

from ..config import settings

logger = logging.getLogger("efs.mail")


def smtp_sender(to: str, subject: str, body: str) -> None:
    """Deliver one HTML mail over SMTP, or just log it when SMTP is not set up."""
    if not settings.SMTP_HOST:
        logger.info("mail (not sent, SMTP_HOST unset) to=%s subject=%s", to, subject)
        return
    msg = EmailMessage()
    msg["From"] = settings.MAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body, subtype="html")
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as smtp:
        smtp.starttls()
        if settings.SMTP_USER:
            smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


class MailOutbox:
    def __init__(
        self,
        sender: Callable[[str, str, str], None] = smtp_sender,
        max_jobs: int = 500,
        ttl_seconds: int = 24 * 3600,
    ):
        self.sender = sender
        self._jobs: dict[str, dict] = {}
        self._lock = threading.Lock()
        self._max_jobs = max_jobs
        self._ttl_seconds = ttl_seconds

    def submit(self, *, to: str, subject: str, body: str) -> dict:
        self._cleanup()
        job_id = uuid.uuid4().hex
        job = {
            "job_id": job_id,
            "status": "queued",
            "to": to,
            "subject": subject,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "finished_at": None,
            "error": None,
        }
        with self._lock:
            self._jobs[job_id] = job
            if len(self._jobs) > self._max_jobs:
                # remove oldest finished first
                finished = sorted(
                    (j for j in self._jobs.values() if j.get("finished_at")),
                    key=lambda x: x.get("finished_at") or "",
                )
                for old in finished[: max(0, len(self._jobs) - self._max_jobs)]:
                    self._jobs.pop(old["job_id"], None)

        thread = threading.Thread(
            target=self._deliver,
            kwargs={"job_id": job_id, "to": to, "subject": subject, "body": body},
            daemon=True,
        )
        thread.start()
        return {"job_id": job_id, "status": "queued"}

    def get(self, job_id: str) -> Optional[dict]:
        with self._lock:
            job = self._jobs.get(job_id)
            return dict(job) if job else None

    def _deliver(self, *, job_id: str, to: str, subject: str, body: str) -> None:
        try:
            self.sender(to, subject, body)
            status, error = "sent", None
        except Exception as exc:
            logger.warning("mail delivery to %s failed: %s", to, exc)
            status, error = "failed", str(exc)
        with self._lock:
            if job_id in self._jobs:
                self._jobs[job_id]["status"] = status
                self._jobs[job_id]["error"] = error
                self._jobs[job_id]["finished_at"] = datetime.now(timezone.utc).isoformat()

    def _cleanup(self) -> None:
        cutoff = time.time() - self._ttl_seconds
        with self._lock:
            to_delete = []
            for job_id, job in self._jobs.items():
                finished = job.get("finished_at")
                if finished and datetime.fromisoformat(finished).timestamp() < cutoff:
                    to_delete.append(job_id)
            for job_id in to_delete:
                self._jobs.pop(job_id, None)
