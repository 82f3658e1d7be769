from __future__ import annotations

import logging
import smtplib
import socket
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Callable, List, Optional

from .models import Stage, StageResult

logger = logging.getLogger(__name__)


@dataclass
class MailSettings:
    to: List[str] = field(default_factory=list)
    sender: Optional[str] = None
    subject: str = "stackbuild report"
    smtp_host: str = "localhost"
    only_errors: bool = False

    @property
    def enabled(self) -> bool:
        return bool(self.to)


@dataclass
class RunReport:
    """Stage results collected over a whole run."""

    results: List[StageResult] = field(default_factory=list)
    interrupted: bool = False

    @property
    def failures(self) -> List[StageResult]:
        return [r for r in self.results if not r.success]

    def succeeded(self, stage: Stage) -> List[str]:
        return [r.package for r in self.results if r.success and r.stage is stage]

    def summary_lines(self) -> List[str]:
        if not self.failures:
            built = len(self.succeeded(Stage.BUILD)) + len(self.succeeded(Stage.DOC))
            return [f"completed successfully ({built} package(s) processed)"]
        lines = [f"{len(self.failures)} failure(s):"]
        for result in self.failures:
            lines.append(f"  {result.package}: {result.stage.label} failed: {result.reason}")
        return lines

    def render(self) -> str:
        lines = self.summary_lines()
        if self.interrupted:
            lines.insert(0, "interrupted")
        return "\n".join(lines) + "\n"


def send_mail(
    report: RunReport,
    settings: MailSettings,
    *,
    smtp_factory: Callable[[str], smtplib.SMTP] = smtplib.SMTP,
) -> bool:
    """Mail the report; returns False when nothing was sent."""

    if not settings.enabled:
        return False
    if settings.only_errors and not report.failures:
        logger.debug("no failures, not sending the report by mail")
        return False

    message = EmailMessage()
    message["Subject"] = settings.subject
    message["From"] = settings.sender or f"stackbuild@{socket.getfqdn()}"
    message["To"] = ", ".join(settings.to)
    message.set_content(report.render())

    with smtp_factory(settings.smtp_host) as smtp:
        smtp.send_message(message)
    logger.info("report sent to %s", ", ".join(settings.to))
    return True
