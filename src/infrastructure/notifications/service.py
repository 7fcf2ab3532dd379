# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Sync report notifications.

An operator who triggers a sync on demand gives an email address and gets
exactly one report when the run ends: the terminal status, the counts and
one line per failed participant. Recurring runs carry no address and send
nothing.
"""

import html
import logging
from typing import Optional, Sequence

from src.domains.program_sync.outcome import (
    ParticipantFailure,
    RunStatus,
    SyncRunOutcome,
)
from src.infrastructure.notifications.channels import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    DeliveryStatus,
    NotificationPayload,
)
from src.infrastructure.telemetry.metrics import SyncMetrics

logger = logging.getLogger(__name__)


STATUS_HEADLINES = {
    RunStatus.COMPLETED: "completed successfully",
    RunStatus.COMPLETED_WITH_FAILURES: "completed with failures",
    RunStatus.ABORTED_FATAL: "failed",
}


class SyncNotificationDispatcher:
    """Sends sync run reports through a notification channel.

    Args:
        channel: Delivery channel, usually an EmailChannel.
        metrics: Optional metrics to count deliveries by status.
    """

    def __init__(self, channel: BaseChannel, metrics: Optional[SyncMetrics] = None) -> None:
        self._channel = channel
        self._metrics = metrics

    async def notify(
        self,
        outcome: SyncRunOutcome,
        address: Optional[str],
    ) -> Optional[ChannelResult]:
        """Report a finished run to an operator.

        Args:
            outcome: Terminal outcome of the run.
            address: Operator email address. Nothing is sent without one.

        Returns:
            The delivery result, or None when there was no address.
        """
        if not address:
            return None

        return await self.send(
            recipient=address,
            status=outcome.status,
            total_count=outcome.total_count,
            failures=outcome.failures,
            program_id=outcome.program_id,
            skipped_count=outcome.skipped_count,
            fatal_error_message=outcome.fatal_error_message,
        )

    async def send(
        self,
        recipient: str,
        status: RunStatus,
        total_count: int,
        failures: Sequence[ParticipantFailure],
        *,
        program_id: str = "",
        skipped_count: int = 0,
        fatal_error_message: Optional[str] = None,
    ) -> ChannelResult:
        """Render and deliver one sync report.

        Delivery problems are logged and returned as a failed result.
        """
        payload = NotificationPayload(
            subject=self._subject(program_id, status),
            recipient_email=recipient,
            text_body=self._build_plain_text(
                program_id, status, total_count, skipped_count, failures, fatal_error_message
            ),
            html_body=self._build_html(
                program_id, status, total_count, skipped_count, failures, fatal_error_message
            ),
            data={"program_id": program_id, "status": status.value},
        )

        try:
            result = await self._channel.send(payload)
        except Exception as e:
            logger.error("Failed to deliver sync report to %s: %s", recipient, e, exc_info=True)
            result = ChannelResult(
                channel=ChannelType.EMAIL,
                status=DeliveryStatus.FAILED,
                error_message=str(e),
            )

        if result.status is DeliveryStatus.FAILED:
            logger.warning(
                "Sync report for program %s was not delivered to %s: %s",
                program_id,
                recipient,
                result.error_message,
            )

        if self._metrics is not None:
            self._metrics.record_notification(result.status.value)
        return result

    @staticmethod
    def _subject(program_id: str, status: RunStatus) -> str:
        headline = STATUS_HEADLINES.get(status, status.value)
        return f"Program sync {headline}: {program_id}"

    @staticmethod
    def _build_plain_text(
        program_id: str,
        status: RunStatus,
        total_count: int,
        skipped_count: int,
        failures: Sequence[ParticipantFailure],
        fatal_error_message: Optional[str],
    ) -> str:
        lines = [
            f"Program: {program_id}",
            f"Status: {status.value}",
            f"Participants: {total_count}",
            f"Failed: {len(failures)}",
            f"Skipped: {skipped_count}",
            "",
        ]

        if fatal_error_message:
            lines.extend(["The sync could not run:", fatal_error_message, ""])

        if failures:
            lines.append("Failed participants:")
            for failure in failures:
                lines.append(
                    f"- {failure.participant_id} ({failure.email}): {failure.error_detail}"
                )
            lines.append("")

        lines.extend(["---", "This report was sent by CohortSync."])
        return "\n".join(lines)

    @staticmethod
    def _build_html(
        program_id: str,
        status: RunStatus,
        total_count: int,
        skipped_count: int,
        failures: Sequence[ParticipantFailure],
        fatal_error_message: Optional[str],
    ) -> str:
        escape = html.escape

        fatal_block = ""
        if fatal_error_message:
            fatal_block = f"""
            <p style="color: #B91C1C; margin: 16px 0;">
                <strong>The sync could not run:</strong> {escape(fatal_error_message)}
            </p>
            """

        failure_rows = "".join(
            f"<tr><td>{escape(failure.participant_id)}</td>"
            f"<td>{escape(failure.email)}</td>"
            f"<td>{escape(failure.error_detail)}</td></tr>"
            for failure in failures
        )
        failure_table = ""
        if failure_rows:
            failure_table = f"""
            <table style="border-collapse: collapse; width: 100%; font-size: 14px;">
                <thead>
                    <tr><th align="left">Participant</th><th align="left">Email</th>
                    <th align="left">Error</th></tr>
                </thead>
                <tbody>{failure_rows}</tbody>
            </table>
            """

        body = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto,
             Arial, sans-serif; line-height: 1.6; color: #1F2937;">
    <div style="max-width: 720px; margin: 0 auto; padding: 20px;">
        <h1 style="font-size: 20px;">Program sync {escape(STATUS_HEADLINES.get(status, status.value))}</h1>
        <ul>
            <li><strong>Program:</strong> {escape(program_id)}</li>
            <li><strong>Status:</strong> {escape(status.value)}</li>
            <li><strong>Participants:</strong> {total_count}</li>
            <li><strong>Failed:</strong> {len(failures)}</li>
            <li><strong>Skipped:</strong> {skipped_count}</li>
        </ul>
        {fatal_block}
        {failure_table}
        <p style="font-size: 12px; color: #9CA3AF;">This report was sent by CohortSync.</p>
    </div>
</body>
</html>
        """
        return body.strip()
