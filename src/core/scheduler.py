"""
Xiyin Bot: Weekly scheduler.

Runs one named trigger over every user, one user at a time:
- theme_prompt     Monday morning, invites a theme for the new week
- daily_question   Tuesday to Saturday morning, one question per day
- weekly_review    Sunday evening, closes the week
- monthly_summary  last day of the month, an LLM-written look back

Users are processed sequentially to stay within the store's rate limits.
A failure for one user is recorded in the summary and the batch moves on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING

from src.core.state_machine import DispatchResult, Outcome, TriggerKind

if TYPE_CHECKING:
    from src.core.state_machine import StateMachine
    from src.data.models import UserRecord

logger = logging.getLogger(__name__)


@dataclass
class TriggerSummary:
    """Machine-readable outcome of one trigger run."""

    kind: str
    total: int = 0
    sent: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[DispatchResult] = field(default_factory=list)
    error: str | None = None   # set when the run could not start at all

    def record(self, result: DispatchResult) -> None:
        self.total += 1
        if result.outcome == Outcome.SENT:
            self.sent += 1
        elif result.outcome == Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1
        self.details.append(result)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["details"] = [
            {"user_id": d.user_id, "outcome": d.outcome.value, "reason": d.reason}
            for d in self.details
        ]
        return data

    def format(self) -> str:
        """Short human-readable summary for admin replies."""
        if self.error:
            return f"{self.kind}: failed to start ({self.error})"
        lines = [
            f"{self.kind}: {self.sent} sent, {self.skipped} skipped, "
            f"{self.errors} errors (of {self.total})"
        ]
        for d in self.details:
            if d.outcome == Outcome.ERROR:
                lines.append(f"  ! {d.user_id}: {d.reason}")
        return "\n".join(lines)


class WeeklyScheduler:
    """Batch runner applying the state machine's scheduled transitions."""

    def __init__(self, machine: StateMachine) -> None:
        self._machine = machine

    async def run_trigger(
        self,
        kind: TriggerKind | str,
        users: list[UserRecord] | None = None,
    ) -> TriggerSummary:
        """Run a trigger for all users. Never raises for per-user failures.

        Args:
            kind: Trigger to run.
            users: Users to process. Loaded from the store when omitted.
        """
        kind = TriggerKind(kind)
        summary = TriggerSummary(kind=kind.value)
        self._machine.resolver.clear_cache()

        if users is None:
            try:
                users = await asyncio.to_thread(self._machine.store.list_users)
            except Exception as exc:
                logger.error("Trigger %s: failed to load users: %s", kind.value, exc)
                summary.error = str(exc)
                return summary

        logger.info("Trigger %s: processing %d users", kind.value, len(users))

        for user in users:
            try:
                result = await self._machine.handle_trigger(kind, user)
            except Exception as exc:
                logger.error("Trigger %s failed for %s: %s", kind.value, user.user_id, exc)
                result = DispatchResult(user.user_id, Outcome.ERROR, str(exc) or type(exc).__name__)
            else:
                logger.debug(
                    "Trigger %s for %s: %s (%s)",
                    kind.value, user.user_id, result.outcome.value, result.reason,
                )
            summary.record(result)

        logger.info(
            "Trigger %s done: %d sent, %d skipped, %d errors (of %d)",
            kind.value, summary.sent, summary.skipped, summary.errors, summary.total,
        )
        return summary
