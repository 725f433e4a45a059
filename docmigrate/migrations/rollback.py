"""Rollback of the most recent applied migration."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..db.state import HistoryRecord, HistoryStatus, HistoryType, StateStore
from ..reporter import LoggingReporter, Reporter
from .changes import ChangeSet
from .executor import MigrationExecutor, RevertResult

logger = logging.getLogger(__name__)


@dataclass
class RollbackResult:
    """Outcome of a rollback."""

    rolled_back: bool
    history: Optional[HistoryRecord] = None
    revert: Optional[RevertResult] = None
    message: str = ""


class RollbackEngine:
    """Reverts the latest applied history record."""

    def __init__(
        self,
        state: StateStore,
        executor: MigrationExecutor,
        reporter: Optional[Reporter] = None,
    ):
        self.state = state
        self.executor = executor
        self.reporter = reporter or LoggingReporter()

    async def rollback(self, force: bool = False) -> RollbackResult:
        """Revert the most recent applied change set.

        Nothing happens (and no error is raised) when the latest applied
        record is missing or belongs to the relationships phase.

        Args:
            force: Continue past non-fatal deletion errors

        Returns:
            RollbackResult
        """
        record = await self.state.latest_history(HistoryStatus.APPLIED)

        if record is None or record.type != HistoryType.APPLY.value:
            message = "Nothing to roll back"
            if record is not None:
                message += f" (latest applied run {record.record_id} is of type {record.type})"
            self.reporter.info(message)
            return RollbackResult(rolled_back=False, history=record, message=message)

        changes = ChangeSet.from_compact(record.changes)
        self.reporter.info(f"Rolling back {record.record_id} ({changes.total} changes)")

        revert = await self.executor.revert(changes, force=force)
        await self.state.update_history_status(record.record_id, HistoryStatus.ROLLED_BACK)
        record.status = HistoryStatus.ROLLED_BACK

        message = f"Rolled back {record.record_id}"
        self.reporter.success(message)
        logger.info(f"{message}: {len(revert.deleted)} deleted, {len(revert.missing)} already absent")
        return RollbackResult(rolled_back=True, history=record, revert=revert, message=message)
