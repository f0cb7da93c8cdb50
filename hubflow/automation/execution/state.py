"""
Hubflow Workflow State Manager

Authoritative bookkeeping for active and historical executions.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from hubflow.automation.execution.context import ExecutionContext
from hubflow.automation.types import (
    ActionResult,
    Execution,
    ExecutionError,
    ExecutionStatus,
)
from hubflow.core.config import get_config

logger = structlog.get_logger(__name__)


class WorkflowStateManager:
    """
    Manages execution records for workflows.

    Features:
    - Active map plus a bounded history map
    - Guarded state transitions (pause, resume, cancel)
    - Per-step mutators that never raise for unknown ids
    - Aggregate statistics
    - State change handlers

    Every public method is serialized through one lock and reads return
    copies, so callers never hold a reference to a canonical record.
    """

    def __init__(self, max_history_size: Optional[int] = None):
        if max_history_size is None:
            max_history_size = get_config().automation.max_history_size
        self.max_history_size = max(1, max_history_size)

        self._active: Dict[str, Execution] = {}
        self._history: Dict[str, Execution] = {}

        # Event handlers
        self._state_handlers: List[Callable] = []

        self._lock = asyncio.Lock()

    # === Registration ===

    async def register_execution(self, execution: Execution) -> None:
        """Insert an execution into the active map."""
        async with self._lock:
            self._active[execution.id] = execution.copy()
            snapshot = execution.copy()

        logger.debug(
            "execution_registered",
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
        )
        await self._fire_handlers(snapshot)

    async def update_execution(self, execution: Execution) -> None:
        """
        Overwrite the active record for an execution.

        A terminal status moves the record into history. Updates for ids
        that are no longer active are ignored.
        """
        async with self._lock:
            if execution.id not in self._active:
                logger.debug("update_ignored", execution_id=execution.id)
                return

            self._active[execution.id] = execution.copy()
            if execution.is_terminal():
                self._move_to_history(execution.id)
            snapshot = execution.copy()

        await self._fire_handlers(snapshot)

    # === Queries ===

    async def get_execution(self, execution_id: str) -> Optional[Execution]:
        """Get an execution from the active map or history."""
        async with self._lock:
            execution = self._find(execution_id)
            return execution.copy() if execution else None

    async def get_active_executions(self) -> List[Execution]:
        async with self._lock:
            return [e.copy() for e in self._active.values()]

    async def get_executions_by_status(self, status: ExecutionStatus) -> List[Execution]:
        async with self._lock:
            return [e.copy() for e in self._all() if e.status == status]

    async def get_executions_for_workflow(self, workflow_id: str) -> List[Execution]:
        async with self._lock:
            return [e.copy() for e in self._all() if e.workflow_id == workflow_id]

    # === State Transitions ===

    async def cancel_execution(self, execution_id: str) -> bool:
        """Cancel an active execution. Returns False if it is not active."""
        async with self._lock:
            execution = self._active.get(execution_id)
            if not execution:
                return False

            execution.status = ExecutionStatus.CANCELLED
            execution.end_time = datetime.now()
            self._move_to_history(execution_id)
            snapshot = execution.copy()

        logger.info("execution_cancelled", execution_id=execution_id)
        await self._fire_handlers(snapshot)
        return True

    async def pause_execution(self, execution_id: str) -> bool:
        """Pause a running execution."""
        return await self._transition(
            execution_id, ExecutionStatus.RUNNING, ExecutionStatus.PAUSED,
        )

    async def resume_execution(self, execution_id: str) -> bool:
        """Resume a paused execution."""
        return await self._transition(
            execution_id, ExecutionStatus.PAUSED, ExecutionStatus.RUNNING,
        )

    async def _transition(
        self,
        execution_id: str,
        from_status: ExecutionStatus,
        to_status: ExecutionStatus,
    ) -> bool:
        async with self._lock:
            execution = self._active.get(execution_id)
            if not execution or execution.status != from_status:
                return False

            execution.status = to_status
            snapshot = execution.copy()

        logger.info(
            "execution_transition",
            execution_id=execution_id,
            from_status=from_status.value,
            to_status=to_status.value,
        )
        await self._fire_handlers(snapshot)
        return True

    # === Step Mutators ===

    async def update_current_step(self, execution_id: str, step_id: str) -> None:
        async with self._lock:
            execution = self._active.get(execution_id)
            if execution:
                execution.current_step_id = step_id

    async def add_step_result(
        self,
        execution_id: str,
        step_id: str,
        result: ActionResult,
    ) -> None:
        """Store a step result and fold it into the execution's context."""
        async with self._lock:
            execution = self._active.get(execution_id)
            if not execution:
                return

            execution.results[step_id] = result
            execution.context.update_variables(result)

    async def add_error(self, execution_id: str, error: ExecutionError) -> None:
        async with self._lock:
            execution = self._active.get(execution_id)
            if execution:
                execution.errors.append(error)

    async def update_context(self, execution_id: str, context: ExecutionContext) -> None:
        async with self._lock:
            execution = self._active.get(execution_id)
            if execution:
                execution.context = context.copy()

    # === History ===

    async def get_history(self, limit: Optional[int] = None) -> List[Execution]:
        """Get finished executions, newest first."""
        async with self._lock:
            history = sorted(
                self._history.values(),
                key=lambda e: e.start_time,
                reverse=True,
            )
            if limit is not None:
                history = history[:limit]
            return [e.copy() for e in history]

    async def clear_history(self, older_than: Optional[datetime] = None) -> int:
        """
        Remove finished executions.

        Args:
            older_than: Only remove executions started before this time.
                Clears everything when omitted.

        Returns:
            Number of executions removed
        """
        async with self._lock:
            if older_than is None:
                removed = len(self._history)
                self._history.clear()
            else:
                stale = [
                    execution_id
                    for execution_id, execution in self._history.items()
                    if execution.start_time < older_than
                ]
                for execution_id in stale:
                    del self._history[execution_id]
                removed = len(stale)

        logger.info("history_cleared", removed=removed)
        return removed

    # === Statistics ===

    async def get_statistics(self) -> "ExecutionStatistics":
        """Aggregate counts and timings over active and finished executions."""
        async with self._lock:
            executions = list(self._all())

        total = len(executions)
        completed = sum(1 for e in executions if e.status == ExecutionStatus.COMPLETED)
        failed = sum(1 for e in executions if e.status == ExecutionStatus.FAILED)
        running = sum(1 for e in executions if e.status == ExecutionStatus.RUNNING)
        paused = sum(1 for e in executions if e.status == ExecutionStatus.PAUSED)
        cancelled = sum(1 for e in executions if e.status == ExecutionStatus.CANCELLED)

        durations = [e.duration for e in executions if e.duration is not None]
        average_duration = sum(durations) / len(durations) if durations else 0.0

        return ExecutionStatistics(
            total_executions=total,
            completed_executions=completed,
            failed_executions=failed,
            running_executions=running,
            paused_executions=paused,
            cancelled_executions=cancelled,
            success_rate=completed / total if total else 0.0,
            failure_rate=failed / total if total else 0.0,
            average_duration=average_duration,
        )

    # === Event Handlers ===

    def on_state_change(self, handler: Callable) -> None:
        """Register state change handler."""
        self._state_handlers.append(handler)

    async def _fire_handlers(self, execution: Execution) -> None:
        """Fire state change handlers."""
        for handler in self._state_handlers:
            try:
                result = handler(execution)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("handler_error", execution_id=execution.id, error=str(e))

    # === Internals (call with the lock held) ===

    def _find(self, execution_id: str) -> Optional[Execution]:
        return self._active.get(execution_id) or self._history.get(execution_id)

    def _all(self):
        yield from self._active.values()
        yield from self._history.values()

    def _move_to_history(self, execution_id: str) -> None:
        execution = self._active.pop(execution_id)
        self._history[execution_id] = execution
        self._trim_history()

    def _trim_history(self) -> None:
        overflow = len(self._history) - self.max_history_size
        if overflow <= 0:
            return

        oldest = sorted(self._history.values(), key=lambda e: e.start_time)[:overflow]
        for execution in oldest:
            del self._history[execution.id]

        logger.debug("history_trimmed", evicted=overflow)


@dataclass
class ExecutionStatistics:
    """Aggregate view over every known execution."""
    total_executions: int = 0
    completed_executions: int = 0
    failed_executions: int = 0
    running_executions: int = 0
    paused_executions: int = 0
    cancelled_executions: int = 0
    success_rate: float = 0.0
    failure_rate: float = 0.0
    average_duration: float = 0.0  # seconds, over ended executions

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_executions": self.total_executions,
            "completed_executions": self.completed_executions,
            "failed_executions": self.failed_executions,
            "running_executions": self.running_executions,
            "paused_executions": self.paused_executions,
            "cancelled_executions": self.cancelled_executions,
            "success_rate": self.success_rate,
            "failure_rate": self.failure_rate,
            "average_duration": self.average_duration,
        }
