"""
Workflow execution engine.

Manages the lifecycle of runs including:
- Run creation on matching events
- Stepping a run node by node through the handlers
- Parking runs on timers and business actions
- Action retries with exponential backoff
- Cancellation
- Recovery of parked runs after a restart

Every step of a run happens under that run's lease. Only the engine
mutates a run's current node, status and history.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID

from flow_engine.actions import ActionRegistry
from flow_engine.core.clock import Clock
from flow_engine.core.errors import (
    DocumentInUse,
    FlowEngineError,
    NoMatchingGraph,
    RunNotFound,
    ValidationFailure,
)
from flow_engine.core.models import (
    DEFAULT_PORT,
    ActionRequest,
    ActionResult,
    GraphDocument,
    HistoryEntry,
    NodeDefinition,
    NodeOutcome,
    NodeType,
    RetryConfig,
    Run,
)
from flow_engine.core.state_machine import RunStateMachine, RunStatus
from flow_engine.expressions import ExpressionError
from flow_engine.handlers import HandlerResult, get_handler
from flow_engine.orchestrator.documents import DocumentService
from flow_engine.scheduler.base import TimerService
from flow_engine.storage.base import RunStore
from flow_engine.storage.leases import LocalLeaseManager, RunLeaseManager

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """
    Steps runs of published graph documents.

    Responsibilities:
    - Start runs for matching events
    - Advance runs through Trigger, Decision, Delay and Business nodes
    - Resume runs when their timer fires
    - Invoke business actions with retry
    - Cancel runs
    """

    def __init__(
        self,
        documents: DocumentService,
        runs: RunStore,
        timers: TimerService,
        actions: ActionRegistry,
        leases: Optional[RunLeaseManager] = None,
        clock: Optional[Clock] = None,
        default_retry: Optional[RetryConfig] = None,
        recover_on_start: bool = True,
    ):
        self.documents = documents
        self.runs = runs
        self.timers = timers
        self.actions = actions
        self.leases = leases or LocalLeaseManager()
        self.clock = clock or Clock()
        self.default_retry = default_retry or RetryConfig()
        self.recover_on_start = recover_on_start

        self._running = False
        # Published documents are immutable, so runs can share parsed copies
        self._graphs: dict[UUID, GraphDocument] = {}
        # In-flight business actions, one per run
        self._action_tasks: dict[UUID, asyncio.Task] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the timer service and recover parked runs."""
        if self._running:
            return

        self._running = True
        await self.timers.start(self._on_timer)
        logger.info("Workflow engine started")

        if self.recover_on_start:
            try:
                await self.recover()
            except Exception as e:
                logger.error(f"Recovery failed: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop the timer service and cancel in-flight action tasks."""
        if not self._running:
            return

        self._running = False
        await self.timers.stop()

        tasks = list(self._action_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._action_tasks.clear()

        logger.info("Workflow engine stopped")

    async def wait_for_idle(self) -> None:
        """Wait until no business action is in flight."""
        while self._action_tasks:
            await asyncio.gather(*list(self._action_tasks.values()), return_exceptions=True)

    # ==================== Run Lifecycle ====================

    async def start_run(
        self,
        document_id: UUID,
        event_kind: str,
        initial_variables: Optional[dict[str, Any]] = None,
    ) -> UUID:
        """
        Start a run of a published document.

        The run advances synchronously until it completes, fails or parks at
        a Delay or Business node.

        Args:
            document_id: Published document to run
            event_kind: Event that triggered the run
            initial_variables: Initial variable bindings

        Returns:
            The new run's ID

        Raises:
            DocumentNotFound: If the document does not exist
            NoMatchingGraph: If the document is not executable or its Trigger
                does not listen for ``event_kind``. No run is created.
            ValidationFailure: If the active document does not validate
        """
        document = await self.documents.require_executable(document_id, event_kind)
        self._graphs[document.id] = document
        trigger = document.trigger_node()

        now = self.clock.now()
        run = Run(
            document_id=document.id,
            document_version=document.version,
            event_kind=event_kind,
            current_node_id=trigger.id,
            variables=dict(initial_variables or {}),
            history=[HistoryEntry(node_id=trigger.id, node_type=trigger.type, entered_at=now)],
            created_at=now,
            updated_at=now,
        )

        async with self.leases.acquire(run.id):
            await self.runs.create(run)
            logger.info(f"Run {run.id} started for document {document.id} on '{event_kind}'")
            await self._advance(run, document)

        return run.id

    async def handle_event(
        self,
        event_kind: str,
        variables: Optional[dict[str, Any]] = None,
    ) -> list[UUID]:
        """
        Start one run per active document whose Trigger matches the event.

        An event nothing listens for is dropped with a warning.

        Returns:
            IDs of the started runs
        """
        documents = await self.documents.find_executable(event_kind)
        if not documents:
            logger.warning(str(NoMatchingGraph(event_kind)))
            return []

        run_ids = []
        for document in documents:
            try:
                run_ids.append(await self.start_run(document.id, event_kind, variables))
            except (NoMatchingGraph, ValidationFailure) as e:
                logger.warning(f"Event '{event_kind}' skipped document {document.id}: {e}")
        return run_ids

    async def resume_run(self, run_id: UUID) -> RunStatus:
        """
        Resume a run parked at a Delay node.

        A call before the resume time re-schedules the timer. A call for a
        run that is not waiting on a timer is a misfire: logged, no-op.

        Returns:
            The run's status after the call

        Raises:
            RunNotFound: If the run does not exist
        """
        async with self.leases.acquire(run_id):
            run = await self._load(run_id)

            if run.status != RunStatus.WAITING_ON_TIMER:
                logger.warning(
                    f"Timer misfire for run {run_id}: status is {run.status.value}"
                )
                return run.status

            if run.resume_at is not None and self.clock.now() < run.resume_at:
                logger.info(f"Run {run_id} resumed early; re-scheduling for {run.resume_at}")
                await self.timers.schedule_resume(run_id, run.resume_at)
                return run.status

            document = await self._document_for(run)
            node = document.node_by_id(run.current_node_id)
            self._transition(run, RunStatus.RUNNING, reason="timer elapsed", triggered_by="timer")
            run.resume_at = None
            self._follow_port(run, document, node, DEFAULT_PORT)
            await self._advance(run, document)
            return run.status

    async def cancel_run(self, run_id: UUID) -> RunStatus:
        """
        Cancel a run.

        Idempotent: a terminal run keeps and reports its status. A business
        action already in flight is not retracted; its result is discarded.

        Raises:
            RunNotFound: If the run does not exist
        """
        async with self.leases.acquire(run_id):
            run = await self._load(run_id)
            if run.is_terminal:
                return run.status

            was_waiting_on_timer = run.status == RunStatus.WAITING_ON_TIMER
            now = self.clock.now()
            self._close_entry(run, NodeOutcome.CANCELLED, detail="cancelled")
            self._transition(run, RunStatus.CANCELLED, reason="cancel requested", triggered_by="user")
            run.resume_at = None
            run.completed_at = now
            await self._save(run)

        if was_waiting_on_timer:
            await self.timers.cancel(run_id)

        logger.info(f"Run {run_id} cancelled at node {run.current_node_id}")
        return run.status

    async def delete_document(self, document_id: UUID) -> None:
        """
        Delete a draft or inactive document that no run has executed.

        Documents with runs are kept so every run can still resolve the
        graph it executed; deactivate them instead.

        Raises:
            DocumentNotFound: If no document has this ID
            DocumentInUse: If the document is active or has runs
        """
        if await self.runs.has_runs(document_id):
            raise DocumentInUse(document_id, "runs have executed it")
        await self.documents.delete(document_id)
        self._graphs.pop(document_id, None)

    async def get_run(self, run_id: UUID) -> Run:
        """
        Get a snapshot of a run.

        Raises:
            RunNotFound: If the run does not exist
        """
        return await self._load(run_id)

    # ==================== Stepping ====================

    async def _advance(self, run: Run, document: GraphDocument) -> None:
        """
        Step a RUNNING run until it terminates or parks.

        Must be called with the run's lease held. The run's current node has
        an open history entry and has not been processed yet.
        """
        while run.status == RunStatus.RUNNING:
            node = document.node_by_id(run.current_node_id)
            if node is None:
                self._fail(run, f"Node '{run.current_node_id}' not found in document")
                break

            try:
                result = get_handler(node.type).handle(node.config, run.variables)
            except ExpressionError as e:
                logger.warning(f"Run {run.id} failed at decision '{node.id}': {e}")
                self._fail(run, f"Decision '{node.id}' could not be evaluated: {e}")
                break
            except Exception as e:
                logger.error(
                    f"Run {run.id} failed at {node.type.value} node '{node.id}': {e}",
                    exc_info=True,
                )
                self._fail(
                    run,
                    f"{node.type.value.capitalize()} node '{node.id}' raised {type(e).__name__}: {e}",
                    detail=type(e).__name__,
                )
                break

            run.variables.update(result.variable_updates)

            if result.suspends:
                await self._park(run, node, result)
                return

            self._follow_port(run, document, node, result.next_port_id)

        await self._save(run)
        if run.status == RunStatus.COMPLETED:
            logger.info(f"Run {run.id} completed at node {run.current_node_id}")

    async def _park(self, run: Run, node: NodeDefinition, result: HandlerResult) -> None:
        """Suspend the run at a Delay node's timer or a Business node's action."""
        if result.action is None:
            resume_at = self.clock.now() + timedelta(seconds=result.delay_seconds)
            self._transition(run, RunStatus.WAITING_ON_TIMER, reason=f"delay at {node.id}")
            run.resume_at = resume_at
            await self._save(run)
            await self.timers.schedule_resume(run.id, resume_at)
            logger.info(f"Run {run.id} waiting at '{node.id}' until {resume_at.isoformat()}")
            return

        self._transition(run, RunStatus.WAITING_ON_ACTION, reason=f"action at {node.id}")
        run.action_attempts = 0
        await self._save(run)
        self._dispatch_action(run.id, node.id, result.action, self._retry_config(node))
        logger.info(
            f"Run {run.id} waiting at '{node.id}' on action '{result.action.action_kind}'"
        )

    def _follow_port(
        self,
        run: Run,
        document: GraphDocument,
        node: NodeDefinition,
        port_id: str,
        detail: Optional[str] = None,
    ) -> None:
        """Leave ``node`` through ``port_id``; complete the run if nothing is attached."""
        target_id = document.successor(node.id, port_id)

        if target_id is None:
            self._close_entry(run, NodeOutcome.COMPLETED, port_id, detail)
            self._transition(run, RunStatus.COMPLETED, reason=f"no edge on port '{port_id}'")
            run.completed_at = run.updated_at
            return

        self._close_entry(run, NodeOutcome.ADVANCED, port_id, detail)
        target = document.node_by_id(target_id)
        self._transition(run, RunStatus.RUNNING, reason=f"{node.id} -> {target_id}")
        run.current_node_id = target_id
        run.history.append(
            HistoryEntry(node_id=target_id, node_type=target.type, entered_at=self.clock.now())
        )

    def _fail(self, run: Run, message: str, detail: Optional[str] = None) -> None:
        """Fail the run at its current node."""
        self._close_entry(run, NodeOutcome.FAILED, detail=detail or message)
        self._transition(run, RunStatus.FAILED, reason=message)
        run.error_message = message
        run.completed_at = run.updated_at

    def _close_entry(
        self,
        run: Run,
        outcome: NodeOutcome,
        port_id: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        entry = run.open_entry()
        if entry is None:
            return
        entry.exited_at = self.clock.now()
        entry.outcome = outcome
        entry.port_id = port_id
        if detail:
            entry.detail = detail

    def _transition(
        self,
        run: Run,
        to_status: RunStatus,
        reason: Optional[str] = None,
        triggered_by: str = "engine",
    ) -> None:
        """
        Apply a status change.

        Raises:
            InvalidStateTransitionError: If the change is not allowed
        """
        machine = RunStateMachine(run.status)
        machine.transition(to_status, reason=reason, triggered_by=triggered_by)
        run.status = to_status
        run.updated_at = self.clock.now()

    # ==================== Business Actions ====================

    def _retry_config(self, node: NodeDefinition) -> RetryConfig:
        return node.config.retry or self.default_retry

    def _dispatch_action(
        self,
        run_id: UUID,
        node_id: str,
        request: ActionRequest,
        retry: RetryConfig,
        completed_attempts: int = 0,
    ) -> None:
        task = asyncio.create_task(
            self._run_action(run_id, node_id, request, retry, completed_attempts)
        )
        self._action_tasks[run_id] = task
        task.add_done_callback(lambda done: self._forget_task(run_id, done))

    def _forget_task(self, run_id: UUID, task: asyncio.Task) -> None:
        if self._action_tasks.get(run_id) is task:
            del self._action_tasks[run_id]

    async def _run_action(
        self,
        run_id: UUID,
        node_id: str,
        request: ActionRequest,
        retry: RetryConfig,
        completed_attempts: int = 0,
    ) -> None:
        """
        Invoke a business action with retry, outside the run's lease.

        Each attempt first checks, under the lease, that the run is still
        waiting on this node; a cancelled run gets no further attempts.
        """
        attempt = completed_attempts
        try:
            while True:
                attempt += 1
                variables = await self._begin_attempt(run_id, node_id, attempt)
                if variables is None:
                    logger.info(f"Run {run_id} left '{node_id}'; dropping action attempts")
                    return

                result = await self.actions.invoke(
                    request.action_kind,
                    request.action_parameters,
                    variables,
                )

                if result.success or not result.retryable_error or attempt >= retry.max_attempts:
                    await self._finish_action(run_id, node_id, request, result, attempt)
                    return

                delay = retry.compute_delay(attempt)
                logger.warning(
                    f"Action '{request.action_kind}' failed for run {run_id} "
                    f"(attempt {attempt}/{retry.max_attempts}): {result.error_message}; "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Action processing failed for run {run_id}: {e}", exc_info=True)
            await self._abandon_action(run_id, node_id, request, e, attempt)

    async def _begin_attempt(
        self,
        run_id: UUID,
        node_id: str,
        attempt: int,
    ) -> Optional[dict[str, Any]]:
        """Record an attempt; returns the run's variables, or None if it moved on."""
        async with self.leases.acquire(run_id):
            run = await self.runs.load(run_id)
            if not self._is_waiting_on_action(run, node_id):
                return None
            run.action_attempts = attempt
            run.updated_at = self.clock.now()
            await self._save(run)
            return dict(run.variables)

    async def _finish_action(
        self,
        run_id: UUID,
        node_id: str,
        request: ActionRequest,
        result: ActionResult,
        attempt: int,
    ) -> None:
        async with self.leases.acquire(run_id):
            run = await self.runs.load(run_id)
            if not self._is_waiting_on_action(run, node_id):
                logger.warning(
                    f"Discarding result of action '{request.action_kind}' for run {run_id}: "
                    "run is no longer waiting on it"
                )
                return

            if result.success:
                document = await self._document_for(run)
                run.variables.update(result.result_variables)
                self._transition(
                    run, RunStatus.RUNNING, reason="action succeeded", triggered_by="action"
                )
                self._follow_port(
                    run,
                    document,
                    document.node_by_id(node_id),
                    DEFAULT_PORT,
                    detail=f"{request.action_kind} succeeded after {attempt} attempt(s)",
                )
                await self._advance(run, document)
                return

            message = (
                f"Action '{request.action_kind}' failed after {attempt} attempt(s): "
                f"{result.error_message or 'no error message'}"
            )
            logger.error(f"Run {run_id} failed at '{node_id}': {message}")
            self._fail(run, message, detail=result.error_type)
            await self._save(run)

    async def _abandon_action(
        self,
        run_id: UUID,
        node_id: str,
        request: ActionRequest,
        error: Exception,
        attempt: int,
    ) -> None:
        """Fail a run whose action outcome could not be processed."""
        try:
            async with self.leases.acquire(run_id):
                run = await self.runs.load(run_id)
                if not self._is_waiting_on_action(run, node_id):
                    return
                message = (
                    f"Action '{request.action_kind}' could not be processed after "
                    f"{attempt} attempt(s): {type(error).__name__}: {error}"
                )
                self._fail(run, message, detail=type(error).__name__)
                await self._save(run)
        except Exception as e:
            # The run stays parked; recovery re-dispatches it on the next start
            logger.error(f"Could not record action failure for run {run_id}: {e}", exc_info=True)

    @staticmethod
    def _is_waiting_on_action(run: Optional[Run], node_id: str) -> bool:
        return (
            run is not None
            and run.status == RunStatus.WAITING_ON_ACTION
            and run.current_node_id == node_id
        )

    # ==================== Timers & Recovery ====================

    async def _on_timer(self, run_id: UUID) -> None:
        """Timer service callback."""
        try:
            await self.resume_run(run_id)
        except RunNotFound:
            logger.warning(f"Timer fired for unknown run {run_id}")

    async def recover(self) -> None:
        """
        Pick up runs left parked by a previous process.

        - Runs left RUNNING are stepped again (Trigger and Decision steps
          have no side effects).
        - Overdue timer runs are resumed, the rest are re-scheduled.
        - Runs waiting on an action are re-dispatched; the interrupted
          attempt is invoked again.
        """
        logger.info("Starting run recovery...")

        for run in await self.runs.list_by_status(RunStatus.RUNNING):
            await self._recover_step(run.id, self._recover_running)

        for run in await self.runs.list_waiting(self.clock.now()):
            await self._recover_step(run.id, self.resume_run)

        pending = await self.runs.list_by_status(RunStatus.WAITING_ON_TIMER)
        for run in pending:
            await self.timers.schedule_resume(run.id, run.resume_at or self.clock.now())

        waiting_on_action = await self.runs.list_by_status(RunStatus.WAITING_ON_ACTION)
        for run in waiting_on_action:
            if run.id not in self._action_tasks:
                await self._recover_step(run.id, self._recover_action)

        logger.info(
            f"Recovery complete: {len(pending)} timer(s) scheduled, "
            f"{len(waiting_on_action)} action(s) re-dispatched"
        )

    async def _recover_step(self, run_id: UUID, step) -> None:
        try:
            await step(run_id)
        except FlowEngineError as e:
            logger.error(f"Failed to recover run {run_id}: {e}")
        except Exception as e:
            # One broken run must not keep the others parked
            logger.error(f"Unexpected error recovering run {run_id}: {e}", exc_info=True)

    async def _recover_running(self, run_id: UUID) -> None:
        async with self.leases.acquire(run_id):
            run = await self._load(run_id)
            if run.status == RunStatus.RUNNING:
                await self._advance(run, await self._document_for(run))

    async def _recover_action(self, run_id: UUID) -> None:
        run = await self._load(run_id)
        document = await self._document_for(run)
        node = document.node_by_id(run.current_node_id)
        if node is None or node.type != NodeType.BUSINESS:
            logger.error(f"Run {run_id} waits on an action at non-business node {run.current_node_id}")
            return
        request = get_handler(node.type).handle(node.config, run.variables).action
        self._dispatch_action(
            run_id,
            node.id,
            request,
            self._retry_config(node),
            completed_attempts=max(run.action_attempts - 1, 0),
        )

    # ==================== Helpers ====================

    async def _load(self, run_id: UUID) -> Run:
        run = await self.runs.load(run_id)
        if run is None:
            raise RunNotFound(run_id)
        return run

    async def _save(self, run: Run) -> None:
        await self.runs.save(run)

    async def _document_for(self, run: Run) -> GraphDocument:
        """The document a run executes, regardless of its current status."""
        document = self._graphs.get(run.document_id)
        if document is None:
            document = await self.documents.load(run.document_id)
            self._graphs[document.id] = document
        return document
