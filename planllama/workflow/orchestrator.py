"""Workflow orchestration on top of the worker engine and dispatcher.

A workflow named ``name`` registers one handler per step (``name/step``)
and a run driver under ``name``.  Each run walks the step graph frontier by
frontier, dispatching every ready step as its own job and persisting each
result so that a retried run resumes where the previous attempt stopped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from planllama.dispatch import Dispatcher
from planllama.errors import CyclicDependencyError
from planllama.execution import HandlerRunner, WorkerEngine
from shared.models import Job, StepResults

from .graph import next_frontier, validate_dependencies
from .steps import StepDefinition, StepSpec, normalise_steps

LOGGER = logging.getLogger(__name__)


def step_job_name(workflow: str, step: str) -> str:
    return f"{workflow}/{step}"


@dataclass
class WorkflowRun:
    """Loop state of a single workflow run."""

    name: str
    job_id: str
    definitions: Dict[str, StepDefinition]
    results: StepResults = field(default_factory=dict)
    remaining: List[str] = field(init=False)
    frontier: List[str] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self.remaining = [step for step in self.definitions if step not in self.results]

    @property
    def finished(self) -> bool:
        return not self.remaining

    def advance(self) -> List[str]:
        self.frontier = next_frontier(self.definitions, self.remaining, self.results)
        return list(self.frontier)

    def record(self, step: str, result: Any) -> None:
        self.results[step] = result
        if step in self.remaining:
            self.remaining.remove(step)

    def snapshot(self) -> StepResults:
        return dict(self.results)


class WorkflowOrchestrator:
    """Defines workflows and drives their runs."""

    def __init__(
        self,
        engine: WorkerEngine,
        dispatcher: Dispatcher,
        *,
        runner: HandlerRunner | None = None,
    ) -> None:
        self._engine = engine
        self._dispatcher = dispatcher
        self._runner = runner or HandlerRunner()
        self._workflows: Dict[str, Dict[str, StepDefinition]] = {}
        self._persist_tasks: set[asyncio.Task[None]] = set()

    @property
    def workflows(self) -> List[str]:
        return list(self._workflows)

    async def define(self, name: str, steps: Mapping[str, StepSpec]) -> None:
        """Register the step handlers and the run driver of ``name``.

        Step shapes are checked here; the dependency graph is checked when a
        run starts.
        """

        definitions = normalise_steps(steps)
        self._workflows[name] = definitions
        for definition in definitions.values():
            await self._engine.register(step_job_name(name, definition.name), self._step_handler(definition))
        await self._engine.register(name, self._run_driver(name, definitions))
        LOGGER.info("Defined workflow %s with %s step(s)", name, len(definitions))

    async def run(self, name: str, job: Job, definitions: Dict[str, StepDefinition]) -> StepResults:
        validate_dependencies(definitions)
        stored = await self._dispatcher.fetch_step_results(job.id)
        run = WorkflowRun(name=name, job_id=job.id, definitions=definitions, results=stored)
        if stored:
            LOGGER.info("Resuming workflow %s job=%s with %s stored result(s)", name, job.id, len(stored))

        while not run.finished:
            frontier = run.advance()
            if not frontier:
                raise CyclicDependencyError(run.remaining)
            snapshot = run.snapshot()
            LOGGER.debug("Workflow %s job=%s dispatching %s", name, job.id, frontier)
            await asyncio.gather(*(self._run_step(run, step, snapshot) for step in frontier))
        return run.results

    async def stop(self) -> None:
        tasks = list(self._persist_tasks)
        self._persist_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _step_handler(self, definition: StepDefinition):
        async def _handle_step(job: Job) -> Any:
            results = job.data if job.data is not None else {}
            return await self._runner.run(definition.function, results)

        return _handle_step

    def _run_driver(self, name: str, definitions: Dict[str, StepDefinition]):
        async def _drive(job: Job) -> StepResults:
            return await self.run(name, job, definitions)

        return _drive

    async def _run_step(self, run: WorkflowRun, step: str, snapshot: StepResults) -> None:
        result = await self._dispatcher.request(step_job_name(run.name, step), snapshot)
        run.record(step, result)
        self._persist(run.job_id, step, result)

    def _persist(self, job_id: str, step: str, result: Any) -> None:
        task = asyncio.create_task(
            self._dispatcher.store_step_result(job_id, step, result),
            name=f"store-step-{step}",
        )
        self._persist_tasks.add(task)

        def _finalise(completed: asyncio.Task[None]) -> None:
            self._persist_tasks.discard(completed)
            if completed.cancelled():
                return
            exc = completed.exception()
            if exc is not None:
                LOGGER.warning("Failed to store result of step %s for job %s: %s", step, job_id, exc)

        task.add_done_callback(_finalise)
