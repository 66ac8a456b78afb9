"""
Change dispatch: resolve each ChangeEvent to an action, report it, run it.

Provides:
- Action resolution (explicit command beats an extension rule)
- Reporting of every change, whether or not a command runs
- Serial execution (the next event waits for the running command)
- Concurrent execution (one task per event, dispatch continues immediately)

Command failures are reported per event and never stop the dispatch loop.
"""

import asyncio
import functools
import logging
from pathlib import Path
from typing import Protocol

from onchange_core.config import EngineConfig, Rule
from onchange_core.models import ChangeEvent, CommandOutcome, DispatchState, ExecutionMode, PathVariables
from onchange_core.notifier import NoOpNotifier, OnchangeNotifier
from onchange_core.reporter import Reporter
from onchange_core.template import PathTemplate

logger = logging.getLogger(__name__)


class ExecutionError(RuntimeError):
    """A command could not be spawned or exited non-zero."""

    def __init__(self, outcome: CommandOutcome):
        self.outcome = outcome
        super().__init__(f"Command failed for {outcome.path}: {outcome.command} ({outcome.describe()})")


class CommandRunner(Protocol):
    """Runs a rendered command line and returns its exit status."""

    async def run(self, command: str) -> int:
        ...


class ShellRunner:
    """Run commands through the system shell, inheriting stdin/stdout/stderr."""

    async def run(self, command: str) -> int:
        process = await asyncio.create_subprocess_shell(command)
        return await process.wait()


class Dispatcher:
    """Resolve, report and execute actions for ChangeEvents."""

    def __init__(
        self,
        config: EngineConfig,
        notifier: OnchangeNotifier | None = None,
        runner: CommandRunner | None = None,
        cwd: str | Path | None = None,
    ):
        """Initialize dispatcher.

        Args:
            config: Engine configuration (read-only)
            notifier: Output sink (defaults to NoOpNotifier - silent)
            runner: Command runner (defaults to ShellRunner)
            cwd: Working directory for relative path variables
        """
        self.config = config
        self.notifier = notifier or NoOpNotifier()
        self.reporter = Reporter(config.message_template, self.notifier)
        self.runner = runner or ShellRunner()
        self.cwd = str(Path(cwd).resolve()) if cwd is not None else str(Path.cwd())
        self._tasks: set[asyncio.Task] = set()

    def resolve(self, event: ChangeEvent) -> tuple[PathTemplate | None, Rule | None]:
        """Pick the command template for an event.

        Returns:
            (template, rule): template is None when nothing should run; rule is
            the matching config rule, if one was consulted and matched
        """
        if self.config.explicit_command is not None:
            return self.config.explicit_command, None

        ext = Path(event.path).suffix[1:]
        rule = self.config.rule_table.resolve(ext) if ext else None
        if rule is None:
            return None, None
        return rule.command, rule

    async def dispatch(self, event: ChangeEvent) -> DispatchState:
        """Handle one change event.

        In serial mode this returns after the command finished; in concurrent
        mode it returns EXECUTING as soon as the command task is launched.
        """
        logger.debug(f"{DispatchState.DETECTED.value}: {event.path}")
        variables = PathVariables.from_path(event.path, self.cwd)
        template, rule = self.resolve(event)
        logger.debug(f"{DispatchState.RESOLVED.value}: {event.path} -> {template!r}")

        self.reporter.report(variables)

        if template is None:
            # Matched an ignore rule, or nothing configured at all
            return DispatchState.SKIPPED if rule is not None else DispatchState.REPORTED

        command = template.render(variables)
        self.notifier.running(command)
        if self.config.render_only:
            return DispatchState.SKIPPED

        if self.config.execution_mode is ExecutionMode.CONCURRENT:
            task = asyncio.create_task(self._execute(event.path, command))
            self._tasks.add(task)
            task.add_done_callback(functools.partial(self._on_task_done, event.path, command))
            return DispatchState.EXECUTING

        outcome = await self._execute(event.path, command)
        return DispatchState.COMPLETED if outcome.ok else DispatchState.FAILED

    async def _execute(self, path: str, command: str) -> CommandOutcome:
        try:
            outcome = await self._run_command(path, command)
        except ExecutionError as e:
            logger.warning(str(e))
            self._report(self.notifier.failed, path, command, e.outcome.describe())
            return e.outcome
        logger.debug(f"{DispatchState.COMPLETED.value}: {command}")
        return outcome

    async def _run_command(self, path: str, command: str) -> CommandOutcome:
        if self.config.delay > 0:
            await asyncio.sleep(self.config.delay)
        try:
            returncode = await self.runner.run(command)
        except OSError as e:
            raise ExecutionError(CommandOutcome(path, command, error=str(e))) from e
        outcome = CommandOutcome(path, command, returncode=returncode)
        if returncode != 0:
            raise ExecutionError(outcome)
        return outcome

    def _on_task_done(self, path: str, command: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Command task for {path} crashed: {exc}", exc_info=exc)
            self._report(self.notifier.failed, path, command, str(exc) or type(exc).__name__)

    def _report(self, method, *args) -> None:
        """Call a notifier method from an error path; its own failure is only logged."""
        try:
            method(*args)
        except Exception:
            logger.exception(f"Notifier {method.__name__}() failed")

    async def run(self, queue: "asyncio.Queue[ChangeEvent]") -> None:
        """Dispatch events from the queue in arrival order, forever."""
        while True:
            event = await queue.get()
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.exception(f"Error dispatching change for {event.path}: {e}")
                self._report(self.notifier.error, f"Failed to handle change for {event.path}: {e}")
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait for every concurrently running command to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def active_count(self) -> int:
        """Number of concurrent commands still running."""
        return len(self._tasks)
