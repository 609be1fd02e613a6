"""
BuildOrchestrator - run a recipe against a root file, one build at a time.

Build flow:
1. Admission: a request arriving while another one is already waiting for
   the running build is rejected
2. Build-after-save is suppressed for auto_build_interval milliseconds
3. Output subdirectories are created for every included file
4. Steps are resolved (RecipeResolver) and materialized (StepMaterializer)
5. Steps run in order through the ProcessSupervisor:
   - spawn error: fatal, the build fails
   - non-zero exit: one clean-and-retry from the first step, unless the
     process was killed by the user; a second failure fails the build
   - kill() between steps or during the retry clean stops the build before
     the next step starts
   - all steps succeed: viewer refresh, optional SyncTeX, optional clean
6. The build lock is released exactly once, whatever happened

Toolchain failures never raise. They end in a FAILED BuildResult and are
surfaced through the status reporter and the compiler log.
"""

import logging
import os
import shutil
import tempfile
import threading
import time
import weakref
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from texorchestra.collaborators import (
    Cleaner,
    ConsoleStatusReporter,
    DefaultProjectLayout,
    GlobCleaner,
    Locator,
    LoggingLocator,
    LoggingViewer,
    ProjectLayout,
    StatusReporter,
    Viewer,
)
from texorchestra.compiler_log import CompilerLog
from texorchestra.config import BuildConfig
from texorchestra.errors import BuildSetupError, RecipeResolutionError, ScratchDirectoryError
from texorchestra.gate import SerializationGate
from texorchestra.materializer import StepMaterializer, detect_miktex
from texorchestra.resolver import RecipeMemory, RecipeResolver
from texorchestra.schemas import (
    BuildAttempt,
    BuildResult,
    BuildState,
    BuildStatus,
    OutcomeKind,
    ProcessOutcome,
    Step,
)
from texorchestra.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

DEFAULT_RECIPE_LABEL = "Build"
EXTERNAL_STEP_NAME = "External"


def create_scratch_dir() -> str:
    """
    Create the private scratch directory used for %TMPDIR%.

    Returns:
        Directory path with forward slashes

    Raises:
        ScratchDirectoryError: If the temp root contains quotes or creation fails
    """
    temp_root = tempfile.gettempdir()
    if "'" in temp_root or '"' in temp_root:
        _log_temp_env()
        raise ScratchDirectoryError(
            f"The path of the temporary directory contains quotes: {temp_root}"
        )
    try:
        path = tempfile.mkdtemp(prefix="texorchestra-")
    except OSError as e:
        _log_temp_env()
        raise ScratchDirectoryError(f"Error during making tmpdir to build TeX files: {e}") from e
    return path.replace("\\", "/")


def _log_temp_env() -> None:
    for name in ("TEMP", "TMP", "TMPDIR"):
        logger.error(f"${name}: {os.environ.get(name)}")


class BuildOrchestrator:
    """
    Serialized build engine for one workspace.

    Every collaborator can be injected; omitted ones are built from the
    configuration.

    Usage:
        orchestrator = BuildOrchestrator(load_config())
        result = orchestrator.build("/project/main.tex")
        if not result.success:
            print(result.error)
        orchestrator.close()
    """

    def __init__(
        self,
        config: BuildConfig,
        *,
        supervisor: Optional[ProcessSupervisor] = None,
        resolver: Optional[RecipeResolver] = None,
        materializer: Optional[StepMaterializer] = None,
        memory: Optional[RecipeMemory] = None,
        reporter: Optional[StatusReporter] = None,
        cleaner: Optional[Cleaner] = None,
        viewer: Optional[Viewer] = None,
        locator: Optional[Locator] = None,
        project: Optional[ProjectLayout] = None,
        compiler_log: Optional[CompilerLog] = None,
        is_miktex: Optional[bool] = None,
        scratch_dir: Optional[str] = None,
    ):
        self.config = config

        if scratch_dir is None:
            scratch_dir = create_scratch_dir()
            self._finalizer = weakref.finalize(self, shutil.rmtree, scratch_dir, True)
        else:
            self._finalizer = None
        self._scratch_dir = scratch_dir
        logger.info(
            f"Scratch directory: {scratch_dir}",
            extra={"event": "scratch_dir_created", "metadata": {"path": scratch_dir}},
        )

        self.compiler_log = compiler_log if compiler_log is not None else CompilerLog()
        self.reporter = reporter if reporter is not None else ConsoleStatusReporter()
        self.memory = memory if memory is not None else RecipeMemory()
        self.project = project if project is not None else DefaultProjectLayout(config)
        self.cleaner = cleaner if cleaner is not None else GlobCleaner(config, self.project)
        self.viewer = viewer if viewer is not None else LoggingViewer()
        self.locator = locator if locator is not None else LoggingLocator()
        self.supervisor = supervisor if supervisor is not None else ProcessSupervisor(
            sink=self.compiler_log.append
        )
        self.resolver = resolver if resolver is not None else RecipeResolver(
            config, self.memory, self.reporter
        )
        if materializer is None:
            if is_miktex is None:
                is_miktex = detect_miktex()
            materializer = StepMaterializer(config, scratch_dir, is_miktex=is_miktex)
        self.materializer = materializer

        self._gate = SerializationGate()
        self._cancel = threading.Event()
        self._state = BuildState.IDLE
        self._suppress_until = 0.0

    @property
    def state(self) -> BuildState:
        return self._state

    @property
    def scratch_dir(self) -> str:
        return self._scratch_dir

    def close(self) -> None:
        """Remove the scratch directory (if this orchestrator created it)."""
        if self._finalizer is not None:
            self._finalizer()

    def is_build_finished(self) -> bool:
        return not self._gate.is_building()

    def is_waiting_for_build(self) -> bool:
        return self._gate.is_waiting()

    def kill(self) -> None:
        """
        Stop the running build. The current step is killed and no further
        step runs; the build fails without retry.
        """
        if self._gate.is_building():
            self._cancel.set()
        self.supervisor.kill()

    def _suppress_build_after_save(self) -> None:
        self._suppress_until = time.monotonic() + self.config.auto_build_interval / 1000

    def build_after_save(self, root_file: str, language_id: str = "latex") -> Optional[BuildResult]:
        """
        Build triggered by saving a file.

        Returns:
            None while build-after-save is suppressed by a recent build,
            otherwise the BuildResult
        """
        if time.monotonic() < self._suppress_until:
            logger.info(
                "Auto Build Run is temporarily disabled during a second.",
                extra={"event": "build_after_save_suppressed", "metadata": {"root_file": str(root_file)}},
            )
            return None
        return self.build(root_file, language_id)

    def build(
        self,
        root_file: Path | str,
        language_id: str = "latex",
        recipe_name: Optional[str] = None,
    ) -> BuildResult:
        """
        Build a root file.

        Args:
            root_file: Root file to compile
            language_id: Language of the root file
            recipe_name: Recipe to use instead of directives/default selection

        Returns:
            BuildResult with status SUCCEEDED, FAILED or REJECTED

        Raises:
            BuildSetupError: If output directories could not be prepared
        """
        root_file = str(root_file)
        with self._gate.admit() as admitted:
            if not admitted:
                return self._reject()

            self._state = BuildState.ADMITTING
            self._cancel.clear()
            self._suppress_build_after_save()
            logger.info(
                f"Build root file {root_file}",
                extra={
                    "event": "build_started",
                    "metadata": {"root_file": root_file, "language_id": language_id, "recipe": recipe_name},
                },
            )
            self.reporter.building()

            try:
                self._prepare_output_dirs(root_file)
            except Exception as e:
                raise self._setup_failed(root_file, "prepare output directories", e) from e

            try:
                templates = self.resolver.resolve(root_file, language_id, recipe_name)
            except (RecipeResolutionError, OSError) as e:
                return self._fail_without_run(str(e))

            try:
                steps = self.materializer.materialize(templates, root_file)
            except Exception as e:
                raise self._setup_failed(root_file, "materialize steps", e) from e
            if not steps:
                return self._fail_without_run("Recipe has no steps")

            attempt = BuildAttempt(
                root_file=root_file,
                language_id=language_id,
                recipe_label=recipe_name or DEFAULT_RECIPE_LABEL,
                steps=steps,
            )
            try:
                return self._run_attempt(attempt)
            except Exception:
                self._state = BuildState.FAILED
                raise

    def build_with_external_command(
        self,
        command: str,
        args: Iterable[str] = (),
        cwd: Optional[str] = None,
        root_file: Optional[str] = None,
    ) -> BuildResult:
        """
        Build with a user supplied command instead of a recipe.

        Placeholders in args are expanded when a root file is given. The
        command runs in workspace_folder when configured, else in cwd. There
        is no clean-and-retry.

        Args:
            command: Executable to run
            args: Arguments, may contain placeholders
            cwd: Working directory when no workspace_folder is configured
            root_file: Root file the command builds

        Returns:
            BuildResult
        """
        with self._gate.admit() as admitted:
            if not admitted:
                return self._reject()

            self._state = BuildState.RUNNING
            self._cancel.clear()
            self._suppress_build_after_save()
            self.reporter.building()

            args = list(args)
            if root_file is not None:
                root_file = str(root_file)
                expand = self.materializer.expander(root_file)
                args = [expand(arg) for arg in args]
            workdir = self.config.workspace_folder or cwd or os.getcwd()

            step = Step(name=EXTERNAL_STEP_NAME, command=command, args=tuple(args))
            self.compiler_log.clear()
            logger.info(
                f"Build using external command: {command} {' '.join(args)}",
                extra={"event": "external_build_started", "metadata": {"command": command, "cwd": workdir}},
            )

            outcome = self.supervisor.run(step, workdir)
            if not outcome.succeeded:
                self._state = BuildState.FAILED
                if outcome.kind == OutcomeKind.SPAWN_ERROR:
                    message = f"Build terminated with fatal error: {outcome.message}."
                    self.reporter.failed(message)
                    self.reporter.show_error(message, action="build_log")
                else:
                    logger.error(
                        f"Build returns with error: {outcome.describe()}.",
                        extra={"event": "external_build_failed", "metadata": outcome.to_dict()},
                    )
                    self.reporter.failed()
                    self.reporter.show_error("Build terminated with error.", action="compiler_log")
                return BuildResult(status=BuildStatus.FAILED, outcome=outcome, error=outcome.describe())

            self._state = BuildState.SUCCEEDED
            logger.info("Successfully built.", extra={"event": "external_build_succeeded"})
            self.reporter.succeeded("Build succeeded.")
            if root_file is None:
                self.viewer.refresh()
            else:
                self._build_finished(root_file)
            return BuildResult(status=BuildStatus.SUCCEEDED, outcome=outcome)

    def _reject(self) -> BuildResult:
        logger.info(
            "Another LaTeX build processing is already waiting for the current to finish. Exit.",
            extra={"event": "build_rejected"},
        )
        return BuildResult(status=BuildStatus.REJECTED, error="Another build is already waiting")

    def _setup_failed(self, root_file: str, action: str, error: Exception) -> BuildSetupError:
        logger.error(
            f"Failed to {action}: {error}",
            extra={"event": "build_setup_failed", "metadata": {"root_file": root_file, "action": action}},
        )
        self._state = BuildState.FAILED
        self.reporter.failed()
        return BuildSetupError(f"Failed to {action} for {root_file}: {error}")

    def _fail_without_run(self, message: str) -> BuildResult:
        logger.error(message, extra={"event": "build_failed", "metadata": {"reason": message}})
        self._state = BuildState.FAILED
        self.reporter.failed(message)
        self.reporter.show_error(message, action="build_log")
        return BuildResult(status=BuildStatus.FAILED, error=message)

    def _prepare_output_dirs(self, root_file: str) -> None:
        """Mirror the directory of every included file beneath the output directory."""
        root_dir = Path(root_file).resolve().parent
        out_dir = Path(self.project.out_dir(root_file))
        if not out_dir.is_absolute():
            out_dir = root_dir / out_dir
        for included in self.project.included_files(root_file):
            included_dir = Path(included).resolve().parent
            try:
                relative = included_dir.relative_to(root_dir)
            except ValueError:
                continue
            (out_dir / relative).mkdir(parents=True, exist_ok=True)

    def _step_cwd(self, step: Step, root_file: str) -> str:
        root_dir = self.project.root_dir
        local_root = self.project.local_root_file
        if step.command == "latexmk" and root_dir and local_root and os.path.normpath(
            local_root
        ) == os.path.normpath(root_file):
            return root_dir
        return os.path.dirname(os.path.abspath(root_file))

    def _run_attempt(self, attempt: BuildAttempt) -> BuildResult:
        self._state = BuildState.RUNNING
        outcome: Optional[ProcessOutcome] = None

        while attempt.index < len(attempt.steps):
            if self._cancel.is_set():
                return self._cancelled(attempt, outcome)
            step = attempt.current_step
            if attempt.index == 0 or self.config.clear_log_every_step:
                self.compiler_log.clear()
            self.reporter.building(attempt.progress())
            logger.info(
                f"Recipe step {attempt.index + 1} The command: {step.command}, {list(step.arg_list())}",
                extra={
                    "event": "step_started",
                    "step": step.name,
                    "metadata": {"index": attempt.index, "command": step.command},
                },
            )

            outcome = self.supervisor.run(step, self._step_cwd(step, attempt.root_file))
            if outcome.succeeded:
                logger.info(
                    f"Finished a step in recipe: {step.name}",
                    extra={"event": "step_succeeded", "step": step.name},
                )
                attempt.index += 1
                continue

            if outcome.kind == OutcomeKind.SPAWN_ERROR:
                return self._fatal(attempt, outcome)

            logger.error(
                f"Recipe returns with error code {outcome.exit_code}/{outcome.signal} on PID {outcome.pid}.",
                extra={"event": "step_failed", "step": step.name, "metadata": outcome.to_dict()},
            )
            if self._cancel.is_set():
                attempt.cancelled = True
            elif self.config.clean_and_retry_enabled and not attempt.retried and not outcome.terminated:
                self._retry(attempt)
                continue
            return self._failed(attempt, outcome)

        return self._succeeded(attempt, outcome)

    def _retry(self, attempt: BuildAttempt) -> None:
        self._state = BuildState.RETRYING
        attempt.retried = True
        logger.info(
            "Cleaning auxiliary files and retrying build after toolchain error.",
            extra={"event": "build_retry", "metadata": {"root_file": attempt.root_file}},
        )
        self.reporter.warn("Recipe terminated with error. Retry building the project.")
        self.cleaner.clean(attempt.root_file)
        attempt.index = 0
        self._state = BuildState.RUNNING

    def _cancelled(self, attempt: BuildAttempt, outcome: Optional[ProcessOutcome]) -> BuildResult:
        self._state = BuildState.FAILED
        attempt.cancelled = True
        message = "Recipe terminated by kill request."
        logger.info(
            message,
            extra={"event": "build_cancelled", "metadata": {"root_file": attempt.root_file, "index": attempt.index}},
        )
        self.reporter.failed(message)
        return BuildResult(status=BuildStatus.FAILED, attempt=attempt, outcome=outcome, error=message)

    def _fatal(self, attempt: BuildAttempt, outcome: ProcessOutcome) -> BuildResult:
        self._state = BuildState.FAILED
        message = f"Recipe terminated with fatal error: {outcome.message}."
        self.reporter.failed(message)
        self.reporter.show_error(message, action="build_log")
        return BuildResult(status=BuildStatus.FAILED, attempt=attempt, outcome=outcome, error=message)

    def _failed(self, attempt: BuildAttempt, outcome: ProcessOutcome) -> BuildResult:
        self._state = BuildState.FAILED
        if outcome.stderr:
            logger.error(f"LaTeX build process stderr:\n{outcome.stderr}")
        self.reporter.failed()
        if self.config.should_clean_after_failure():
            logger.info("Auto clean after failed build.", extra={"event": "auto_clean"})
            self.cleaner.clean(attempt.root_file)
        self.reporter.show_error("Recipe terminated with error.", action="compiler_log")
        return BuildResult(
            status=BuildStatus.FAILED,
            attempt=attempt,
            outcome=outcome,
            error=outcome.describe(),
        )

    def _succeeded(self, attempt: BuildAttempt, outcome: Optional[ProcessOutcome]) -> BuildResult:
        self._state = BuildState.SUCCEEDED
        elapsed = (datetime.now() - attempt.started_at).total_seconds()
        logger.info(
            f"Successfully built {attempt.root_file}.",
            extra={
                "event": "build_succeeded",
                "metadata": {"root_file": attempt.root_file, "retried": attempt.retried, "seconds": elapsed},
            },
        )
        self.reporter.succeeded("Recipe succeeded.")
        self._build_finished(attempt.root_file)
        return BuildResult(status=BuildStatus.SUCCEEDED, attempt=attempt, outcome=outcome)

    def _build_finished(self, root_file: str) -> None:
        self.viewer.refresh(root_file)
        if self.config.viewer == "external" and self.config.synctex_after_build:
            pdf_file = self.project.tex2pdf(root_file)
            logger.info(f"SyncTex after build invoked: {pdf_file}", extra={"event": "synctex_after_build"})
            self.locator.synctex(pdf_file)
        if self.config.should_clean_after_success():
            logger.info("Auto clean after successful build.", extra={"event": "auto_clean"})
            self.cleaner.clean(root_file)
