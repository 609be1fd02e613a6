"""
StepMaterializer - turn resolved step templates into concrete invocations.

For every step:
1. Container substitution: with docker_enabled, latexmk is replaced by the
   bundled wrapper script (wrappers/latexmk, wrappers/latexmk.bat on Windows)
2. Placeholder expansion in args and env values (%DOC%, %DIR%, %OUTDIR%, ...)
3. MiKTeX safety flag: --max-print-line is prepended to latexmk (non-LuaLaTeX)
   and pdflatex steps when max_print_line_enabled is set

Placeholder expansion is a pure function of the root file, the scratch
directory and the configuration.
"""

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Callable, Iterable, Optional

from texorchestra.config import BuildConfig
from texorchestra.schemas import Step

logger = logging.getLogger(__name__)

MAX_PRINT_LINE = "10000"
MAX_PRINT_LINE_FLAG = "--max-print-line=" + MAX_PRINT_LINE

WRAPPER_DIR = Path(__file__).parent / "wrappers"

# Commands with a bundled container wrapper.
DOCKER_WRAPPED_COMMANDS = frozenset({"latexmk"})

LUALATEX_FLAGS = frozenset({
    "-lualatex", "-pdflua", "-pdflualatex",
    "--lualatex", "--pdflua", "--pdflualatex",
})


def _posix(path: str) -> str:
    return path.replace(os.sep, "/")


def make_expander(
    root_file: str,
    scratch_dir: str,
    out_dir: str = "%DIR%",
    workspace_folder: Optional[str] = None,
    docker: bool = False,
) -> Callable[[str], str]:
    """
    Build a placeholder expansion function for one root file.

    Args:
        root_file: Root file path
        scratch_dir: Private scratch directory (%TMPDIR%)
        out_dir: Output directory template, itself expanded (%OUTDIR%)
        workspace_folder: Workspace folder (defaults to the root file's directory)
        docker: Expand to container-relative paths

    Returns:
        Function expanding all placeholders in a string
    """
    docfile, _ = os.path.splitext(os.path.basename(root_file))
    docfile_ext = os.path.basename(root_file)
    dir_w32 = os.path.normpath(os.path.dirname(root_file))
    dir_posix = _posix(dir_w32)
    doc_w32 = os.path.join(dir_w32, docfile)
    doc = _posix(doc_w32)
    doc_ext_w32 = os.path.join(dir_w32, docfile_ext)
    doc_ext = _posix(doc_ext_w32)

    workspace = _posix(os.path.normpath(workspace_folder)) if workspace_folder else dir_posix
    relative_dir = _posix(os.path.relpath(dir_w32, workspace))
    relative_doc = _posix(os.path.relpath(doc_w32, workspace))

    def expand_paths(arg: str) -> str:
        return (
            arg.replace("%DOC%", docfile if docker else doc)
            .replace("%DOC_W32%", docfile if docker else doc_w32)
            .replace("%DOC_EXT%", docfile_ext if docker else doc_ext)
            .replace("%DOC_EXT_W32%", docfile_ext if docker else doc_ext_w32)
            .replace("%DOCFILE_EXT%", docfile_ext)
            .replace("%DOCFILE%", docfile)
            .replace("%DIR%", "./" if docker else dir_posix)
            .replace("%DIR_W32%", "./" if docker else dir_w32)
            .replace("%TMPDIR%", scratch_dir)
            .replace("%WORKSPACE_FOLDER%", "./" if docker else workspace)
            .replace("%RELATIVE_DIR%", "./" if docker else relative_dir)
            .replace("%RELATIVE_DOC%", docfile if docker else relative_doc)
        )

    out_dir_w32 = os.path.normpath(expand_paths(out_dir))
    out_dir_posix = _posix(out_dir_w32)

    def expand(arg: str) -> str:
        return expand_paths(arg).replace("%OUTDIR%", out_dir_posix).replace("%OUTDIR_W32%", out_dir_w32)

    return expand


def detect_miktex() -> bool:
    """Check whether pdflatex is provided by MiKTeX."""
    try:
        result = subprocess.run(
            ["pdflatex", "--version"],
            capture_output=True,
            text=True,
            check=False,
            timeout=10,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.info(f"Cannot run pdflatex to determine if we are using MiKTeX: {e}")
        return False

    if "MiKTeX" in result.stdout:
        logger.info("pdflatex is provided by MiKTeX")
        return True
    return False


class StepMaterializer:
    """
    Expand steps for a concrete root file.

    Usage:
        materializer = StepMaterializer(config, scratch_dir, is_miktex=detect_miktex())
        steps = materializer.materialize(resolved_steps, "/project/main.tex")
    """

    def __init__(
        self,
        config: BuildConfig,
        scratch_dir: str,
        is_miktex: bool = False,
        wrapper_dir: Path = WRAPPER_DIR,
        platform: str = sys.platform,
    ):
        self.config = config
        self.scratch_dir = scratch_dir
        self.is_miktex = is_miktex
        self.wrapper_dir = Path(wrapper_dir)
        self.platform = platform

    def expander(self, root_file: str) -> Callable[[str], str]:
        return make_expander(
            root_file,
            self.scratch_dir,
            out_dir=self.config.out_dir,
            workspace_folder=self.config.workspace_folder,
            docker=self.config.docker_enabled,
        )

    def materialize(self, steps: Iterable[Step], root_file: str) -> list[Step]:
        """
        Return expanded copies of the steps. The input steps are not modified.

        Args:
            steps: Resolved step templates
            root_file: Root file being compiled

        Returns:
            New list of concrete steps
        """
        expand = self.expander(root_file)
        return [self._materialize_step(step, expand) for step in steps]

    def _materialize_step(self, step: Step, expand: Callable[[str], str]) -> Step:
        command = step.command
        if self.config.docker_enabled:
            command = self._docker_command(command)

        args = [expand(a) for a in step.args] if step.args is not None else None
        env = {key: expand(value) if value else value for key, value in step.env.items()}

        if self.config.max_print_line_enabled:
            if args is None:
                args = []
            if step.is_raw_directive:
                # Directive options stay one shell string; the flag goes inside it.
                options = args[0] if args else ""
                if self._wants_max_print_line(command, options.split()):
                    args = [f"{MAX_PRINT_LINE_FLAG} {options}".rstrip()]
            elif self._wants_max_print_line(command, args):
                args.insert(0, MAX_PRINT_LINE_FLAG)

        return Step(
            name=step.name,
            command=command,
            args=tuple(args) if args is not None else None,
            env=env,
        )

    def _wants_max_print_line(self, command: str, args: list[str]) -> bool:
        if not self.is_miktex:
            return False
        if command == "pdflatex":
            return True
        return command == "latexmk" and not any(a in LUALATEX_FLAGS for a in args)

    def _docker_command(self, command: str) -> str:
        if command not in DOCKER_WRAPPED_COMMANDS:
            logger.info(f"Will not use Docker to invoke the command: {command}")
            return command

        logger.info("Use Docker to invoke the command.")
        if self.platform == "win32":
            return str((self.wrapper_dir / f"{command}.bat").resolve())

        wrapper = (self.wrapper_dir / command).resolve()
        os.chmod(wrapper, 0o755)
        return str(wrapper)
