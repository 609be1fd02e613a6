"""
Collaborators - the boundary between the build engine and its surroundings.

The orchestrator talks to these interfaces only:
- StatusReporter: status transitions and user-facing notifications
- Cleaner: removal of generated auxiliary files
- Viewer: refresh of an open PDF viewer
- Locator: SyncTeX forward search after a build
- ProjectLayout: output directory, included files and PDF path of a root file

Each interface has a default implementation suitable for command-line use.
Editors or other hosts provide their own.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional

from texorchestra.config import BuildConfig
from texorchestra.materializer import make_expander
from texorchestra.utils import print_error, print_info, print_success, print_warning

logger = logging.getLogger(__name__)


class StatusReporter(ABC):
    """Receives build status transitions and notifications."""

    @abstractmethod
    def building(self, progress: str = "") -> None:
        """A build (step) is in progress."""
        pass

    @abstractmethod
    def succeeded(self, message: str) -> None:
        """The build finished successfully."""
        pass

    @abstractmethod
    def failed(self, message: Optional[str] = None) -> None:
        """The build finished with an error."""
        pass

    @abstractmethod
    def warn(self, message: str) -> None:
        """Non-fatal problem the user should see."""
        pass

    @abstractmethod
    def show_error(self, message: str, action: Optional[str] = None) -> None:
        """
        Error notification.

        Args:
            message: Error message
            action: Log to point the user at ("compiler_log" or "build_log")
        """
        pass


class ConsoleStatusReporter(StatusReporter):
    """Status reporter printing to the rich console."""

    def building(self, progress: str = "") -> None:
        print_info(f"Building{' ' + progress if progress else ''}...")

    def succeeded(self, message: str) -> None:
        print_success(message)

    def failed(self, message: Optional[str] = None) -> None:
        if message:
            print_error(message)

    def warn(self, message: str) -> None:
        print_warning(message)

    def show_error(self, message: str, action: Optional[str] = None) -> None:
        if action == "compiler_log":
            message += " See the compiler output above."
        elif action == "build_log":
            message += " See the build log for details."
        print_error(message)


class Cleaner(ABC):
    """Removes generated files of a root file."""

    @abstractmethod
    def clean(self, root_file: str) -> None:
        pass


class Viewer(ABC):
    """PDF viewer collaborator."""

    @abstractmethod
    def refresh(self, root_file: Optional[str] = None) -> None:
        """Refresh viewers of root_file, or every open viewer when None."""
        pass


class Locator(ABC):
    """SyncTeX collaborator."""

    @abstractmethod
    def synctex(self, pdf_file: str) -> None:
        pass


class LoggingViewer(Viewer):
    """Viewer that only records refresh requests in the log."""

    def refresh(self, root_file: Optional[str] = None) -> None:
        logger.info(
            f"Refresh PDF viewer for {root_file or 'all documents'}",
            extra={"event": "viewer_refresh", "metadata": {"root_file": root_file}},
        )


class LoggingLocator(Locator):
    """Locator that only records SyncTeX requests in the log."""

    def synctex(self, pdf_file: str) -> None:
        logger.info(
            f"SyncTeX requested for {pdf_file}",
            extra={"event": "synctex_requested", "metadata": {"pdf_file": pdf_file}},
        )


class ProjectLayout(ABC):
    """
    Project structure around a root file.

    root_dir/local_root_file describe a project whose root was chosen by the
    host; latexmk steps building the local root file run from root_dir.
    """

    root_dir: Optional[str] = None
    local_root_file: Optional[str] = None

    @abstractmethod
    def out_dir(self, root_file: str) -> str:
        """Output directory for a root file, possibly relative to its directory."""
        pass

    @abstractmethod
    def included_files(self, root_file: str) -> list[str]:
        """The root file and every file it includes."""
        pass

    @abstractmethod
    def tex2pdf(self, root_file: str) -> str:
        """Path of the PDF produced for a root file."""
        pass


class DefaultProjectLayout(ProjectLayout):
    """
    Layout derived from the configuration and the root file only.

    Args:
        config: Build configuration (out_dir template)
        included: Extra included files, in addition to the root file
        root_dir: Project root directory chosen by the host
        local_root_file: Root file set by a local root directive
    """

    def __init__(
        self,
        config: BuildConfig,
        included: Iterable[str] = (),
        root_dir: Optional[str] = None,
        local_root_file: Optional[str] = None,
    ):
        self.config = config
        self._included = list(included)
        self.root_dir = root_dir
        self.local_root_file = local_root_file

    def out_dir(self, root_file: str) -> str:
        expand = make_expander(
            root_file,
            scratch_dir="",
            out_dir=self.config.out_dir,
            workspace_folder=self.config.workspace_folder,
        )
        return expand("%OUTDIR%")

    def resolved_out_dir(self, root_file: str) -> Path:
        out_dir = Path(self.out_dir(root_file))
        if not out_dir.is_absolute():
            out_dir = Path(root_file).parent / out_dir
        return out_dir.resolve()

    def included_files(self, root_file: str) -> list[str]:
        return [root_file] + [f for f in self._included if f != root_file]

    def tex2pdf(self, root_file: str) -> str:
        stem = Path(root_file).stem
        return str(self.resolved_out_dir(root_file) / f"{stem}.pdf")


class GlobCleaner(Cleaner):
    """
    Deletes files matching clean_file_types in the output and root directories.

    Files that cannot be removed are logged and skipped.
    """

    def __init__(self, config: BuildConfig, project: ProjectLayout):
        self.config = config
        self.project = project

    def _directories(self, root_file: str) -> list[Path]:
        root_dir = Path(root_file).resolve().parent
        out_dir = Path(self.project.out_dir(root_file))
        if not out_dir.is_absolute():
            out_dir = root_dir / out_dir
        dirs = [root_dir]
        if out_dir.resolve() != root_dir:
            dirs.append(out_dir.resolve())
        return dirs

    def clean(self, root_file: str) -> None:
        removed = 0
        for directory in self._directories(root_file):
            if not directory.is_dir():
                continue
            for pattern in self.config.clean_file_types:
                for path in directory.glob(pattern):
                    if not path.is_file():
                        continue
                    try:
                        os.remove(path)
                        removed += 1
                    except OSError as e:
                        logger.warning(
                            f"Could not remove {path}: {e}",
                            extra={"event": "clean_failed", "metadata": {"file": str(path)}},
                        )
        logger.info(
            f"Cleaned {removed} auxiliary files for {root_file}",
            extra={"event": "cleaned", "metadata": {"root_file": root_file, "removed": removed}},
        )
