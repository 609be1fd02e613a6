import threading

import pytest

from texorchestra.collaborators import Cleaner, Locator, ProjectLayout, StatusReporter, Viewer
from texorchestra.compiler_log import CompilerLog
from texorchestra.config import BuildConfig
from texorchestra.schemas import ProcessOutcome, Step


class RecordingReporter(StatusReporter):
    """Records every status call as (method, *args)."""

    def __init__(self):
        self.calls = []

    def building(self, progress=""):
        self.calls.append(("building", progress))

    def succeeded(self, message):
        self.calls.append(("succeeded", message))

    def failed(self, message=None):
        self.calls.append(("failed", message))

    def warn(self, message):
        self.calls.append(("warn", message))

    def show_error(self, message, action=None):
        self.calls.append(("show_error", message, action))

    def of(self, method):
        return [c[1:] for c in self.calls if c[0] == method]


class FakeCleaner(Cleaner):
    def __init__(self):
        self.cleaned = []

    def clean(self, root_file):
        self.cleaned.append(root_file)


class FakeViewer(Viewer):
    def __init__(self):
        self.refreshed = []

    def refresh(self, root_file=None):
        self.refreshed.append(root_file)


class FakeLocator(Locator):
    def __init__(self):
        self.requests = []

    def synctex(self, pdf_file):
        self.requests.append(pdf_file)


class FakeProject(ProjectLayout):
    def __init__(self, out_dir=".", included=(), root_dir=None, local_root_file=None):
        self._out_dir = out_dir
        self._included = list(included)
        self.root_dir = root_dir
        self.local_root_file = local_root_file

    def out_dir(self, root_file):
        return self._out_dir

    def included_files(self, root_file):
        return [root_file] + self._included

    def tex2pdf(self, root_file):
        return root_file.rsplit(".", 1)[0] + ".pdf"


class ScriptedSupervisor:
    """
    Supervisor stand-in returning queued outcomes.

    Each queued item is a ProcessOutcome or a callable(step, cwd) returning
    one. When the queue is empty every further step succeeds.
    """

    def __init__(self, outcomes=()):
        self.outcomes = list(outcomes)
        self.calls: list[tuple[Step, str]] = []
        self.kills = 0

    def run(self, step, cwd):
        self.calls.append((step, cwd))
        if self.outcomes:
            item = self.outcomes.pop(0)
        else:
            item = ProcessOutcome.success(pid=1000 + len(self.calls))
        if callable(item):
            return item(step, cwd)
        return item

    def kill(self):
        self.kills += 1

    @property
    def commands(self):
        return [step.command for step, _ in self.calls]


class BlockingOutcome:
    """Outcome that blocks run() until released, for concurrency tests."""

    def __init__(self, outcome=None):
        self.started = threading.Event()
        self.release = threading.Event()
        self.outcome = outcome or ProcessOutcome.success(pid=1)

    def __call__(self, step, cwd):
        self.started.set()
        assert self.release.wait(5), "blocking step was never released"
        return self.outcome


def make_config(**overrides) -> BuildConfig:
    data = {
        "recipes": [
            {"name": "two-step", "tools": ["first", "second"]},
            {"name": "single", "tools": ["first"]},
        ],
        "tools": [
            {"name": "first", "command": "tool-a", "args": ["%DOC%"]},
            {"name": "second", "command": "tool-b", "args": ["%DOCFILE%"]},
        ],
        "max_print_line_enabled": False,
        "auto_build_interval": 1000,
    }
    data.update(overrides)
    return BuildConfig.from_dict(data)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def root_file(tmp_path):
    path = tmp_path / "main.tex"
    path.write_text("\\documentclass{article}\n\\begin{document}\nHi\n\\end{document}\n")
    return path


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def cleaner():
    return FakeCleaner()


@pytest.fixture
def viewer():
    return FakeViewer()


@pytest.fixture
def locator():
    return FakeLocator()


@pytest.fixture
def supervisor():
    return ScriptedSupervisor()


@pytest.fixture
def make_orchestrator(tmp_path, reporter, cleaner, viewer, locator, supervisor):
    """Factory for orchestrators wired to the recording fakes."""
    from texorchestra.orchestrator import BuildOrchestrator

    created = []

    def _make(config, **kwargs):
        kwargs.setdefault("supervisor", supervisor)
        kwargs.setdefault("reporter", reporter)
        kwargs.setdefault("cleaner", cleaner)
        kwargs.setdefault("viewer", viewer)
        kwargs.setdefault("locator", locator)
        kwargs.setdefault("project", FakeProject())
        kwargs.setdefault("compiler_log", CompilerLog())
        kwargs.setdefault("is_miktex", False)
        orchestrator = BuildOrchestrator(config, **kwargs)
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        orchestrator.close()
