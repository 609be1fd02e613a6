"""Tests for default collaborators, compiler log and logging helpers."""

import json
import logging

import pytest

from conftest import make_config
from texorchestra.collaborators import (
    ConsoleStatusReporter,
    DefaultProjectLayout,
    GlobCleaner,
    LoggingLocator,
    LoggingViewer,
)
from texorchestra.compiler_log import CompilerLog
from texorchestra.utils import StructuredFormatter, format_duration, setup_logging


class TestDefaultProjectLayout:
    def test_out_dir_defaults_to_root_dir(self, root_file):
        layout = DefaultProjectLayout(make_config())
        assert layout.resolved_out_dir(str(root_file)) == root_file.parent.resolve()

    def test_relative_out_dir(self, root_file):
        layout = DefaultProjectLayout(make_config(out_dir="build"))
        assert layout.out_dir(str(root_file)) == "build"
        assert layout.tex2pdf(str(root_file)) == str(root_file.parent.resolve() / "build" / "main.pdf")

    def test_included_files(self, root_file, tmp_path):
        extra = str(tmp_path / "intro.tex")
        layout = DefaultProjectLayout(make_config(), included=[extra, str(root_file)])
        assert layout.included_files(str(root_file)) == [str(root_file), extra]

    def test_root_dir_and_local_root(self):
        layout = DefaultProjectLayout(make_config(), root_dir="/p", local_root_file="/p/sub/main.tex")
        assert layout.root_dir == "/p"
        assert layout.local_root_file == "/p/sub/main.tex"


class TestGlobCleaner:
    def test_removes_matching_files(self, root_file, tmp_path):
        (tmp_path / "main.aux").write_text("")
        (tmp_path / "main.log").write_text("")
        (tmp_path / "main.pdf").write_text("")
        build = tmp_path / "build"
        build.mkdir()
        (build / "main.aux").write_text("")

        config = make_config(out_dir="build", clean_file_types=["*.aux", "*.log"])
        GlobCleaner(config, DefaultProjectLayout(config)).clean(str(root_file))

        assert not (tmp_path / "main.aux").exists()
        assert not (tmp_path / "main.log").exists()
        assert not (build / "main.aux").exists()
        assert (tmp_path / "main.pdf").exists()
        assert root_file.exists()

    def test_missing_out_dir_is_ignored(self, root_file, tmp_path):
        (tmp_path / "main.aux").write_text("")
        config = make_config(out_dir="does-not-exist", clean_file_types=["*.aux"])
        GlobCleaner(config, DefaultProjectLayout(config)).clean(str(root_file))
        assert not (tmp_path / "main.aux").exists()

    def test_unremovable_file_is_logged(self, root_file, tmp_path, monkeypatch, caplog):
        (tmp_path / "main.aux").write_text("")

        def _deny(path):
            raise PermissionError("denied")

        monkeypatch.setattr("texorchestra.collaborators.os.remove", _deny)
        config = make_config(clean_file_types=["*.aux"])
        with caplog.at_level(logging.WARNING, logger="texorchestra.collaborators"):
            GlobCleaner(config, DefaultProjectLayout(config)).clean(str(root_file))

        assert "Could not remove" in caplog.text
        assert (tmp_path / "main.aux").exists()


class TestConsoleStatusReporter:
    def test_prints_messages(self, capsys):
        reporter = ConsoleStatusReporter()
        reporter.building("Build: 1/2 (pdflatex)")
        reporter.succeeded("Recipe succeeded.")
        reporter.failed()
        reporter.show_error("Recipe terminated with error.", action="compiler_log")

        out = capsys.readouterr().out
        assert "Build: 1/2 (pdflatex)" in out
        assert "Recipe succeeded." in out
        assert "See the compiler output" in out


def test_logging_viewer_and_locator(caplog):
    with caplog.at_level(logging.INFO, logger="texorchestra.collaborators"):
        LoggingViewer().refresh("/p/main.tex")
        LoggingLocator().synctex("/p/main.pdf")
    assert "/p/main.tex" in caplog.text
    assert "/p/main.pdf" in caplog.text


class TestCompilerLog:
    def test_append_and_clear(self):
        log = CompilerLog()
        log("line 1\n")
        log.append("line 2\n")
        assert log.text == "line 1\nline 2\n"
        log.clear()
        assert log.text == ""

    def test_echo_prints_verbatim(self, capsys):
        CompilerLog(echo=True).append("[bold]not markup[/bold]\n")
        assert "[bold]not markup[/bold]" in capsys.readouterr().out


class TestLogging:
    def test_structured_formatter(self):
        record = logging.LogRecord("texorchestra.test", logging.INFO, __file__, 1, "built", None, None)
        record.event = "build_succeeded"
        record.metadata = {"root_file": "main.tex"}

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "built"
        assert data["event"] == "build_succeeded"
        assert data["metadata"] == {"root_file": "main.tex"}

    def test_setup_logging_writes_file(self, tmp_path):
        log_file = tmp_path / "logs" / "build.jsonl"
        logger = setup_logging(log_file=log_file, log_level="DEBUG", log_format="structured", console_output=False)
        logging.getLogger("texorchestra.orchestrator").info("hello", extra={"event": "test"})
        for handler in logger.handlers:
            handler.flush()

        line = json.loads(log_file.read_text().splitlines()[-1])
        assert line["event"] == "test"
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

    @pytest.mark.parametrize(
        "seconds,expected",
        [(5, "5s"), (83, "1m 23s"), (3725, "1h 2m 5s")],
    )
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected
