"""Tests for magic comment scanning."""

import pytest

from texorchestra.directives import read_directives, scan_directives
from texorchestra.schemas import BIB_MAGIC_PROGRAM, TEX_MAGIC_PROGRAM


class TestScanDirectives:
    def test_no_directives(self):
        directives = scan_directives("\\documentclass{article}\n")
        assert directives.tex_step() is None
        assert directives.bib_step() is None

    @pytest.mark.parametrize(
        "line",
        [
            "% !TEX program = xelatex",
            "%!TeX program=xelatex",
            "% !TEX TS-program = xelatex",
            "%  !  TEX program =   xelatex",
        ],
    )
    def test_tex_program_variants(self, line):
        directives = scan_directives(f"{line}\n\\documentclass{{article}}\n")
        assert directives.tex_program == "xelatex"

    def test_directive_must_start_line(self):
        assert scan_directives("text % !TEX program = xelatex\n").tex_program is None

    def test_tex_step_without_options(self):
        step = scan_directives("% !TEX program = lualatex\n").tex_step()
        assert step.name == TEX_MAGIC_PROGRAM
        assert step.command == "lualatex"
        assert step.args is None

    def test_tex_options_kept_as_one_string(self):
        content = "% !TEX program = pdflatex\n% !TEX options = -synctex=1 -shell-escape \"%DOC%\"\n"
        step = scan_directives(content).tex_step()
        assert step.args == ('-synctex=1 -shell-escape "%DOC%"',)
        assert step.is_raw_directive

    def test_options_ignored_without_program(self):
        directives = scan_directives("% !TEX options = -shell-escape\n")
        assert directives.tex_options is None
        assert directives.tex_step() is None

    def test_bib_program(self):
        content = "% !TEX program = pdflatex\n% !BIB program = biber\n% !BIB options = --debug\n"
        directives = scan_directives(content)
        bib = directives.bib_step()
        assert bib.name == BIB_MAGIC_PROGRAM
        assert bib.command == "biber"
        assert bib.args == ("--debug",)

    def test_crlf_line_endings(self):
        content = "% !TEX program = xelatex\r\n% !TEX options = -8bit\r\n"
        directives = scan_directives(content)
        assert directives.tex_program == "xelatex"
        assert directives.tex_options == "-8bit"

    def test_first_occurrence_wins(self):
        content = "% !TEX program = xelatex\n% !TEX program = lualatex\n"
        assert scan_directives(content).tex_program == "xelatex"


def test_read_directives_from_file(tmp_path):
    root = tmp_path / "main.tex"
    root.write_text("% !TEX program = xelatex\n\\documentclass{article}\n")
    assert read_directives(root).tex_program == "xelatex"


def test_read_directives_missing_file(tmp_path):
    with pytest.raises(OSError):
        read_directives(tmp_path / "missing.tex")
