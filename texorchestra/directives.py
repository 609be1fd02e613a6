"""
Directive scanner - per-file "magic comment" overrides.

A root file may select its own programs, bypassing recipe selection:

    % !TeX program = xelatex
    % !TeX options = -synctex=1 -interaction=nonstopmode "%DOC%"
    % !BIB program = biber
    % !BIB TS-program = biber      (TeXShop style marker, also accepted)

Each directive must start a line. The TeX keyword accepts "TeX" or "TEX",
the BIB keyword is upper case only, and "program"/"options" are
case-sensitive. Options are kept as one opaque string for the shell to parse.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from texorchestra.schemas import BIB_MAGIC_PROGRAM, TEX_MAGIC_PROGRAM, Step

logger = logging.getLogger(__name__)

TEX_PROGRAM_PATTERN = re.compile(r"^(?:%\s*!\s*T[Ee]X\s(?:TS-)?program\s*=\s*([^\s]*)$)", re.MULTILINE)
BIB_PROGRAM_PATTERN = re.compile(r"^(?:%\s*!\s*BIB\s(?:TS-)?program\s*=\s*([^\s]*)$)", re.MULTILINE)
TEX_OPTIONS_PATTERN = re.compile(r"^(?:%\s*!\s*T[Ee]X\s(?:TS-)?options\s*=\s*(.*)$)", re.MULTILINE)
BIB_OPTIONS_PATTERN = re.compile(r"^(?:%\s*!\s*BIB\s(?:TS-)?options\s*=\s*(.*)$)", re.MULTILINE)


@dataclass(frozen=True)
class MagicDirectives:
    """Directives found in a root file. None means the directive is absent."""
    tex_program: Optional[str] = None
    tex_options: Optional[str] = None
    bib_program: Optional[str] = None
    bib_options: Optional[str] = None

    def tex_step(self) -> Optional[Step]:
        """Step for the TeX program directive, args None when no options were given."""
        if not self.tex_program:
            return None
        args = (self.tex_options,) if self.tex_options is not None else None
        return Step(name=TEX_MAGIC_PROGRAM, command=self.tex_program, args=args)

    def bib_step(self) -> Optional[Step]:
        """Step for the BIB program directive, args None when no options were given."""
        if not self.bib_program:
            return None
        args = (self.bib_options,) if self.bib_options is not None else None
        return Step(name=BIB_MAGIC_PROGRAM, command=self.bib_program, args=args)


def _first_group(pattern: re.Pattern, content: str) -> Optional[str]:
    match = pattern.search(content)
    return match.group(1) if match else None


def scan_directives(content: str) -> MagicDirectives:
    """
    Scan file content for program and options directives.

    Options directives are only kept for a family whose program directive is
    present.

    Args:
        content: Raw file content

    Returns:
        MagicDirectives with the found values
    """
    content = content.replace("\r\n", "\n")

    tex_program = _first_group(TEX_PROGRAM_PATTERN, content) or None
    bib_program = _first_group(BIB_PROGRAM_PATTERN, content) or None

    tex_options = _first_group(TEX_OPTIONS_PATTERN, content) if tex_program else None
    bib_options = _first_group(BIB_OPTIONS_PATTERN, content) if bib_program else None

    return MagicDirectives(
        tex_program=tex_program,
        tex_options=tex_options,
        bib_program=bib_program,
        bib_options=bib_options,
    )


def read_directives(root_file: Path | str) -> MagicDirectives:
    """
    Read a root file and scan it for directives.

    Raises:
        OSError: If the file cannot be read
    """
    content = Path(root_file).read_text(encoding="utf-8", errors="replace")
    directives = scan_directives(content)

    if directives.tex_program:
        logger.info(f"Found TeX program by magic comment: {directives.tex_program}")
        if directives.tex_options is not None:
            logger.info(f"Found TeX options by magic comment: {directives.tex_options}")
    if directives.bib_program:
        logger.info(f"Found BIB program by magic comment: {directives.bib_program}")
        if directives.bib_options is not None:
            logger.info(f"Found BIB options by magic comment: {directives.bib_options}")

    return directives
