"""
texorchestra - LaTeX build orchestrator

Runs configurable recipes of toolchain steps (latexmk, pdflatex, bibtex, ...)
against a root file, one build at a time, with magic-comment overrides and
one automatic clean-and-retry on failure.
"""

__version__ = "0.1.0"


__all__ = [
    "BuildConfig",
    "BuildOrchestrator",
    "BuildResult",
    "BuildStatus",
    "load_config",
    "get_texorchestra_home",
]

from .config import BuildConfig, load_config, get_texorchestra_home
from .orchestrator import BuildOrchestrator
from .schemas import BuildResult, BuildStatus
