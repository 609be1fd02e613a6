"""
Configuration management for texorchestra.

Loads and validates config.yaml from the texorchestra home directory
($TEXORCHESTRA_HOME, default ~/.config/texorchestra).

The build engine treats configuration as a read-only snapshot: recipes and
tools are templates that are cloned before each build.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from texorchestra.errors import ConfigError
from texorchestra.schemas import Recipe, Step

RECIPE_DEFAULT_FIRST = "first"
RECIPE_DEFAULT_LAST_USED = "last_used"

AUTO_CLEAN_NEVER = "never"
AUTO_CLEAN_ON_BUILT = "on_built"
AUTO_CLEAN_ON_FAILED = "on_failed"
AUTO_CLEAN_ON_EITHER = "on_either"
AUTO_CLEAN_POLICIES = (AUTO_CLEAN_NEVER, AUTO_CLEAN_ON_BUILT, AUTO_CLEAN_ON_FAILED, AUTO_CLEAN_ON_EITHER)

VIEWERS = ("internal", "external")

_COMMON_LATEX_ARGS = ["-synctex=1", "-interaction=nonstopmode", "-file-line-error"]

DEFAULT_TOOLS: List[Dict[str, Any]] = [
    {"name": "latexmk", "command": "latexmk",
     "args": _COMMON_LATEX_ARGS + ["-pdf", "-outdir=%OUTDIR%", "%DOC%"]},
    {"name": "lualatexmk", "command": "latexmk",
     "args": _COMMON_LATEX_ARGS + ["-lualatex", "-outdir=%OUTDIR%", "%DOC%"]},
    {"name": "xelatexmk", "command": "latexmk",
     "args": _COMMON_LATEX_ARGS + ["-xelatex", "-outdir=%OUTDIR%", "%DOC%"]},
    {"name": "latexmk_rconly", "command": "latexmk", "args": ["%DOC%"]},
    {"name": "pdflatex", "command": "pdflatex", "args": _COMMON_LATEX_ARGS + ["%DOC%"]},
    {"name": "bibtex", "command": "bibtex", "args": ["%DOCFILE%"]},
    {"name": "rnw2tex", "command": "Rscript",
     "args": ["-e", "knitr::opts_knit$set(concordance = TRUE); knitr::knit('%DOCFILE_EXT%')"]},
    {"name": "jnw2tex", "command": "julia",
     "args": ["-e", "using Weave; weave(\"%DOC_EXT%\", doctype=\"tex\")"]},
    {"name": "jnw2texminted", "command": "julia",
     "args": ["-e", "using Weave; weave(\"%DOC_EXT%\", doctype=\"texminted\")"]},
    {"name": "tectonic", "command": "tectonic",
     "args": ["--synctex", "--keep-logs", "%DOC%.tex"]},
]

DEFAULT_RECIPES: List[Dict[str, Any]] = [
    {"name": "latexmk", "tools": ["latexmk"]},
    {"name": "latexmk (latexmkrc)", "tools": ["latexmk_rconly"]},
    {"name": "latexmk (lualatex)", "tools": ["lualatexmk"]},
    {"name": "latexmk (xelatex)", "tools": ["xelatexmk"]},
    {"name": "pdflatex -> bibtex -> pdflatex * 2", "tools": ["pdflatex", "bibtex", "pdflatex", "pdflatex"]},
    {"name": "Compile Rnw files", "tools": ["rnw2tex", "latexmk"]},
    {"name": "Compile Jnw files", "tools": ["jnw2tex", "latexmk"]},
    {"name": "tectonic", "tools": ["tectonic"]},
]

DEFAULT_CLEAN_FILE_TYPES = [
    "*.aux", "*.bbl", "*.blg", "*.idx", "*.ind", "*.lof", "*.lot", "*.out",
    "*.toc", "*.acn", "*.acr", "*.alg", "*.glg", "*.glo", "*.gls", "*.fls",
    "*.log", "*.fdb_latexmk", "*.snm", "*.synctex(busy)", "*.synctex.gz(busy)",
    "*.nav", "*.vrb",
]

DEFAULT_LOGGING = {"level": "INFO", "format": "pretty", "console": True, "output": None}


@dataclass
class BuildConfig:
    """
    Build configuration snapshot.

    Attributes mirror the keys of config.yaml. See DEFAULT_CONFIG for the
    values used by `texorchestra init`.
    """
    recipes: List[Recipe] = field(default_factory=list)
    tools: List[Step] = field(default_factory=list)
    recipe_default: str = RECIPE_DEFAULT_FIRST
    force_recipe_usage: bool = False
    magic_args: List[str] = field(default_factory=lambda: _COMMON_LATEX_ARGS + ["%DOC%"])
    magic_bib_args: List[str] = field(default_factory=lambda: ["%DOCFILE%"])
    docker_enabled: bool = False
    max_print_line_enabled: bool = True
    clean_and_retry_enabled: bool = True
    auto_clean_run: str = AUTO_CLEAN_NEVER
    auto_build_interval: int = 1000
    clear_log_every_step: bool = True
    out_dir: str = "%DIR%"
    viewer: str = "internal"
    synctex_after_build: bool = False
    clean_file_types: List[str] = field(default_factory=lambda: list(DEFAULT_CLEAN_FILE_TYPES))
    workspace_folder: Optional[str] = None
    env_file: Optional[str] = None
    logging: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_LOGGING))

    @classmethod
    def default(cls) -> "BuildConfig":
        """Configuration with the built-in recipes and tools."""
        return cls.from_dict(DEFAULT_CONFIG)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildConfig":
        """
        Build a configuration from parsed YAML.

        Raises:
            ConfigError: If a recipe, tool or value is invalid
        """
        data = dict(data)
        try:
            recipes = [Recipe.from_dict(r) for r in data.pop("recipes", []) or []]
            tools = [Step.from_dict(t) for t in data.pop("tools", []) or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid recipe or tool definition: {e}")

        known = set(cls.__dataclass_fields__) - {"recipes", "tools"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        logging_cfg = dict(DEFAULT_LOGGING)
        logging_cfg.update(data.pop("logging", None) or {})

        config = cls(recipes=recipes, tools=tools, logging=logging_cfg, **data)
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.recipe_default:
            raise ConfigError("recipe_default must not be empty")

        if self.auto_clean_run not in AUTO_CLEAN_POLICIES:
            raise ConfigError(
                f"auto_clean_run must be one of {', '.join(AUTO_CLEAN_POLICIES)}, "
                f"got: {self.auto_clean_run}"
            )

        if self.viewer not in VIEWERS:
            raise ConfigError(f"viewer must be one of {', '.join(VIEWERS)}, got: {self.viewer}")

        if not isinstance(self.auto_build_interval, int) or self.auto_build_interval < 0:
            raise ConfigError("auto_build_interval must be a non-negative integer (milliseconds)")

        for key in ("magic_args", "magic_bib_args", "clean_file_types"):
            value = getattr(self, key)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigError(f"{key} must be a list of strings")

    def get_tool(self, name: str) -> Optional[Step]:
        """Get the first tool with the given name."""
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    def get_recipe(self, name: str) -> Optional[Recipe]:
        """Get the first recipe with the given name."""
        for recipe in self.recipes:
            if recipe.name == name:
                return recipe
        return None

    def should_clean_after_success(self) -> bool:
        return self.auto_clean_run in (AUTO_CLEAN_ON_BUILT, AUTO_CLEAN_ON_EITHER)

    def should_clean_after_failure(self) -> bool:
        return self.auto_clean_run in (AUTO_CLEAN_ON_FAILED, AUTO_CLEAN_ON_EITHER)

    def get_log_file_path(self) -> Optional[Path]:
        output = self.logging.get("output")
        return Path(output).expanduser() if output else None

    def get_log_level(self) -> str:
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        return bool(self.logging.get("console", True))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipes": [r.to_dict() for r in self.recipes],
            "tools": [t.to_dict() for t in self.tools],
            "recipe_default": self.recipe_default,
            "force_recipe_usage": self.force_recipe_usage,
            "magic_args": list(self.magic_args),
            "magic_bib_args": list(self.magic_bib_args),
            "docker_enabled": self.docker_enabled,
            "max_print_line_enabled": self.max_print_line_enabled,
            "clean_and_retry_enabled": self.clean_and_retry_enabled,
            "auto_clean_run": self.auto_clean_run,
            "auto_build_interval": self.auto_build_interval,
            "clear_log_every_step": self.clear_log_every_step,
            "out_dir": self.out_dir,
            "viewer": self.viewer,
            "synctex_after_build": self.synctex_after_build,
            "clean_file_types": list(self.clean_file_types),
            "workspace_folder": self.workspace_folder,
            "env_file": self.env_file,
            "logging": dict(self.logging),
        }

    def __repr__(self) -> str:
        return (
            f"BuildConfig(recipes={len(self.recipes)}, tools={len(self.tools)}, "
            f"recipe_default={self.recipe_default})"
        )


DEFAULT_CONFIG: Dict[str, Any] = {
    "recipes": DEFAULT_RECIPES,
    "tools": DEFAULT_TOOLS,
    "recipe_default": RECIPE_DEFAULT_FIRST,
    "force_recipe_usage": False,
    "magic_args": _COMMON_LATEX_ARGS + ["%DOC%"],
    "magic_bib_args": ["%DOCFILE%"],
    "docker_enabled": False,
    "max_print_line_enabled": True,
    "clean_and_retry_enabled": True,
    "auto_clean_run": AUTO_CLEAN_NEVER,
    "auto_build_interval": 1000,
    "clear_log_every_step": True,
    "out_dir": "%DIR%",
    "viewer": "internal",
    "synctex_after_build": False,
    "clean_file_types": DEFAULT_CLEAN_FILE_TYPES,
    "workspace_folder": None,
    "env_file": None,
    "logging": DEFAULT_LOGGING,
}


def get_texorchestra_home() -> Path:
    """Get the texorchestra home directory ($TEXORCHESTRA_HOME or ~/.config/texorchestra)."""
    home = os.environ.get("TEXORCHESTRA_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/texorchestra").expanduser()


def load_config(config_path: Optional[Path] = None) -> BuildConfig:
    """
    Load build configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $TEXORCHESTRA_HOME/config.yaml

    Returns:
        BuildConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_texorchestra_home() / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"texorchestra config.yaml not found at {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not data:
        raise ConfigError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    config = BuildConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    return config
