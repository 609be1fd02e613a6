"""
CLI interface for the texorchestra build engine.

Provides commands to build LaTeX documents with configured recipes, inspect
the steps a build would run, run an external build command and clean
auxiliary files.

Recipes and tools are read from $TEXORCHESTRA_HOME/config.yaml (see
`texorchestra init`). Without a config file the built-in recipes are used.
"""

import json
import tempfile
import threading
from datetime import datetime
from pathlib import Path

import click

from texorchestra import __version__
from texorchestra.utils import print_banner, print_error, print_success, print_warning


@click.group()
@click.version_option(version=__version__, prog_name="texorchestra")
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to config.yaml (default: $TEXORCHESTRA_HOME/config.yaml)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, config_path: Path | None, verbose: bool):
    """
    texorchestra - LaTeX build orchestrator.

    Compile documents by running recipes of toolchain steps, one build at a time.
    """
    from texorchestra.config import BuildConfig, load_config
    from texorchestra.utils import setup_logging

    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except FileNotFoundError as e:
        if config_path is not None:
            ctx.obj["config_error"] = str(e)
            return
        # No user config yet: built-in recipes and tools
        config = BuildConfig.default()
    except Exception as e:
        # init must still work with a broken config
        ctx.obj["config_error"] = str(e)
        return

    ctx.obj["config"] = config
    setup_logging(
        log_file=config.get_log_file_path(),
        log_level="DEBUG" if verbose else config.get_log_level(),
        log_format=config.get_log_format(),
        console_output=config.should_log_to_console(),
    )


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'texorchestra init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


@main.command("build")
@click.argument("root_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--recipe", "recipe_name", help="Recipe to use (default: directives or recipe_default)")
@click.option("--language-id", default="latex", show_default=True, help="Language of the root file")
@click.option("--quiet", is_flag=True, help="Do not echo compiler output")
@click.pass_context
def build(ctx, root_file: Path, recipe_name: str | None, language_id: str, quiet: bool):
    """
    Build ROOT_FILE.

    Ctrl-C kills the running toolchain process.

    Examples:

        texorchestra build thesis.tex

        texorchestra build thesis.tex --recipe "pdflatex -> bibtex -> pdflatex * 2"

        texorchestra build analysis.Rnw --language-id rsweave
    """
    from texorchestra.compiler_log import CompilerLog
    from texorchestra.errors import TexOrchestraError
    from texorchestra.orchestrator import BuildOrchestrator
    from texorchestra.utils import format_duration

    config = _require_config(ctx)
    root_file = root_file.resolve()

    try:
        orchestrator = BuildOrchestrator(config, compiler_log=CompilerLog(echo=not quiet))
    except TexOrchestraError as e:
        print_error(str(e))
        raise SystemExit(1)

    print_banner(f"Building {root_file.name}")
    outcome: dict = {}

    def _worker():
        try:
            outcome["result"] = orchestrator.build(root_file, language_id, recipe_name)
        except TexOrchestraError as e:
            outcome["error"] = e

    worker = threading.Thread(target=_worker, name="texorchestra-build", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.1)
    except KeyboardInterrupt:
        print_warning("Interrupted, killing the build process...")
        orchestrator.kill()
        worker.join()
    finally:
        orchestrator.close()

    if "error" in outcome:
        print_error(str(outcome["error"]))
        raise SystemExit(1)

    result = outcome["result"]
    if not result.success:
        print_error(f"Build {result.status.value}: {result.error}")
        raise SystemExit(1)

    elapsed = (datetime.now() - result.attempt.started_at).total_seconds()
    print_success(f"Built {root_file.name} in {format_duration(elapsed)}")


@main.command("steps")
@click.argument("root_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--recipe", "recipe_name", help="Recipe to resolve")
@click.option("--language-id", default="latex", show_default=True, help="Language of the root file")
@click.option("--json", "as_json", is_flag=True, help="Output steps as JSON")
@click.pass_context
def steps(ctx, root_file: Path, recipe_name: str | None, language_id: str, as_json: bool):
    """Show the steps a build of ROOT_FILE would run, without running them."""
    from texorchestra.collaborators import ConsoleStatusReporter
    from texorchestra.errors import RecipeResolutionError
    from texorchestra.materializer import StepMaterializer, detect_miktex
    from texorchestra.resolver import RecipeResolver

    config = _require_config(ctx)
    root_file = root_file.resolve()

    resolver = RecipeResolver(config, reporter=ConsoleStatusReporter())
    try:
        templates = resolver.resolve(root_file, language_id, recipe_name)
    except RecipeResolutionError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    with tempfile.TemporaryDirectory(prefix="texorchestra-") as scratch_dir:
        materializer = StepMaterializer(config, scratch_dir.replace("\\", "/"), is_miktex=detect_miktex())
        resolved = materializer.materialize(templates, str(root_file))

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in resolved], indent=2))
        return

    if not resolved:
        click.echo("No steps.")
        return
    for i, step in enumerate(resolved, 1):
        click.echo(f"{i}. {step.name}: {step.command} {' '.join(step.arg_list())}".rstrip())
        for key, value in step.env.items():
            click.echo(f"     {key}={value}")


@main.command("recipes")
@click.pass_context
def recipes(ctx):
    """List configured recipes and tools."""
    from texorchestra.config import RECIPE_DEFAULT_FIRST

    config = _require_config(ctx)

    if not config.recipes:
        click.echo("No recipes defined.")
    else:
        default_name = config.recipe_default
        click.echo("Recipes:")
        for i, recipe in enumerate(config.recipes):
            is_default = recipe.name == default_name or (i == 0 and default_name == RECIPE_DEFAULT_FIRST)
            marker = "*" if is_default else " "
            tools = ", ".join(t if isinstance(t, str) else f"<{t.name}>" for t in recipe.tools)
            click.echo(f" {marker} {recipe.name}: {tools}")

    click.echo()
    click.echo("Tools:")
    for tool in config.tools:
        click.echo(f"   {tool.name}: {tool.command} {' '.join(tool.arg_list())}".rstrip())


@main.command(
    "exec",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.option("--cwd", type=click.Path(exists=True, file_okay=False), help="Working directory")
@click.option(
    "--root-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Root file used to expand placeholders in ARGS",
)
@click.argument("command")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def exec_command(ctx, cwd: str | None, root_file: Path | None, command: str, args: tuple[str, ...]):
    """
    Build with an external COMMAND instead of a recipe.

    Examples:

        texorchestra exec make pdf

        texorchestra exec --root-file main.tex latexmk -pdf %DOC%
    """
    from texorchestra.compiler_log import CompilerLog
    from texorchestra.errors import TexOrchestraError
    from texorchestra.orchestrator import BuildOrchestrator

    config = _require_config(ctx)

    try:
        orchestrator = BuildOrchestrator(config, compiler_log=CompilerLog(echo=True))
    except TexOrchestraError as e:
        print_error(str(e))
        raise SystemExit(1)

    try:
        result = orchestrator.build_with_external_command(
            command,
            args,
            cwd=cwd,
            root_file=str(root_file.resolve()) if root_file else None,
        )
    finally:
        orchestrator.close()

    if not result.success:
        raise SystemExit(1)


@main.command("clean")
@click.argument("root_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def clean(ctx, root_file: Path):
    """Remove auxiliary files of ROOT_FILE (clean_file_types)."""
    from texorchestra.collaborators import DefaultProjectLayout, GlobCleaner

    config = _require_config(ctx)
    GlobCleaner(config, DefaultProjectLayout(config)).clean(str(root_file.resolve()))
    click.echo(f"Cleaned auxiliary files of {root_file.name}")


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize texorchestra configuration."""
    from texorchestra.config import DEFAULT_CONFIG, get_texorchestra_home
    import yaml

    home = get_texorchestra_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = dict(DEFAULT_CONFIG)
    default_cfg["env_file"] = str(home / ".env")
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# TEXORCHESTRA_DOCKER_IMAGE=tianon/latex\n")

    click.echo(f"Initialized texorchestra config at {cfg_path}")


if __name__ == "__main__":
    main()
