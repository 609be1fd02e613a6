"""
Error classes for texorchestra.

These error types separate configuration and setup problems from toolchain
failures:
- RecipeResolutionError: Recipe/tool configuration cannot produce a step list
- ScratchDirectoryError: The private scratch directory cannot be created
- BuildSetupError: Output directories cannot be prepared before the first step

Toolchain failures (non-zero exit, spawn failure, kill) are never raised.
They are reported as ProcessOutcome values and surfaced through the status
reporter and the log. Only setup-phase failures propagate to the caller.
"""


class TexOrchestraError(Exception):
    """Base exception for texorchestra."""
    pass


class ConfigError(TexOrchestraError):
    """Configuration file or value is invalid."""
    pass


class RecipeResolutionError(TexOrchestraError):
    """
    Configuration error raised while resolving a recipe.

    The orchestrator catches this at the build boundary, reports it and
    finishes the build as failed without spawning any process.
    """
    pass


class NoRecipesError(RecipeResolutionError):
    """No recipes are configured at all."""

    def __init__(self, message: str = "No recipes defined."):
        super().__init__(message)


class RecipeNotFoundError(RecipeResolutionError):
    """A recipe could not be selected by name or language."""

    def __init__(self, recipe_name: str | None, message: str | None = None):
        self.recipe_name = recipe_name
        super().__init__(message or f"Failed to resolve build recipe: {recipe_name}")


class ScratchDirectoryError(TexOrchestraError):
    """
    The scratch directory could not be created.

    Usually caused by the TEMP, TMP or TMPDIR environment variables pointing
    at a missing directory, or at a path containing quote characters which
    would break shell-quoted invocations.
    """
    pass


class BuildSetupError(TexOrchestraError):
    """Output directory preparation failed before the first step ran."""
    pass
