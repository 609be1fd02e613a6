"""
RecipeResolver - decide which steps a build runs.

Resolution order:
1. No recipes configured -> NoRecipesError
2. Magic directives in the root file (unless a recipe was requested or
   force_recipe_usage is set)
3. Recipe by name (requested name, else recipe_default unless it is one of
   the "first"/"last_used" policies)
4. Last used recipe (policy "last_used", same language only)
5. First recipe, filtered by language for Rnw/Jnw documents
6. Tool references expanded; undefined tools are reported and skipped

The resolver never runs anything. It reads the root file for directives and
the configuration snapshot, and records the selected recipe in RecipeMemory.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from texorchestra.config import RECIPE_DEFAULT_FIRST, RECIPE_DEFAULT_LAST_USED, BuildConfig
from texorchestra.directives import read_directives
from texorchestra.errors import NoRecipesError, RecipeNotFoundError
from texorchestra.schemas import WITH_ARGS_SUFFIX, Recipe, Step

if TYPE_CHECKING:
    from texorchestra.collaborators import StatusReporter

logger = logging.getLogger(__name__)

# Recipe name filters for literate-programming dialects.
LANGUAGE_RECIPE_FILTERS = {
    "rsweave": re.compile(r"rnw|rsweave"),
    "jlweave": re.compile(r"jnw|jlweave|weave\.jl"),
}


@dataclass
class RecipeMemory:
    """
    The last selected recipe and the language it was selected for.

    Owned by one orchestrator and only touched inside its build lock.
    """
    recipe: Optional[Recipe] = None
    language_id: Optional[str] = None

    def recall(self, language_id: str) -> Optional[Recipe]:
        """Return the remembered recipe, forgetting it if the language changed."""
        if self.language_id != language_id:
            self.clear()
        return self.recipe

    def invalidate_for(self, language_id: str) -> None:
        if self.language_id != language_id:
            self.clear()

    def remember(self, recipe: Recipe, language_id: str) -> None:
        self.recipe = recipe
        self.language_id = language_id

    def clear(self) -> None:
        self.recipe = None
        self.language_id = None


class RecipeResolver:
    """
    Resolve a root file and language into an ordered list of steps.

    Usage:
        resolver = RecipeResolver(config, RecipeMemory())
        steps = resolver.resolve("/project/main.tex", "latex")
    """

    def __init__(
        self,
        config: BuildConfig,
        memory: Optional[RecipeMemory] = None,
        reporter: Optional["StatusReporter"] = None,
    ):
        """
        Initialize the resolver.

        Args:
            config: Configuration snapshot
            memory: Last-used recipe memory (a fresh one when omitted)
            reporter: Receives warnings about skipped tools
        """
        self.config = config
        self.memory = memory if memory is not None else RecipeMemory()
        self.reporter = reporter

    def resolve(
        self,
        root_file: Path | str,
        language_id: str,
        recipe_name: Optional[str] = None,
    ) -> list[Step]:
        """
        Resolve the steps for a build.

        Args:
            root_file: Root file to compile
            language_id: Language of the root file
            recipe_name: Explicitly requested recipe

        Returns:
            Cloned, unexpanded steps. May be empty if every tool was skipped.

        Raises:
            NoRecipesError: If no recipes are configured
            RecipeNotFoundError: If no recipe matches
        """
        if not self.config.recipes:
            logger.error("No recipes defined.", extra={"event": "no_recipes"})
            raise NoRecipesError()

        if recipe_name is None and not self.config.force_recipe_usage:
            steps = self._resolve_directives(root_file)
            if steps is not None:
                return steps

        recipe = self._select_recipe(language_id, recipe_name)
        self.memory.remember(recipe, language_id)
        logger.info(
            f"Resolved recipe: {recipe.name}",
            extra={"event": "recipe_resolved", "metadata": {"recipe": recipe.name, "language_id": language_id}},
        )
        return self._expand_tools(recipe)

    def _resolve_directives(self, root_file: Path | str) -> Optional[list[Step]]:
        """Steps from magic directives, or None when the file has no TeX program directive."""
        directives = read_directives(root_file)
        tex = directives.tex_step()
        if tex is None:
            return None

        if tex.args is None:
            tex = Step(
                name=tex.name + WITH_ARGS_SUFFIX,
                command=tex.command,
                args=tuple(self.config.magic_args),
            )

        bib = directives.bib_step()
        if bib is None:
            return [tex.clone()]

        if bib.args is None:
            bib = Step(
                name=bib.name + WITH_ARGS_SUFFIX,
                command=bib.command,
                args=tuple(self.config.magic_bib_args),
            )
        return [tex.clone(), bib.clone(), tex.clone(), tex.clone()]

    def _select_recipe(self, language_id: str, recipe_name: Optional[str]) -> Recipe:
        recipes = self.config.recipes
        default_name = self.config.recipe_default

        self.memory.invalidate_for(language_id)

        if not recipe_name and default_name not in (RECIPE_DEFAULT_FIRST, RECIPE_DEFAULT_LAST_USED):
            recipe_name = default_name

        if recipe_name:
            candidates = [r for r in recipes if r.name == recipe_name]
            if not candidates:
                logger.error(
                    f"Failed to resolve build recipe: {recipe_name}",
                    extra={"event": "recipe_not_found", "metadata": {"recipe": recipe_name}},
                )
                raise RecipeNotFoundError(recipe_name)
            return candidates[0]

        recipe: Optional[Recipe] = None
        if default_name == RECIPE_DEFAULT_LAST_USED:
            recipe = self.memory.recall(language_id)
        if recipe is not None:
            return recipe

        candidates = list(recipes)
        name_filter = LANGUAGE_RECIPE_FILTERS.get(language_id)
        if name_filter is not None:
            candidates = [r for r in recipes if name_filter.search(r.name.lower())]
        if not candidates:
            logger.error(
                f"Failed to resolve build recipe for language: {language_id}",
                extra={"event": "recipe_not_found", "metadata": {"language_id": language_id}},
            )
            raise RecipeNotFoundError(
                None, f"Failed to resolve build recipe for language: {language_id}"
            )
        return candidates[0]

    def _expand_tools(self, recipe: Recipe) -> list[Step]:
        steps: list[Step] = []
        for tool in recipe.tools:
            if isinstance(tool, str):
                found = self.config.get_tool(tool)
                if found is None:
                    logger.warning(
                        f"Skipping undefined tool: {tool} in {recipe.name}",
                        extra={"event": "tool_skipped", "metadata": {"tool": tool, "recipe": recipe.name}},
                    )
                    if self.reporter is not None:
                        self.reporter.warn(f'Skipping undefined tool "{tool}" in recipe "{recipe.name}."')
                    continue
                steps.append(found.clone())
            else:
                steps.append(tool.clone())
        return steps
