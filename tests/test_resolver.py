"""Tests for recipe resolution.

Tests cover:
- Directive precedence over recipes
- Directive + bibliography step order
- Named, default, first and last-used selection
- Language filters for Rnw/Jnw documents
- Undefined tools skipped with a warning
"""

import pytest

from conftest import RecordingReporter, make_config
from texorchestra.errors import NoRecipesError, RecipeNotFoundError
from texorchestra.resolver import RecipeMemory, RecipeResolver
from texorchestra.schemas import Recipe, Step


@pytest.fixture
def tex_file(tmp_path):
    def _write(content="\\documentclass{article}\n", name="main.tex"):
        path = tmp_path / name
        path.write_text(content)
        return path
    return _write


# =============================================================================
# DIRECTIVES
# =============================================================================


class TestDirectiveResolution:
    def test_directive_without_options_uses_magic_args(self, tex_file):
        config = make_config(magic_args=["-synctex=1", "%DOC%"])
        steps = RecipeResolver(config).resolve(tex_file("% !TEX program = xelatex\n"), "latex")
        assert len(steps) == 1
        assert steps[0].name == "TeXMagicProgramWithArgs"
        assert steps[0].command == "xelatex"
        assert steps[0].args == ("-synctex=1", "%DOC%")
        assert not steps[0].is_raw_directive

    def test_directive_with_options_is_raw(self, tex_file):
        root = tex_file("% !TEX program = xelatex\n% !TEX options = -shell-escape %DOC%\n")
        steps = RecipeResolver(make_config()).resolve(root, "latex")
        assert steps[0].name == "TeXMagicProgram"
        assert steps[0].args == ("-shell-escape %DOC%",)

    def test_tex_and_bib_directives_order(self, tex_file):
        config = make_config(magic_bib_args=["%DOCFILE%"])
        root = tex_file("% !TEX program = pdflatex\n% !BIB program = biber\n")
        steps = RecipeResolver(config).resolve(root, "latex")
        assert [s.command for s in steps] == ["pdflatex", "biber", "pdflatex", "pdflatex"]
        assert steps[1].name == "BibMagicProgramWithArgs"
        assert steps[1].args == ("%DOCFILE%",)

    def test_directive_steps_are_independent_copies(self, tex_file):
        root = tex_file("% !TEX program = pdflatex\n% !BIB program = biber\n")
        steps = RecipeResolver(make_config()).resolve(root, "latex")
        assert steps[0] == steps[2]
        assert steps[0] is not steps[2]
        assert steps[0].env is not steps[2].env

    def test_bib_directive_alone_is_ignored(self, tex_file):
        steps = RecipeResolver(make_config()).resolve(tex_file("% !BIB program = biber\n"), "latex")
        assert [s.command for s in steps] == ["tool-a", "tool-b"]

    def test_directive_ignored_with_recipe_name(self, tex_file):
        root = tex_file("% !TEX program = xelatex\n")
        steps = RecipeResolver(make_config()).resolve(root, "latex", "single")
        assert [s.command for s in steps] == ["tool-a"]

    def test_directive_ignored_with_force_recipe_usage(self, tex_file):
        root = tex_file("% !TEX program = xelatex\n")
        steps = RecipeResolver(make_config(force_recipe_usage=True)).resolve(root, "latex")
        assert [s.command for s in steps] == ["tool-a", "tool-b"]

    def test_directive_does_not_touch_memory(self, tex_file):
        memory = RecipeMemory()
        RecipeResolver(make_config(), memory).resolve(tex_file("% !TEX program = xelatex\n"), "latex")
        assert memory.recipe is None


# =============================================================================
# RECIPE SELECTION
# =============================================================================


class TestRecipeSelection:
    def test_zero_recipes(self, tex_file):
        config = make_config(recipes=[])
        with pytest.raises(NoRecipesError):
            RecipeResolver(config).resolve(tex_file(), "latex")

    def test_zero_recipes_checked_before_directives(self, tex_file):
        config = make_config(recipes=[])
        with pytest.raises(NoRecipesError):
            RecipeResolver(config).resolve(tex_file("% !TEX program = xelatex\n"), "latex")

    def test_first_recipe_by_default(self, tex_file):
        steps = RecipeResolver(make_config()).resolve(tex_file(), "latex")
        assert [s.name for s in steps] == ["first", "second"]

    def test_explicit_name(self, tex_file):
        steps = RecipeResolver(make_config()).resolve(tex_file(), "latex", "single")
        assert [s.name for s in steps] == ["first"]

    def test_unknown_name_fails(self, tex_file):
        with pytest.raises(RecipeNotFoundError) as exc_info:
            RecipeResolver(make_config()).resolve(tex_file(), "latex", "nope")
        assert exc_info.value.recipe_name == "nope"

    def test_default_recipe_name(self, tex_file):
        steps = RecipeResolver(make_config(recipe_default="single")).resolve(tex_file(), "latex")
        assert [s.name for s in steps] == ["first"]

    def test_unknown_default_name_fails(self, tex_file):
        with pytest.raises(RecipeNotFoundError):
            RecipeResolver(make_config(recipe_default="gone")).resolve(tex_file(), "latex")

    def test_last_used(self, tex_file):
        config = make_config(recipe_default="last_used")
        resolver = RecipeResolver(config)
        resolver.resolve(tex_file(), "latex", "single")
        steps = resolver.resolve(tex_file(), "latex")
        assert [s.name for s in steps] == ["first"]

    def test_last_used_invalidated_by_language(self, tex_file):
        config = make_config(
            recipe_default="last_used",
            recipes=[
                {"name": "two-step", "tools": ["first", "second"]},
                {"name": "single", "tools": ["first"]},
                {"name": "Compile Rnw files", "tools": ["second"]},
            ],
        )
        memory = RecipeMemory()
        resolver = RecipeResolver(config, memory)
        resolver.resolve(tex_file(), "latex", "single")
        assert memory.language_id == "latex"

        steps = resolver.resolve(tex_file(name="doc.Rnw"), "rsweave")
        assert [s.name for s in steps] == ["second"]
        assert memory.recipe.name == "Compile Rnw files"
        assert memory.language_id == "rsweave"

    def test_memory_not_consulted_under_first(self, tex_file):
        memory = RecipeMemory(recipe=Recipe(name="single", tools=("first",)), language_id="latex")
        steps = RecipeResolver(make_config(), memory).resolve(tex_file(), "latex")
        assert [s.name for s in steps] == ["first", "second"]
        assert memory.recipe.name == "two-step"

    @pytest.mark.parametrize(
        "language_id,expected",
        [
            ("rsweave", "Compile Rnw files"),
            ("jlweave", "Compile Jnw files"),
        ],
    )
    def test_language_filter(self, tex_file, language_id, expected):
        config = make_config(
            recipes=[
                {"name": "two-step", "tools": ["first"]},
                {"name": "Compile Rnw files", "tools": ["first"]},
                {"name": "Compile Jnw files", "tools": ["second"]},
            ]
        )
        memory = RecipeMemory()
        RecipeResolver(config, memory).resolve(tex_file(), language_id)
        assert memory.recipe.name == expected

    def test_language_filter_without_match(self, tex_file):
        with pytest.raises(RecipeNotFoundError):
            RecipeResolver(make_config()).resolve(tex_file(), "jlweave")


class TestRecipeMemory:
    def test_recall_clears_on_language_change(self):
        memory = RecipeMemory(recipe=Recipe(name="r", tools=()), language_id="latex")
        assert memory.recall("latex").name == "r"
        assert memory.recall("rsweave") is None
        assert memory.language_id is None


# =============================================================================
# TOOL EXPANSION
# =============================================================================


class TestToolExpansion:
    def test_missing_tool_skipped_with_warning(self, tex_file):
        config = make_config(recipes=[{"name": "broken", "tools": ["first", "ghost", "second"]}])
        reporter = RecordingReporter()
        steps = RecipeResolver(config, reporter=reporter).resolve(tex_file(), "latex")
        assert [s.name for s in steps] == ["first", "second"]
        assert reporter.of("warn") == [('Skipping undefined tool "ghost" in recipe "broken."',)]

    def test_all_tools_missing_gives_empty_list(self, tex_file):
        config = make_config(recipes=[{"name": "broken", "tools": ["ghost"]}])
        assert RecipeResolver(config).resolve(tex_file(), "latex") == []

    def test_inline_tools(self, tex_file):
        config = make_config(
            recipes=[{"name": "inline", "tools": [{"name": "echo", "command": "echo", "args": ["%DOC%"]}]}]
        )
        steps = RecipeResolver(config).resolve(tex_file(), "latex")
        assert steps == [Step(name="echo", command="echo", args=("%DOC%",))]

    def test_resolved_steps_do_not_alias_config(self, tex_file):
        config = make_config()
        steps = RecipeResolver(config).resolve(tex_file(), "latex")
        assert steps[0] == config.get_tool("first")
        assert steps[0] is not config.get_tool("first")
        with pytest.raises(TypeError):
            steps[0].env["LEAK"] = "1"
        assert config.get_tool("first").env == {}
