"""
Step and Recipe schemas - the configured build toolchain.

A Step is one external program invocation. A Recipe is a named, ordered list
of steps, given either as references to named tools or as inline steps.

Both are read-only values. Steps coming from configuration are templates:
the resolver clones them before the materializer expands placeholders, so a
stored recipe is never modified by a build.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

# Step names used for steps created from magic directives.
TEX_MAGIC_PROGRAM = "TeXMagicProgram"
BIB_MAGIC_PROGRAM = "BibMagicProgram"
WITH_ARGS_SUFFIX = "WithArgs"

RAW_DIRECTIVE_STEP_NAMES = frozenset({TEX_MAGIC_PROGRAM, BIB_MAGIC_PROGRAM})


@dataclass(frozen=True)
class Step:
    """
    A single external invocation.

    Attributes:
        name: Display name, used in logs and progress labels
        command: Executable to run
        args: Ordered arguments. None means no explicit arguments were given,
            which is distinct from an empty tuple.
        env: Environment variable overrides for this step, read-only
    """
    name: str
    command: str
    args: Optional[tuple[str, ...]] = None
    env: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Step name is required")
        if not self.command:
            raise ValueError(f"Step '{self.name}': command is required")
        if self.args is not None and not isinstance(self.args, tuple):
            object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def is_raw_directive(self) -> bool:
        """True when options came from a directive as one opaque string."""
        return self.name in RAW_DIRECTIVE_STEP_NAMES

    def arg_list(self) -> list[str]:
        """Arguments as a fresh list (empty when none were given)."""
        return list(self.args) if self.args else []

    def clone(self) -> "Step":
        """Return an independent copy, sharing no mutable state."""
        return Step(
            name=self.name,
            command=self.command,
            args=tuple(self.args) if self.args is not None else None,
            env=dict(self.env),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the configuration form."""
        result: dict[str, Any] = {"name": self.name, "command": self.command}
        if self.args is not None:
            result["args"] = list(self.args)
        if self.env:
            result["env"] = dict(self.env)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Step":
        """Deserialize from the configuration form."""
        args = data.get("args")
        env = data.get("env") or {}
        return cls(
            name=data["name"],
            command=data["command"],
            args=tuple(str(a) for a in args) if args is not None else None,
            env={str(k): str(v) for k, v in env.items()},
        )


ToolRef = Union[str, Step]


@dataclass(frozen=True)
class Recipe:
    """
    A named, ordered sequence of tools.

    Attributes:
        name: Recipe name, used for lookup and as progress label
        tools: Tool names (looked up in the configured tools) or inline steps
    """
    name: str
    tools: tuple[ToolRef, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Recipe name is required")
        if not isinstance(self.tools, tuple):
            object.__setattr__(self, "tools", tuple(self.tools))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "tools": [t if isinstance(t, str) else t.to_dict() for t in self.tools],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recipe":
        tools: list[ToolRef] = []
        for tool in data.get("tools", []):
            if isinstance(tool, str):
                tools.append(tool)
            else:
                tools.append(Step.from_dict(tool))
        return cls(name=data["name"], tools=tuple(tools))
