"""Pydantic models for build configuration.

This module defines the declarative build configuration whose content
determines the image: context and Dockerfile locators, public build
arguments, tags and export targets. The staged secret is never part of it.

Models are frozen so a BuildConfig is hashable and can be used as a
dictionary key. Semantic checks (blank locators, duplicate argument
names) live in the fingerprint module so they surface as InvalidConfig.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BuildArg(BaseModel):
    """A single public build argument.

    Attributes:
        name: Argument name as seen by the Dockerfile ARG instruction.
        value: Plain string value.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(description="Build argument name")
    value: str = Field(default="", description="Build argument value")

    @field_validator("value", mode="before")
    @classmethod
    def scalar_to_str(cls, v: Any) -> Any:
        """Render YAML scalars (numbers, booleans) as their string form."""
        if isinstance(v, (int, float)):
            return str(v)
        return v


class ExportTarget(BaseModel):
    """A buildx output target.

    Accepts either ``{"type": "local", "attrs": {"dest": "out"}}`` or the
    shorthand ``{"cacheonly": {}}`` / ``{"local": {"dest": "out"}}``.

    Attributes:
        type: Exporter type (cacheonly, image, local, tar, registry, ...).
        attrs: Exporter attributes as sorted (key, value) pairs.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str = Field(description="Exporter type")
    attrs: tuple[tuple[str, str], ...] = Field(default=())

    @model_validator(mode="before")
    @classmethod
    def expand_shorthand(cls, data: Any) -> Any:
        """Expand ``{"<type>": {...}}`` into type/attrs form."""
        if isinstance(data, Mapping) and "type" not in data and len(data) == 1:
            ((kind, attrs),) = data.items()
            return {"type": kind, "attrs": attrs or {}}
        return data

    @field_validator("attrs", mode="before")
    @classmethod
    def normalize_attrs(cls, v: Any) -> Any:
        """Accept a mapping and store it as sorted string pairs."""
        if isinstance(v, Mapping):
            return tuple(sorted((str(k), str(val)) for k, val in v.items()))
        return v

    def to_output(self) -> str:
        """Render as a buildx ``--output`` value."""
        parts = [f"type={self.type}"]
        parts.extend(f"{key}={value}" for key, value in self.attrs)
        return ",".join(parts)


class BuildConfig(BaseModel):
    """Declarative inputs of one image build, excluding the secret.

    Attributes:
        context: Build context locator (directory or URL).
        dockerfile: Dockerfile locator.
        build_args: Public build arguments in declaration order.
        tags: Image tags.
        push: Push the image after building.
        exports: Output targets.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    context: str = Field(description="Build context locator")
    dockerfile: str = Field(description="Dockerfile locator")
    build_args: tuple[BuildArg, ...] = Field(default=())
    tags: tuple[str, ...] = Field(default=())
    push: bool = Field(default=False)
    exports: tuple[ExportTarget, ...] = Field(default=())

    @model_validator(mode="before")
    @classmethod
    def unwrap_locators(cls, data: Any) -> Any:
        """Accept ``{"location": ...}`` objects for context and dockerfile."""
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        for key in ("context", "dockerfile"):
            value = data.get(key)
            if isinstance(value, Mapping) and "location" in value:
                data[key] = value["location"]
        # camelCase keys as written in deployment programs
        if "buildArgs" in data and "build_args" not in data:
            data["build_args"] = data.pop("buildArgs")
        return data

    @field_validator("build_args", mode="before")
    @classmethod
    def normalize_build_args(cls, v: Any) -> Any:
        """Accept a mapping of name to value as well as a list of pairs."""
        if isinstance(v, Mapping):
            return tuple({"name": k, "value": val} for k, val in v.items())
        return v

    def public_args(self) -> dict[str, str]:
        """Return the public build arguments as an ordered mapping."""
        return {arg.name: arg.value for arg in self.build_args}

    def arg_names(self) -> list[str]:
        """Return build argument names in declaration order."""
        return [arg.name for arg in self.build_args]

    def with_build_arg(self, name: str, value: str) -> "BuildConfig":
        """Return a copy with one more public build argument appended."""
        return self.model_copy(
            update={"build_args": (*self.build_args, BuildArg(name=name, value=value))}
        )


__all__ = ["BuildArg", "BuildConfig", "ExportTarget"]
