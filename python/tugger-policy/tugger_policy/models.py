"""Policy document and evaluation result models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, field_validator


class Condition(StrEnum):
    """Qualifier attached to a pattern rule."""

    NONE = ""
    ALWAYS = "Always"
    EXISTS = "Exists"


class PolicyError(Exception):
    """Base class for policy configuration errors."""


class PolicyLoadError(PolicyError):
    """The policy document could not be read or parsed."""


class InvalidPatternError(PolicyError):
    """A rule pattern is not a valid regular expression."""


class InvalidConditionError(PolicyError):
    """A rule condition is not one of the recognized values."""


class RuleConfig(BaseModel):
    """One entry of the ``rules`` list in a policy document."""

    pattern: str
    replacement: str = ""
    condition: str = ""

    @field_validator("replacement", "condition", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return "" if value is None else value


class PolicyDocument(BaseModel):
    """Top-level policy file layout."""

    rules: list[RuleConfig] = []


@dataclass(frozen=True)
class MatchResult:
    """Outcome of evaluating a single rule against an image."""

    matched: bool
    candidate_image: str
    missing_image: str | None = None


@dataclass(frozen=True)
class Rewrite:
    """Outcome of running an image through the mutate path of a policy.

    ``missing_image`` is set when no rule matched and at least one
    ``Exists`` rule was skipped because its target was absent.
    """

    original_image: str
    image: str
    matched: bool = False
    missing_image: str | None = None

    @property
    def changed(self) -> bool:
        return self.image != self.original_image
