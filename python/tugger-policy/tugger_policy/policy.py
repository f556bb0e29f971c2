"""Ordered, first-match-wins image policy.

A policy is loaded once from YAML and never modified afterwards; reloading
means building a new Policy. Evaluation is read-only and safe to run from
many concurrent requests.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import yaml
from pydantic import ValidationError

from tugger_policy.models import PolicyDocument, PolicyLoadError, Rewrite
from tugger_policy.rules import PatternRule

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tugger_policy.rules import ImageExists

logger = logging.getLogger(__name__)


class ImagePolicy(Protocol):
    """Anything that can decide and validate image references."""

    async def decide(self, image: str) -> Rewrite: ...

    async def admits(self, image: str) -> bool: ...


class Policy:
    """An ordered list of pattern rules."""

    def __init__(
        self,
        rules: Iterable[PatternRule],
        image_exists: ImageExists | None = None,
    ) -> None:
        self._rules = tuple(rules)
        if not self._rules:
            raise PolicyLoadError("policy rules must be a non-empty list")
        self._image_exists = image_exists

    @property
    def rules(self) -> tuple[PatternRule, ...]:
        return self._rules

    @classmethod
    def from_document(
        cls,
        document: PolicyDocument,
        image_exists: ImageExists | None = None,
    ) -> Policy:
        rules = [
            PatternRule.compile(r.pattern, r.replacement, r.condition)
            for r in document.rules
        ]
        return cls(rules, image_exists=image_exists)

    @classmethod
    def from_yaml(
        cls,
        text: str | bytes,
        image_exists: ImageExists | None = None,
    ) -> Policy:
        """Parse and compile a policy from YAML text."""
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise PolicyLoadError(f"policy is not valid YAML: {exc}") from exc
        if not isinstance(raw, dict):
            raise PolicyLoadError("policy must be a mapping with a 'rules' list")
        try:
            document = PolicyDocument.model_validate(raw)
        except ValidationError as exc:
            raise PolicyLoadError(f"malformed policy document: {exc}") from exc

        policy = cls.from_document(document, image_exists=image_exists)
        logger.info("Loaded policy with %d rules", len(policy.rules))
        return policy

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        image_exists: ImageExists | None = None,
    ) -> Policy:
        try:
            text = Path(path).read_text()
        except OSError as exc:
            raise PolicyLoadError(f"cannot read policy file {path}: {exc}") from exc
        return cls.from_yaml(text, image_exists=image_exists)

    async def decide(self, image: str) -> Rewrite:
        """Rewrite ``image`` with the first rule that matches.

        Returns the image unchanged when no rule matches. Rules whose
        ``Exists`` condition fails are skipped.
        """
        missing: str | None = None
        for rule in self._rules:
            result = await rule.evaluate(image, self._image_exists)
            if result.matched:
                return Rewrite(
                    original_image=image,
                    image=result.candidate_image,
                    matched=True,
                )
            if result.missing_image is not None:
                missing = result.missing_image
        return Rewrite(original_image=image, image=image, missing_image=missing)

    async def admits(self, image: str) -> bool:
        """Check ``image`` against the rules that have no replacement."""
        for rule in self._rules:
            if await rule.accepts(image, self._image_exists):
                return True
        return False
