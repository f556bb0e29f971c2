"""Pattern rules: a regular expression, an optional replacement, an optional condition.

Replacement templates use ``$1``, ``${1}`` and ``${name}`` to refer to
capture groups, and ``$$`` for a literal dollar sign. A reference to a group
that does not exist or did not participate in the match expands to the empty
string. ``$1x`` refers to a group named ``1x``; write ``${1}x`` instead.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tugger_policy.models import (
    Condition,
    InvalidConditionError,
    InvalidPatternError,
    MatchResult,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    ImageExists = Callable[[str], Awaitable[bool]]

logger = logging.getLogger(__name__)

_TEMPLATE_TOKEN = re.compile(r"\$(?:(\$)|\{([A-Za-z0-9_]+)\}|([A-Za-z0-9_]+))")

# A template is a sequence of literal text and group references.
_Literal = str
_GroupRef = tuple[int | str]
_Token = _Literal | _GroupRef


def parse_template(template: str) -> tuple[_Token, ...]:
    """Split a replacement template into literals and group references."""
    tokens: list[_Token] = []
    literal: list[str] = []
    last = 0
    for m in _TEMPLATE_TOKEN.finditer(template):
        literal.append(template[last : m.start()])
        last = m.end()
        if m.group(1):
            literal.append("$")
            continue
        name = m.group(2) or m.group(3)
        if literal:
            tokens.append("".join(literal))
            literal = []
        tokens.append((int(name) if name.isdigit() else name,))
    literal.append(template[last:])
    tail = "".join(literal)
    if tail:
        tokens.append(tail)
    return tuple(t for t in tokens if t != "")


def parse_condition(value: str | None) -> Condition:
    """Map a raw condition string onto a Condition."""
    try:
        return Condition(value or "")
    except ValueError:
        raise InvalidConditionError(
            f"condition must be null/Always (default) or Exists, not {value}"
        ) from None


@dataclass(frozen=True)
class PatternRule:
    """A single compiled policy rule."""

    pattern: str
    replacement: str = ""
    condition: Condition = Condition.NONE
    regex: re.Pattern[str] = field(init=False, repr=False, compare=False)
    template: tuple[_Token, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            regex = re.compile(self.pattern)
        except re.error as exc:
            raise InvalidPatternError(f"invalid pattern {self.pattern!r}: {exc}") from exc
        object.__setattr__(self, "regex", regex)
        object.__setattr__(self, "template", parse_template(self.replacement))

    @classmethod
    def compile(
        cls,
        pattern: str,
        replacement: str | None = "",
        condition: str | Condition | None = None,
    ) -> PatternRule:
        """Compile a rule, failing on a bad pattern or unknown condition."""
        return cls(
            pattern=pattern,
            replacement=replacement or "",
            condition=parse_condition(condition),
        )

    @property
    def validate_only(self) -> bool:
        """True when the rule accepts images without rewriting them."""
        return not self.replacement

    @property
    def requires_existence(self) -> bool:
        return self.condition is Condition.EXISTS

    def matches(self, image: str) -> bool:
        return self.regex.search(image) is not None

    def rewrite(self, image: str) -> str:
        """Apply the replacement to every match in ``image``.

        An empty match directly after a previous match is not replaced, so
        ``(.*)`` rewrites ``nginx`` exactly once.
        """
        if self.validate_only:
            return image
        pieces: list[str] = []
        last = 0
        prev_end = -1
        for m in self.regex.finditer(image):
            if m.start() == m.end() == prev_end:
                continue
            pieces.append(image[last : m.start()])
            pieces.append(self._expand(m))
            last = prev_end = m.end()
        pieces.append(image[last:])
        return "".join(pieces)

    def _expand(self, m: re.Match[str]) -> str:
        out: list[str] = []
        for token in self.template:
            if isinstance(token, str):
                out.append(token)
                continue
            (ref,) = token
            if isinstance(ref, int):
                value = m.group(ref) if ref <= self.regex.groups else None
            else:
                value = m.group(ref) if ref in self.regex.groupindex else None
            out.append(value or "")
        return "".join(out)

    async def evaluate(
        self,
        image: str,
        image_exists: ImageExists | None = None,
    ) -> MatchResult:
        """Evaluate the rule for the mutate path."""
        if not self.matches(image):
            return MatchResult(matched=False, candidate_image=image)

        candidate = self.rewrite(image)
        if self.requires_existence and not await _exists(candidate, image_exists):
            logger.debug("%s does not exist in private registry", candidate)
            return MatchResult(
                matched=False,
                candidate_image=candidate,
                missing_image=candidate,
            )
        return MatchResult(matched=True, candidate_image=candidate)

    async def accepts(
        self,
        image: str,
        image_exists: ImageExists | None = None,
    ) -> bool:
        """Evaluate the rule for the validate path."""
        if not self.validate_only or not self.matches(image):
            return False
        if self.requires_existence:
            return await _exists(image, image_exists)
        return True


async def _exists(image: str, image_exists: ImageExists | None) -> bool:
    if image_exists is None:
        logger.warning("No registry configured, treating %s as missing", image)
        return False
    return await image_exists(image)
