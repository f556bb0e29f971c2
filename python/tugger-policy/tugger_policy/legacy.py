"""Built-in fallback used when no policy file is configured.

Mirrors a two-rule policy: every trusted registry host is a validate-only
rule, and everything else is prefixed with the target registry.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from tugger_policy.models import Rewrite
from tugger_policy.policy import Policy
from tugger_policy.rules import PatternRule

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


def registry_trusted(trusted_registries: Iterable[str], image: str) -> bool:
    """True when the image mentions any trusted registry.

    Note the direction: the trusted entry must be contained in the image.
    The namespace whitelist uses the opposite direction.
    """
    return any(entry == image or entry in image for entry in trusted_registries)


class LegacyPolicy:
    """Trusted-registry allow-list with a single rewrite target."""

    def __init__(self, trusted_registries: Iterable[str], target_registry: str) -> None:
        self.trusted_registries = tuple(r for r in trusted_registries if r)
        self.target_registry = target_registry

    def is_trusted(self, image: str) -> bool:
        return registry_trusted(self.trusted_registries, image)

    async def decide(self, image: str) -> Rewrite:
        if self.is_trusted(image):
            logger.info("Image is being pulled from Private Registry: %s", image)
            return Rewrite(original_image=image, image=image, matched=True)

        logger.info("Image is not being pulled from Private Registry: %s", image)
        if not self.target_registry:
            return Rewrite(original_image=image, image=image)
        return Rewrite(
            original_image=image,
            image=f"{self.target_registry}/{image}",
            matched=True,
        )

    async def admits(self, image: str) -> bool:
        return self.is_trusted(image)

    def as_policy(self) -> Policy:
        """Build the equivalent rule-based Policy."""
        rules = [PatternRule.compile(re.escape(host)) for host in self.trusted_registries]
        if self.target_registry:
            target = self.target_registry.replace("$", "$$")
            rules.append(PatternRule.compile("(.*)", f"{target}/${{1}}"))
        return Policy(rules)
