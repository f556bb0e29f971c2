"""Per-request decision pipeline for the mutating and validating webhooks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tugger_policy import LegacyPolicy, Policy

from tugger_api.models.admission import Container, Pod
from tugger_api.services.notifier import DedupCache, Notifier
from tugger_api.services.patch import ContainerDecision, ContainerKind, PatchBuilder, PatchOp
from tugger_api.services.registry import RegistryClient

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from tugger_policy import ImagePolicy
    from tugger_policy.rules import ImageExists

    from tugger_api.config import Settings

logger = logging.getLogger(__name__)


def namespace_whitelisted(whitelist: Iterable[str], namespace: str) -> bool:
    """True when the namespace equals or is contained in a whitelist entry.

    Note the direction: the namespace must appear inside the entry, the
    opposite of the trusted-registry check.
    """
    return any(entry == namespace or namespace in entry for entry in whitelist)


def untrusted_image_message(image: str) -> str:
    return f"Image is not being pulled from Private Registry: {image}"


@dataclass(frozen=True)
class AdmissionOutcome:
    """What the pipeline decided for one admission request."""

    allowed: bool
    patch: list[PatchOp] = field(default_factory=list)
    message: str | None = None


def _containers(pod: Pod) -> Iterator[tuple[ContainerKind, int, Container]]:
    """Containers first, then init containers, each indexed within its own list."""
    for i, container in enumerate(pod.spec.containers):
        yield ContainerKind.CONTAINER, i, container
    for i, container in enumerate(pod.spec.init_containers):
        yield ContainerKind.INIT_CONTAINER, i, container


class DecisionPipeline:
    """Applies an image policy to the containers of a pod."""

    def __init__(
        self,
        policy: ImagePolicy,
        *,
        notifier: Notifier,
        patch_builder: PatchBuilder | None = None,
        whitelisted_namespaces: Iterable[str] = (),
        image_exists: ImageExists | None = None,
        if_exists: bool = False,
        registry: RegistryClient | None = None,
    ) -> None:
        if if_exists and image_exists is None:
            raise ValueError("if_exists requires an image_exists check")
        self.policy = policy
        self.notifier = notifier
        self.patch_builder = patch_builder or PatchBuilder()
        self.whitelisted_namespaces = tuple(n for n in whitelisted_namespaces if n)
        self._image_exists = image_exists
        self._if_exists = if_exists
        self._registry = registry

    @classmethod
    def from_settings(cls, settings: Settings) -> DecisionPipeline:
        """Build the pipeline and its collaborators from configuration.

        Raises PolicyError when the configured policy file is invalid.
        """
        # Load the policy before opening any connections so a bad file leaks nothing.
        loaded = Policy.from_file(settings.policy_file) if settings.policy_file else None

        registry = RegistryClient(
            username=settings.registry_username,
            password=settings.registry_password,
            timeout=settings.registry_timeout_seconds,
        )

        policy: ImagePolicy
        if loaded is not None:
            policy = Policy(loaded.rules, image_exists=registry.image_exists)
        else:
            logger.info("No policy file configured, using trusted-registry fallback")
            policy = LegacyPolicy(settings.whitelisted_registries, settings.docker_registry_url)

        cache = None
        if settings.notification_dedup_seconds > 0:
            cache = DedupCache(ttl_seconds=settings.notification_dedup_seconds)

        notifier = Notifier(
            settings.webhook_url,
            env=settings.env,
            cache=cache,
            timeout=settings.notification_timeout_seconds,
        )
        return cls(
            policy,
            notifier=notifier,
            patch_builder=PatchBuilder(settings.registry_secret_name),
            whitelisted_namespaces=settings.whitelisted_namespaces,
            image_exists=registry.image_exists,
            if_exists=settings.if_exists,
            registry=registry,
        )

    async def close(self) -> None:
        await self.notifier.close()
        if self._registry is not None:
            await self._registry.close()

    def is_whitelisted(self, namespace: str) -> bool:
        return namespace_whitelisted(self.whitelisted_namespaces, namespace)

    async def mutate(self, namespace: str, obj: dict[str, Any] | None) -> AdmissionOutcome:
        """Rewrite non-compliant images and return the resulting patch.

        Raises pydantic.ValidationError when ``obj`` is not a valid pod.
        """
        if self.is_whitelisted(namespace):
            logger.info("Namespace %s is whitelisted", namespace)
            return AdmissionOutcome(allowed=True)

        pod = Pod.model_validate(obj or {})
        decisions = [
            await self._decide(kind, index, container)
            for kind, index, container in _containers(pod)
        ]
        patch = self.patch_builder.build(
            decisions,
            has_annotations=pod.metadata.annotations is not None,
            has_labels=pod.metadata.labels is not None,
        )
        return AdmissionOutcome(allowed=True, patch=patch)

    async def validate(self, namespace: str, obj: dict[str, Any] | None) -> AdmissionOutcome:
        """Reject the pod on the first image the policy does not admit."""
        if self.is_whitelisted(namespace):
            logger.info("Namespace %s is whitelisted", namespace)
            return AdmissionOutcome(allowed=True)

        pod = Pod.model_validate(obj or {})
        for _, _, container in _containers(pod):
            logger.info("Container image is %s", container.image)
            if not await self.policy.admits(container.image):
                message = untrusted_image_message(container.image)
                logger.info(message)
                await self.notifier.notify(message)
                return AdmissionOutcome(allowed=False, message=message)
            logger.info("Image is being pulled from Private Registry: %s", container.image)
        return AdmissionOutcome(allowed=True)

    async def _decide(
        self,
        kind: ContainerKind,
        index: int,
        container: Container,
    ) -> ContainerDecision:
        original = container.image
        logger.info("Container image is %s", original)
        unchanged = ContainerDecision(kind, index, original, original)

        rewrite = await self.policy.decide(original)
        if not rewrite.matched:
            logger.info("No policy rule matched %s, leaving it unchanged", original)
            if rewrite.missing_image is not None:
                message = f"{rewrite.missing_image} does not exist in private registry"
                logger.info(message)
                await self.notifier.notify(message)
            return unchanged
        if not rewrite.changed:
            return unchanged

        if self._if_exists and not await self._image_exists(rewrite.image):  # type: ignore[misc]
            message = (
                f"{rewrite.image} does not exist in private registry, "
                f"skipping patching of {container.name}"
            )
            logger.info(message)
            await self.notifier.notify(message)
            return unchanged

        logger.info("Changing image from %s to %s", original, rewrite.image)
        return ContainerDecision(kind, index, original, rewrite.image)
