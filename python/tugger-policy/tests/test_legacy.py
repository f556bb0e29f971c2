"""Tests for the zero-config fallback policy."""

from __future__ import annotations

import pytest
from tugger_policy.legacy import LegacyPolicy, registry_trusted

TRUSTED = "private-registry.cluster.local"

IMAGES = [
    "nginx",
    "mysql:8.0",
    f"{TRUSTED}/nginx",
    f"{TRUSTED}/team/app:1.2.3",
    f"mirror.{TRUSTED}/redis",
    "quay.io/coreos/etcd",
    "",
]


@pytest.fixture
def legacy() -> LegacyPolicy:
    return LegacyPolicy([TRUSTED, "quay.io"], TRUSTED)


def test_registry_check_is_substring_of_image() -> None:
    # Direction: the trusted entry must appear inside the image reference.
    assert registry_trusted(["registry.local"], "registry.local/nginx") is True
    assert registry_trusted(["registry.local/nginx"], "registry.local") is False


def test_empty_entries_are_ignored() -> None:
    policy = LegacyPolicy(["", TRUSTED], TRUSTED)
    assert policy.trusted_registries == (TRUSTED,)
    assert policy.is_trusted("nginx") is False


@pytest.mark.asyncio
async def test_untrusted_image_is_prefixed(legacy: LegacyPolicy) -> None:
    rewrite = await legacy.decide("nginx")
    assert rewrite.image == f"{TRUSTED}/nginx"
    assert rewrite.changed is True


@pytest.mark.asyncio
async def test_trusted_image_unchanged(legacy: LegacyPolicy) -> None:
    rewrite = await legacy.decide(f"{TRUSTED}/nginx")
    assert rewrite.changed is False


@pytest.mark.asyncio
async def test_no_target_registry_leaves_image() -> None:
    policy = LegacyPolicy([TRUSTED], "")
    rewrite = await policy.decide("nginx")
    assert rewrite.changed is False


@pytest.mark.asyncio
async def test_admits_only_trusted(legacy: LegacyPolicy) -> None:
    assert await legacy.admits(f"{TRUSTED}/nginx") is True
    assert await legacy.admits("quay.io/coreos/etcd") is True
    assert await legacy.admits("nginx") is False


def test_as_policy_rule_shape(legacy: LegacyPolicy) -> None:
    policy = legacy.as_policy()
    assert [r.validate_only for r in policy.rules] == [True, True, False]
    assert policy.rules[-1].pattern == "(.*)"


@pytest.mark.asyncio
@pytest.mark.parametrize("image", IMAGES)
async def test_fallback_agrees_with_equivalent_policy(legacy: LegacyPolicy, image: str) -> None:
    policy = legacy.as_policy()
    fallback = await legacy.decide(image)
    configured = await policy.decide(image)
    assert (fallback.image, fallback.changed) == (configured.image, configured.changed)
    assert await legacy.admits(image) == await policy.admits(image)


@pytest.mark.asyncio
async def test_as_policy_escapes_registry_hosts() -> None:
    # "." must not act as a wildcard in the generated rule
    policy = LegacyPolicy(["a.b"], "t").as_policy()
    assert await policy.admits("axb/nginx") is False
    assert await policy.admits("a.b/nginx") is True
