"""Tests for the registry existence probe (mocked HTTP)."""

from __future__ import annotations

import httpx
import pytest
from tugger_api.services.registry import ImageReference, RegistryClient, parse_challenge
from tugger_policy import Policy

HUB_CHALLENGE = (
    'Bearer realm="https://auth.docker.io/token",service="registry.docker.io"'
)


def _hub_handler(existing: set[str]):
    """Docker Hub lookalike: token auth, then manifests by path."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.docker.io":
            assert request.url.params["service"] == "registry.docker.io"
            return httpx.Response(200, json={"token": "tkn"})
        if request.headers.get("authorization") != "Bearer tkn":
            return httpx.Response(401, headers={"www-authenticate": HUB_CHALLENGE})
        if request.url.path in existing:
            return httpx.Response(200)
        return httpx.Response(404)

    return handler


@pytest.fixture
def hub() -> RegistryClient:
    transport = httpx.MockTransport(
        _hub_handler({"/v2/library/nginx/manifests/latest"})
    )
    return RegistryClient(httpx.AsyncClient(transport=transport))


# ── Reference parsing ────────────────────────────────────────────


def test_parse_official_image() -> None:
    ref = ImageReference.parse("nginx")
    assert ref == ImageReference("index.docker.io", "library/nginx", "latest")


def test_parse_user_image_with_tag() -> None:
    ref = ImageReference.parse("jainishshah17/nginx:notexist")
    assert ref == ImageReference("index.docker.io", "jainishshah17/nginx", "notexist")
    assert ref.manifest_path == "/v2/jainishshah17/nginx/manifests/notexist"


def test_parse_private_registry_with_port() -> None:
    ref = ImageReference.parse("registry.local:5000/team/app:1.2")
    assert ref == ImageReference("registry.local:5000", "team/app", "1.2")


def test_parse_localhost() -> None:
    assert ImageReference.parse("localhost/app").registry == "localhost"


def test_parse_digest() -> None:
    digest = "sha256:" + "a" * 64
    ref = ImageReference.parse(f"quay.io/coreos/etcd@{digest}")
    assert ref.reference == digest


def test_parse_docker_io_alias() -> None:
    ref = ImageReference.parse("docker.io/redis")
    assert ref == ImageReference("index.docker.io", "library/redis", "latest")


@pytest.mark.parametrize(
    "image",
    [
        "doesn't parse",
        "",
        "UPPER/case",
        "nginx@sha256:xyz",
        "nginx:bad tag",
        "reg.example.com:abc/foo",
    ],
)
def test_parse_rejects_invalid(image: str) -> None:
    with pytest.raises(ValueError):
        ImageReference.parse(image)


def test_parse_challenge() -> None:
    scheme, params = parse_challenge(HUB_CHALLENGE)
    assert scheme == "bearer"
    assert params == {"realm": "https://auth.docker.io/token", "service": "registry.docker.io"}


# ── Existence checks ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_image_exists_with_token_auth(hub: RegistryClient) -> None:
    assert await hub.image_exists("nginx") is True


@pytest.mark.asyncio
async def test_image_missing(hub: RegistryClient) -> None:
    assert await hub.image_exists("jainishshah17/nginx:notexist") is False


@pytest.mark.asyncio
async def test_unparseable_image_does_not_exist(hub: RegistryClient) -> None:
    assert await hub.image_exists("doesn't parse") is False


@pytest.mark.asyncio
async def test_connection_error_does_not_exist() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = RegistryClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    assert await client.image_exists("nginx") is False


@pytest.mark.asyncio
async def test_timeout_does_not_exist() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = RegistryClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    assert await client.image_exists("nginx") is False


@pytest.mark.asyncio
async def test_anonymous_registry() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200)

    client = RegistryClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    assert await client.image_exists("registry.local/app:1.0") is True
    assert seen == ["https://registry.local/v2/app/manifests/1.0"]


@pytest.mark.asyncio
async def test_basic_auth_challenge_with_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.headers.get("authorization", "").startswith("Basic "):
            return httpx.Response(200)
        return httpx.Response(401, headers={"www-authenticate": 'Basic realm="registry"'})

    transport = httpx.MockTransport(handler)
    client = RegistryClient(
        httpx.AsyncClient(transport=transport), username="user", password="secret"
    )
    assert await client.image_exists("registry.local/app") is True


@pytest.mark.asyncio
async def test_basic_auth_challenge_without_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, headers={"www-authenticate": 'Basic realm="registry"'})

    client = RegistryClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    assert await client.image_exists("registry.local/app") is False


@pytest.mark.asyncio
async def test_token_endpoint_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.docker.io":
            return httpx.Response(403)
        return httpx.Response(401, headers={"www-authenticate": HUB_CHALLENGE})

    client = RegistryClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    assert await client.image_exists("nginx") is False


@pytest.mark.asyncio
@pytest.mark.parametrize("token_body", [["tkn"], "tkn", None])
async def test_token_response_not_an_object(token_body: object) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.docker.io":
            return httpx.Response(200, json=token_body)
        return httpx.Response(401, headers={"www-authenticate": HUB_CHALLENGE})

    client = RegistryClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    assert await client.image_exists("nginx") is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "image",
    ["reg.example.com:abc/foo", "reg.example.com:99999/foo", "reg_example.com/foo"],
)
async def test_invalid_registry_host_does_not_exist(image: str) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    client = RegistryClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    assert await client.image_exists(image) is False
    assert requests == []


@pytest.mark.asyncio
async def test_exists_policy_rejects_unreachable_host_reference() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    client = RegistryClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    policy = Policy.from_yaml(
        'rules:\n- pattern: "(.*)"\n  condition: Exists\n',
        image_exists=client.image_exists,
    )
    assert await policy.admits("reg.example.com:abc/foo") is False
