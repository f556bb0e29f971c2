"""Docker Registry HTTP API v2 client used to confirm that an image exists.

Any failure (unparseable reference, network error, auth failure, missing
manifest) reports the image as absent.
"""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DOCKER_HUB = "index.docker.io"
_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}
_DEFAULT_TIMEOUT_SECONDS = 10.0

_MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
        "application/vnd.docker.distribution.manifest.v1+prettyjws",
    ]
)

_PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(r"^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$")
_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')
_HOST_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?"
_REGISTRY_HOST = re.compile(rf"^{_HOST_LABEL}(?:\.{_HOST_LABEL})*(?::(\d{{1,5}}))?$")


@dataclass(frozen=True)
class ImageReference:
    """A parsed ``registry/repository[:tag|@digest]`` reference."""

    registry: str
    repository: str
    reference: str

    @classmethod
    def parse(cls, image: str) -> ImageReference:
        """Parse an image reference, applying Docker Hub defaults.

        Raises ValueError for references that are not well formed.
        """
        name, digest = image, ""
        if "@" in image:
            name, digest = image.split("@", 1)
            if not _DIGEST.match(digest):
                raise ValueError(f"invalid digest in {image!r}")

        tag = ""
        slash = name.rfind("/")
        colon = name.rfind(":")
        if colon > slash:
            name, tag = name[:colon], name[colon + 1 :]
            if not _TAG.match(tag):
                raise ValueError(f"invalid tag in {image!r}")

        first, _, rest = name.partition("/")
        if rest and ("." in first or ":" in first or first == "localhost"):
            registry, path = first, rest
        else:
            registry, path = DOCKER_HUB, name

        host = _REGISTRY_HOST.match(registry)
        if host is None or (host.group(1) and int(host.group(1)) > 65535):
            raise ValueError(f"invalid registry host in {image!r}")

        if registry in _DOCKER_HUB_ALIASES:
            registry = DOCKER_HUB
            if "/" not in path:
                path = f"library/{path}"

        if not path or not all(_PATH_COMPONENT.match(c) for c in path.split("/")):
            raise ValueError(f"invalid repository in {image!r}")

        return cls(registry=registry, repository=path, reference=digest or tag or "latest")

    @property
    def manifest_path(self) -> str:
        return f"/v2/{self.repository}/manifests/{self.reference}"


def _basic_auth_header(username: str, password: str) -> str:
    credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {credentials}"


def parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    """Split a WWW-Authenticate header into its scheme and parameters."""
    scheme, _, params = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(params))


class RegistryClient:
    """Async client answering "does this image exist" for remote registries."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        username: str | None = None,
        password: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        scheme: str = "https",
    ) -> None:
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._auth = (username, password) if username and password else None
        self._timeout = timeout
        self._scheme = scheme

    async def close(self) -> None:
        await self._http_client.aclose()

    async def image_exists(self, image: str) -> bool:
        """Check whether the manifest for ``image`` can be fetched."""
        try:
            ref = ImageReference.parse(image)
        except ValueError as exc:
            logger.error("Could not parse image %s: %s", image, exc)
            return False

        try:
            return await self._manifest_exists(ref)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.error("Could not fetch image %s: %s", image, exc)
            return False

    async def _manifest_exists(self, ref: ImageReference) -> bool:
        url = f"{self._scheme}://{ref.registry}{ref.manifest_path}"
        headers = {"Accept": _MANIFEST_ACCEPT}

        resp = await self._http_client.head(url, headers=headers, timeout=self._timeout)
        if resp.status_code == 401:
            auth_header = await self._authorize(ref, resp.headers.get("www-authenticate", ""))
            if auth_header is None:
                logger.error("Registry %s refused access to %s", ref.registry, ref.repository)
                return False
            headers["Authorization"] = auth_header
            resp = await self._http_client.head(url, headers=headers, timeout=self._timeout)

        if resp.is_success:
            return True
        logger.info(
            "Image %s/%s:%s not found (HTTP %s)",
            ref.registry,
            ref.repository,
            ref.reference,
            resp.status_code,
        )
        return False

    async def _authorize(self, ref: ImageReference, challenge: str) -> str | None:
        """Answer an auth challenge; returns an Authorization header value."""
        scheme, params = parse_challenge(challenge)
        if scheme == "basic":
            if self._auth is None:
                return None
            return _basic_auth_header(*self._auth)
        if scheme != "bearer" or "realm" not in params:
            return None

        query = {"scope": f"repository:{ref.repository}:pull"}
        if "service" in params:
            query["service"] = params["service"]
        resp = await self._http_client.get(
            params["realm"],
            params=query,
            auth=self._auth,
            timeout=self._timeout,
        )
        if not resp.is_success:
            logger.error("Token request to %s failed (HTTP %s)", params["realm"], resp.status_code)
            return None
        data = resp.json()
        if not isinstance(data, dict):
            logger.error("Token response from %s is not a JSON object", params["realm"])
            return None
        token = data.get("token") or data.get("access_token")
        return f"Bearer {token}" if token else None
