"""AdmissionReview envelope and the subset of the Pod schema Tugger reads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── Pod ──────────────────────────────────────────────────────────


class Container(_CamelModel):
    name: str = ""
    image: str = ""


class PodSpec(_CamelModel):
    containers: list[Container] = []
    init_containers: list[Container] = Field(default=[], alias="initContainers")


class ObjectMeta(_CamelModel):
    name: str = ""
    namespace: str = ""
    labels: dict[str, str] | None = None
    annotations: dict[str, str] | None = None


class Pod(_CamelModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: PodSpec = Field(default_factory=PodSpec)


# ── Envelope ─────────────────────────────────────────────────────


class AdmissionRequest(_CamelModel):
    uid: str = ""
    namespace: str = ""
    # Kept raw; it is only parsed as a Pod when the namespace is not whitelisted.
    object: dict[str, Any] | None = None


class StatusCause(_CamelModel):
    message: str


class StatusDetails(_CamelModel):
    causes: list[StatusCause] = []


class Status(_CamelModel):
    reason: str = "Invalid"
    details: StatusDetails = Field(default_factory=StatusDetails)


class AdmissionResponse(_CamelModel):
    uid: str = ""
    allowed: bool
    patch: str | None = None
    patch_type: str | None = Field(default=None, alias="patchType")
    status: Status | None = None

    @classmethod
    def invalid(cls, uid: str, message: str) -> AdmissionResponse:
        return cls(
            uid=uid,
            allowed=False,
            status=Status(details=StatusDetails(causes=[StatusCause(message=message)])),
        )


class AdmissionReview(_CamelModel):
    api_version: str = Field(default="admission.k8s.io/v1", alias="apiVersion")
    kind: str = "AdmissionReview"
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
