"""JSON Patch construction for mutated pods.

Operation order matters: the ops that create the annotations and labels maps
must come before any op that adds a key inside them.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel

if TYPE_CHECKING:
    from collections.abc import Iterable

MODIFIED_LABEL = "tugger-modified"


class ContainerKind(StrEnum):
    """Which pod spec list a container came from."""

    CONTAINER = "containers"
    INIT_CONTAINER = "initContainers"

    @property
    def annotation_prefix(self) -> str:
        if self is ContainerKind.INIT_CONTAINER:
            return "tugger-original-init-image-"
        return "tugger-original-image-"


class LocalObjectReference(BaseModel):
    name: str | None = None


# Closed set of value shapes used by the ops below.
PatchValue = str | dict[str, str] | list[LocalObjectReference]


class PatchOp(BaseModel):
    op: Literal["add", "replace"]
    path: str
    value: PatchValue


@dataclass(frozen=True)
class ContainerDecision:
    """Policy outcome for one container image."""

    kind: ContainerKind
    index: int
    original_image: str
    final_image: str

    @property
    def changed(self) -> bool:
        return self.final_image != self.original_image

    @property
    def image_path(self) -> str:
        return f"/spec/{self.kind.value}/{self.index}/image"

    @property
    def annotation_key(self) -> str:
        return f"{self.kind.annotation_prefix}{self.index}"


def pointer_token(key: str) -> str:
    """Escape a key for use as a JSON Pointer reference token."""
    return key.replace("~", "~0").replace("/", "~1")


class PatchBuilder:
    """Turns container decisions into an ordered JSON Patch."""

    def __init__(self, pull_secret_name: str = "") -> None:
        self.pull_secret_name = pull_secret_name

    def build(
        self,
        decisions: Iterable[ContainerDecision],
        *,
        has_annotations: bool,
        has_labels: bool,
    ) -> list[PatchOp]:
        """Build the patch; empty when no decision changed an image."""
        ops: list[PatchOp] = []
        for decision in decisions:
            if not decision.changed:
                continue
            ops.append(
                PatchOp(op="replace", path=decision.image_path, value=decision.final_image)
            )
            ops.append(
                PatchOp(
                    op="add",
                    path=f"/metadata/annotations/{pointer_token(decision.annotation_key)}",
                    value=decision.original_image,
                )
            )

        if not ops:
            return ops

        if not has_annotations:
            ops.insert(0, PatchOp(op="add", path="/metadata/annotations", value={}))
        if not has_labels:
            ops.append(PatchOp(op="add", path="/metadata/labels", value={}))

        secret = LocalObjectReference(name=self.pull_secret_name or None)
        ops.append(PatchOp(op="add", path="/spec/imagePullSecrets", value=[secret]))
        ops.append(
            PatchOp(
                op="add",
                path=f"/metadata/labels/{pointer_token(MODIFIED_LABEL)}",
                value="true",
            )
        )
        return ops


def patch_document(ops: Iterable[PatchOp]) -> list[dict[str, object]]:
    return [op.model_dump(exclude_none=True) for op in ops]


def encode_patch(ops: Iterable[PatchOp]) -> str:
    """Serialize a patch to the base64 form carried in AdmissionResponse."""
    raw = json.dumps(patch_document(ops), separators=(",", ":"))
    return base64.b64encode(raw.encode()).decode()
