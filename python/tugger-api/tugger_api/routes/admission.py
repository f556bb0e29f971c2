"""Admission webhook endpoints — /mutate and /validate."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tugger_api.models.admission import AdmissionRequest, AdmissionResponse, AdmissionReview
from tugger_api.services.patch import encode_patch
from tugger_api.services.pipeline import DecisionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admission"])


def get_pipeline(request: Request) -> DecisionPipeline:
    """Return the pipeline built at application startup."""
    pipeline: DecisionPipeline | None = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Decision pipeline is not initialized",
        )
    return pipeline


async def _read_review(request: Request) -> tuple[AdmissionReview, AdmissionRequest]:
    body = await request.body()
    logger.debug("Request body: %s", body)
    try:
        review = AdmissionReview.model_validate_json(body)
    except ValidationError as exc:
        logger.error("Could not parse request: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Could not parse AdmissionReview",
        ) from exc
    if review.request is None:
        logger.error("AdmissionReview has no request: %s", body)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="AdmissionReview has no request",
        )
    logger.debug("AdmissionReview namespace is %s", review.request.namespace)
    return review, review.request


def _bad_pod(exc: ValidationError) -> HTTPException:
    logger.error("Could not unmarshal pod spec: %s", exc)
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Could not parse pod object",
    )


def _reply(review: AdmissionReview, response: AdmissionResponse) -> JSONResponse:
    reply = AdmissionReview(
        api_version=review.api_version,
        kind=review.kind,
        response=response,
    )
    try:
        content = reply.to_wire()
    except (TypeError, ValueError) as exc:
        logger.error("Could not marshal response: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not marshal response",
        ) from exc
    return JSONResponse(content=content)


@router.post("/mutate")
async def mutate(
    request: Request,
    pipeline: DecisionPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """Rewrite untrusted container images via a JSON Patch."""
    logger.info("Serving request: %s", request.url.path)
    review, req = await _read_review(request)

    try:
        outcome = await pipeline.mutate(req.namespace, req.object)
    except ValidationError as exc:
        raise _bad_pod(exc) from exc

    response = AdmissionResponse(uid=req.uid, allowed=outcome.allowed)
    if outcome.patch:
        try:
            response.patch = encode_patch(outcome.patch)
        except (TypeError, ValueError) as exc:
            logger.error("Could not marshal patches: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Could not marshal patches",
            ) from exc
        response.patch_type = "JSONPatch"
    return _reply(review, response)


@router.post("/validate")
async def validate(
    request: Request,
    pipeline: DecisionPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """Reject pods that pull images from untrusted registries."""
    logger.info("Serving request: %s", request.url.path)
    review, req = await _read_review(request)

    try:
        outcome = await pipeline.validate(req.namespace, req.object)
    except ValidationError as exc:
        raise _bad_pod(exc) from exc

    if outcome.allowed:
        response = AdmissionResponse(uid=req.uid, allowed=True)
    else:
        response = AdmissionResponse.invalid(req.uid, outcome.message or "")
    return _reply(review, response)
