"""
Playground API Router.

Endpoints called by the browser playground. Each one runs the gateway
checks in a fixed order before touching the provider:

    body validation -> rate limits -> model allowlist -> URL safety -> provider

Endpoints:
- POST /api/fal - Run an allowlisted model
- POST /api/fal-edit - Edit a person image, optionally with an object image
- POST /api/fal-stream - Run an allowlisted workflow over SSE
- POST /api/fal-upload - Upload an inline image to provider storage
- POST /api/vision-analyze - Suggest a prompt for a person/object pair
- POST /api/merge-and-analyze - Merge a person/object pair, then suggest a prompt
"""

import random
import time
from typing import Any, Dict, Optional, Tuple

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from image_gateway.core.config import Settings
from image_gateway.core.dependencies import (
    get_app_settings,
    get_client_identity,
    get_gateway,
    get_image_fetcher,
    get_provider,
    parse_body,
)
from image_gateway.gateway.adapters import FalClient
from image_gateway.gateway.errors import MalformedRequest, UpstreamError, UpstreamTimeout
from image_gateway.gateway.middleware import EDIT_MODEL, VISION_MODEL, RequestTimer
from image_gateway.gateway.services import Admission, ImageFetcher, ImageFetchError, RequestGateway
from image_gateway.gateway.services.image_merge import (
    ImageMergeError,
    InvalidDataUrl,
    decode_data_url,
    extension_for,
    is_data_url,
    merge_side_by_side,
)
from image_gateway.schemas.playground import (
    FalEditRequest,
    FalEditResponse,
    FalRequest,
    FalStreamRequest,
    FalUploadRequest,
    FalUploadResponse,
    ImagePairRequest,
    PromptSuggestion,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["playground"])


# =============================================================================
# Prompt generation
# =============================================================================

VISION_LLM = "google/gemini-25-flash"
DEFAULT_SUGGESTION = "Person holding and using the object in a natural pose"

PAIR_PROMPT = (
    "You are given two images: first a person, then an object. Write one prompt "
    "for an image generator showing this person naturally holding, wearing or "
    "using the object. Describe a realistic pose and a clean composition, for "
    'example "Woman in a black outfit presenting a brown leather handbag, studio '
    'lighting". Reply with the prompt text only.'
)
PAIR_SYSTEM_PROMPT = (
    "You write detailed prompts for AI image generation. Look at the person and "
    "the object and describe the person holding, using or wearing the object in "
    "a natural, realistic way. Reply with the prompt text only, without comments "
    "or formatting."
)

MERGED_PROMPT = (
    "The LEFT half of this image shows a person and the RIGHT half shows a "
    "separate object. Write a prompt in which the person on the LEFT holds or "
    "uses the object on the RIGHT, ignoring anything the person already carries. "
    'Use the form "[person] [action] [object]", for example "This woman holding '
    'this bottle".'
)
MERGED_SYSTEM_PROMPT = (
    "Only the object on the RIGHT matters; ignore whatever the person on the LEFT "
    "already has. Answer as '[person] [action] [RIGHT object]' in six words or fewer."
)

FALLBACK_SUGGESTIONS = (
    "Person holding and showcasing the object in a natural, professional pose with good lighting",
    "Person using the object in an everyday, realistic setting with natural lighting",
    "Person wearing/carrying the object in a stylish, advertising-style pose",
    "Person demonstrating the object in a clean, studio-like environment",
    "Person posed naturally with the object, showing it in use",
)


# =============================================================================
# Helper Functions
# =============================================================================

def gated_response(
    content: Dict[str, Any],
    admission: Admission,
    status_code: int = 200,
) -> JSONResponse:
    """JSON response carrying the admission's rate limit headers."""
    return JSONResponse(content=content, status_code=status_code, headers=admission.headers())


def _file_name(label: str, mime: str) -> str:
    return f"{label}_{int(time.time() * 1000)}.{extension_for(mime)}"


async def upload_inline_image(
    gateway: RequestGateway,
    provider: FalClient,
    image: str,
    label: str,
    credentials: Optional[str] = None,
) -> str:
    """
    Upload an inline data URL to provider storage.

    Non-inline references are returned unchanged.
    """
    if not is_data_url(image):
        return image

    try:
        content, mime = decode_data_url(image)
    except InvalidDataUrl:
        raise MalformedRequest(f"Invalid {label} image data")

    try:
        return await gateway.call_upstream(
            provider.upload(content, mime, _file_name(label, mime), credentials=credentials)
        )
    except UpstreamTimeout:
        raise
    except UpstreamError as e:
        logger.warning("Inline image upload failed", label=label, status_code=e.status_code)
        raise UpstreamError(f"Failed to upload {label} image", status_code=e.status_code)


async def load_image(fetcher: ImageFetcher, reference: str) -> bytes:
    """Bytes of an inline data URL or of a remote image, under the fetch size cap."""
    if is_data_url(reference):
        content, _ = decode_data_url(reference, max_bytes=fetcher.max_bytes)
        return content
    content, _ = await fetcher.fetch(reference)
    return content


async def suggest_prompt(
    provider: FalClient,
    image_url: str,
    prompt: str,
    system_prompt: str,
) -> str:
    """Ask the vision model for a prompt describing the image."""
    result = await provider.stream(
        VISION_MODEL,
        {
            "prompt": prompt,
            "system_prompt": system_prompt,
            "priority": "latency",
            "model": VISION_LLM,
            "image_url": image_url,
        },
    )
    return result.output.strip() or DEFAULT_SUGGESTION


def fallback_suggestion(body: ImagePairRequest) -> Dict[str, Any]:
    return PromptSuggestion(
        prompt=random.choice(FALLBACK_SUGGESTIONS),
        personImageUrl=body.person_image_url,
        objectImageUrl=body.object_image_url,
        fallback=True,
    ).model_dump(exclude_none=True)


# =============================================================================
# Model Runs
# =============================================================================

@router.post("/fal")
async def run_model(
    body: FalRequest = Depends(parse_body(FalRequest)),
    identity: str = Depends(get_client_identity),
    gateway: RequestGateway = Depends(get_gateway),
    provider: FalClient = Depends(get_provider),
):
    """Run an allowlisted model and relay its output."""
    admission = gateway.admit(identity, byok=body.byok)
    gateway.validate_model(body.model)

    timer = RequestTimer().start()
    result = await gateway.call_upstream(
        provider.subscribe(body.model, body.input, credentials=body.custom_api_key)
    )
    timer.stop()
    logger.info("Model run completed", model=body.model, byok=body.byok, duration_ms=timer.total_ms)

    content: Dict[str, Any] = {"data": result.raw_data}
    limits = admission.limits()
    if limits is not None:
        content["limits"] = limits
    return gated_response(content, admission)


@router.post("/fal-edit")
async def edit_image(
    body: FalEditRequest = Depends(parse_body(FalEditRequest)),
    identity: str = Depends(get_client_identity),
    gateway: RequestGateway = Depends(get_gateway),
    provider: FalClient = Depends(get_provider),
):
    """
    Edit a person image with the fixed edit model.

    Inline images are uploaded to provider storage first so the model
    receives plain URLs.
    """
    admission = gateway.admit(identity, byok=body.byok)
    gateway.validate_model(EDIT_MODEL)

    credentials = body.custom_api_key
    image_urls = [
        await upload_inline_image(gateway, provider, body.image_url, "person", credentials)
    ]
    if body.object_image_url:
        image_urls.append(
            await upload_inline_image(gateway, provider, body.object_image_url, "object", credentials)
        )

    timer = RequestTimer().start()
    result = await gateway.call_upstream(
        provider.subscribe(
            EDIT_MODEL,
            {"prompt": body.prompt, "image_urls": image_urls, "num_images": body.num_images},
            credentials=credentials,
        )
    )
    timer.stop()

    images = result.extract_images()
    if not images:
        logger.warning("Edit returned no images", request_id=result.request_id)
        raise UpstreamError("No images generated")

    logger.info(
        "Image edit completed",
        images=len(images),
        byok=body.byok,
        duration_ms=timer.total_ms,
    )

    response = FalEditResponse(
        images=images,
        requestId=result.request_id,
        limits=admission.limits(),
    )
    return gated_response(response.model_dump(exclude_none=True), admission)


@router.post("/fal-stream")
async def stream_workflow(
    body: FalStreamRequest = Depends(parse_body(FalStreamRequest)),
    identity: str = Depends(get_client_identity),
    gateway: RequestGateway = Depends(get_gateway),
    provider: FalClient = Depends(get_provider),
):
    """Run an allowlisted workflow over SSE and return its final result."""
    admission = gateway.admit(identity, quota=False)
    gateway.validate_model(body.workflow)

    result = await gateway.call_upstream(provider.stream(body.workflow, body.input))
    logger.info("Workflow stream completed", workflow=body.workflow, events=result.event_count)

    return gated_response(result.final, admission)


@router.post("/fal-upload")
async def upload_image(
    body: FalUploadRequest = Depends(parse_body(FalUploadRequest)),
    identity: str = Depends(get_client_identity),
    gateway: RequestGateway = Depends(get_gateway),
    provider: FalClient = Depends(get_provider),
):
    """Upload an inline image to provider storage."""
    admission = gateway.admit(identity, quota=False)

    try:
        content, mime = decode_data_url(body.image)
    except InvalidDataUrl:
        raise MalformedRequest("Invalid image data")

    url = await gateway.call_upstream(provider.upload(content, mime, _file_name("upload", mime)))
    return gated_response(FalUploadResponse(url=url).model_dump(), admission)


# =============================================================================
# Prompt Suggestions
# =============================================================================

@router.post("/vision-analyze")
async def vision_analyze(
    body: ImagePairRequest = Depends(parse_body(ImagePairRequest)),
    identity: str = Depends(get_client_identity),
    gateway: RequestGateway = Depends(get_gateway),
    provider: FalClient = Depends(get_provider),
):
    """
    Suggest a prompt for a person/object pair.

    The vision model sees the person image. If the provider fails, a
    canned suggestion is returned with fallback=true.
    """
    admission = gateway.admit(identity, quota=False)
    gateway.validate_model(VISION_MODEL)

    try:
        prompt = await gateway.call_upstream(
            suggest_prompt(provider, body.person_image_url, PAIR_PROMPT, PAIR_SYSTEM_PROMPT)
        )
    except UpstreamError as e:
        logger.warning("Vision analysis failed, using fallback", error=e.message)
        return gated_response(fallback_suggestion(body), admission)

    response = PromptSuggestion(
        prompt=prompt,
        personImageUrl=body.person_image_url,
        objectImageUrl=body.object_image_url,
    )
    return gated_response(response.model_dump(exclude_none=True), admission)


async def merge_pair(
    provider: FalClient,
    fetcher: ImageFetcher,
    body: ImagePairRequest,
    max_pixels: int,
) -> Tuple[str, str]:
    """Merge the pair side by side, upload it and ask for a prompt."""
    person = await load_image(fetcher, body.person_image_url)
    obj = await load_image(fetcher, body.object_image_url)

    merged = merge_side_by_side(person, obj, max_pixels=max_pixels)
    merged_url = await provider.upload(merged, "image/jpeg", "merged-image.jpg")

    prompt = await suggest_prompt(provider, merged_url, MERGED_PROMPT, MERGED_SYSTEM_PROMPT)
    return merged_url, prompt


@router.post("/merge-and-analyze")
async def merge_and_analyze(
    body: ImagePairRequest = Depends(parse_body(ImagePairRequest)),
    identity: str = Depends(get_client_identity),
    gateway: RequestGateway = Depends(get_gateway),
    provider: FalClient = Depends(get_provider),
    fetcher: ImageFetcher = Depends(get_image_fetcher),
    settings: Settings = Depends(get_app_settings),
):
    """
    Merge a person/object pair into one image and suggest a prompt.

    Remote references are fetched by this server, so they pass the URL
    safety check before anything is downloaded. Processing or provider
    failures fall back to a canned suggestion; unsafe URLs do not.
    """
    admission = gateway.admit(identity, quota=False)
    gateway.validate_model(VISION_MODEL)
    gateway.validate_fetch_urls([body.person_image_url, body.object_image_url])

    try:
        merged_url, prompt = await gateway.call_upstream(
            merge_pair(provider, fetcher, body, settings.security.image_max_pixels)
        )
    except (UpstreamError, ImageFetchError, ImageMergeError, InvalidDataUrl) as e:
        logger.warning(
            "Merge and analyze failed, using fallback",
            error_type=type(e).__name__,
            error=str(e),
        )
        return gated_response(fallback_suggestion(body), admission)

    logger.info("Merged pair analyzed", merged_url=merged_url)
    response = PromptSuggestion(
        prompt=prompt,
        personImageUrl=body.person_image_url,
        objectImageUrl=body.object_image_url,
    )
    return gated_response(response.model_dump(exclude_none=True), admission)
