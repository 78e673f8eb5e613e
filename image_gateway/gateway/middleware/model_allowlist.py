"""
Upstream model allowlist.

Only the identifiers below may be forwarded to the provider. The set is
compiled in and changes only with a redeploy; it is deliberately not
configurable at runtime.
"""

from typing import Any, FrozenSet

ALLOWED_MODELS: FrozenSet[str] = frozenset({
    "fal-ai/gemini-25-flash-image/edit",
    "fal-ai/gemini-25-flash-image",
    "fal-ai/any-llm/vision",
})

# Fixed upstream targets used by the gateway's own endpoints
EDIT_MODEL = "fal-ai/gemini-25-flash-image/edit"
VISION_MODEL = "fal-ai/any-llm/vision"


def is_model_allowed(identifier: Any) -> bool:
    """Exact-match membership test. No trimming or case folding."""
    return isinstance(identifier, str) and identifier in ALLOWED_MODELS


def get_model_validation_error() -> str:
    """Error message listing the permitted models."""
    return (
        "Invalid model. Only the following models are allowed: "
        + ", ".join(sorted(ALLOWED_MODELS))
    )
