"""Unit tests for the upstream model allowlist."""

import pytest

from image_gateway.gateway.middleware.model_allowlist import (
    ALLOWED_MODELS,
    EDIT_MODEL,
    VISION_MODEL,
    get_model_validation_error,
    is_model_allowed,
)


@pytest.mark.parametrize("model", sorted(ALLOWED_MODELS))
def test_listed_models_are_allowed(model):
    assert is_model_allowed(model)


@pytest.mark.parametrize(
    "model",
    [
        "fal-ai/gemini-25-flash-image ",
        " fal-ai/gemini-25-flash-image",
        "FAL-AI/GEMINI-25-FLASH-IMAGE",
        "fal-ai/gemini-25-flash-image/edit/../../flux",
        "fal-ai/gemini-25-flash",
        "fal-ai/flux/dev",
        "",
    ],
)
def test_near_misses_are_rejected(model):
    assert not is_model_allowed(model)


@pytest.mark.parametrize("value", [None, 42, ["fal-ai/gemini-25-flash-image"]])
def test_non_strings_are_rejected(value):
    assert not is_model_allowed(value)


def test_verdict_is_stable_across_calls():
    for model in ("fal-ai/any-llm/vision", "fal-ai/flux/dev"):
        assert is_model_allowed(model) == is_model_allowed(model)


def test_fixed_targets_are_allowlisted():
    assert EDIT_MODEL in ALLOWED_MODELS
    assert VISION_MODEL in ALLOWED_MODELS


def test_allowlist_is_immutable():
    with pytest.raises(AttributeError):
        ALLOWED_MODELS.add("fal-ai/flux/dev")


def test_validation_error_lists_every_model():
    message = get_model_validation_error()
    for model in ALLOWED_MODELS:
        assert model in message
