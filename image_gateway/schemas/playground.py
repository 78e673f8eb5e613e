"""
Playground request and response schemas.

Request bodies use the field names the browser client sends, including
camelCase names such as customApiKey and personImageUrl.
"""

from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Request Schemas
# ============================================================================


class PlaygroundRequest(BaseModel):
    """Base for playground request bodies."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Returned to the caller when the body fails validation
    missing_fields_message: ClassVar[str] = "Invalid request body"


class CredentialedRequest(PlaygroundRequest):
    """A request that may carry the caller's own upstream key."""

    custom_api_key: Optional[str] = Field(None, alias="customApiKey", repr=False)

    @field_validator("custom_api_key")
    @classmethod
    def blank_key_is_none(cls, v: Optional[str]) -> Optional[str]:
        """An empty key means the caller did not bring one."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @property
    def byok(self) -> bool:
        return self.custom_api_key is not None


class FalRequest(CredentialedRequest):
    """Generic model run."""

    missing_fields_message: ClassVar[str] = "Missing model or input"

    model: str = Field(min_length=1)
    input: Dict[str, Any]


class FalEditRequest(CredentialedRequest):
    """Image edit with a person image and an optional object image."""

    missing_fields_message: ClassVar[str] = "Missing required fields: prompt and image_url"

    prompt: str = Field(min_length=1)
    image_url: str = Field(min_length=1)
    object_image_url: Optional[str] = None
    num_images: int = Field(default=1, ge=1, le=4)


class FalStreamRequest(PlaygroundRequest):
    """Streamed workflow run."""

    missing_fields_message: ClassVar[str] = "Missing workflow or input"

    workflow: str = Field(min_length=1)
    input: Dict[str, Any]


class FalUploadRequest(PlaygroundRequest):
    """Upload of an inline image to provider storage."""

    missing_fields_message: ClassVar[str] = "No image provided"

    image: str = Field(min_length=1)


class ImagePairRequest(PlaygroundRequest):
    """A person image and an object image for prompt generation."""

    missing_fields_message: ClassVar[str] = "Missing required fields: personImageUrl and objectImageUrl"

    person_image_url: str = Field(min_length=1, alias="personImageUrl")
    object_image_url: str = Field(min_length=1, alias="objectImageUrl")


# ============================================================================
# Response Schemas
# ============================================================================


class HorizonLimit(BaseModel):
    """Remaining quota for one horizon."""

    remaining: int
    resetInMs: int = 0


class FalEditResponse(BaseModel):
    """Result of an image edit."""

    success: bool = True
    images: List[Dict[str, Any]]
    requestId: Optional[str] = None
    limits: Optional[Dict[str, HorizonLimit]] = None


class FalUploadResponse(BaseModel):
    """Public URL of an uploaded file."""

    success: bool = True
    url: str


class PromptSuggestion(BaseModel):
    """A generated (or fallback) prompt for the object-holding workflow."""

    success: bool = True
    prompt: str
    personImageUrl: str
    objectImageUrl: str
    fallback: Optional[bool] = None
