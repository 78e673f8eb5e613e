"""
Upstream result models.

fal.ai returns loosely shaped payloads: depending on the model, images
arrive as a list under "images", a single entry under "image", and the
whole thing may or may not be wrapped in a "data" envelope. These models
describe every accepted shape explicitly and define one extraction order.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class FalImage(BaseModel):
    """A generated image reference."""

    model_config = ConfigDict(extra="allow")

    url: str
    content_type: Optional[str] = None
    file_name: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


ImageEntry = Union[FalImage, str, Dict[str, Any]]
ImageField = Union[List[ImageEntry], ImageEntry]


class FalPayload(BaseModel):
    """Model output. Unknown fields are kept for passthrough."""

    model_config = ConfigDict(extra="allow")

    images: Optional[ImageField] = None
    image: Optional[ImageField] = None
    output: Optional[str] = None


class FalResult(BaseModel):
    """
    Result of a queued/synchronous model call.

    Images are extracted from the first field present, in this order:
    data.images, data.image, images, image.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    data: Optional[FalPayload] = None
    images: Optional[ImageField] = None
    image: Optional[ImageField] = None
    request_id: Optional[str] = Field(default=None, alias="requestId")

    _raw_data: Dict[str, Any] = PrivateAttr(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], request_id: Optional[str] = None) -> "FalResult":
        """Wrap a raw provider payload in the data envelope."""
        result = cls(data=FalPayload.model_validate(payload), request_id=request_id)
        result._raw_data = payload
        return result

    @property
    def raw_data(self) -> Dict[str, Any]:
        """The provider payload exactly as received."""
        if self._raw_data:
            return self._raw_data
        return self.data.model_dump(exclude_unset=True) if self.data else {}

    def extract_images(self) -> List[Dict[str, Any]]:
        candidates = []
        if self.data is not None:
            candidates.extend([self.data.images, self.data.image])
        candidates.extend([self.images, self.image])

        for field_value in candidates:
            if field_value is None:
                continue
            entries = field_value if isinstance(field_value, list) else [field_value]
            return [_normalize_image(entry) for entry in entries]
        return []


class FalStreamResult(BaseModel):
    """Outcome of a streamed call: the final event and any text chunks."""

    final: Dict[str, Any] = Field(default_factory=dict)
    chunks: List[str] = Field(default_factory=list)
    event_count: int = 0

    @property
    def output(self) -> str:
        """Final "output" field, falling back to the concatenated chunks."""
        final_output = self.final.get("output")
        if isinstance(final_output, str) and final_output:
            return final_output
        return "".join(self.chunks)


def _normalize_image(entry: ImageEntry) -> Dict[str, Any]:
    if isinstance(entry, str):
        return {"url": entry}
    if isinstance(entry, FalImage):
        return entry.model_dump(exclude_none=True)
    return dict(entry)
