"""Unit tests for data URL handling and side-by-side merging."""

import base64
import io

import pytest
from PIL import Image

from image_gateway.gateway.services.image_merge import (
    ImageMergeError,
    InvalidDataUrl,
    decode_data_url,
    extension_for,
    is_data_url,
    merge_side_by_side,
)


class TestDataUrls:
    """Inline image references."""

    def test_decode(self, person_png, person_data_url):
        content, mime = decode_data_url(person_data_url)
        assert content == person_png
        assert mime == "image/png"

    def test_decode_defaults_mime(self, person_png):
        url = f"data:;base64,{base64.b64encode(person_png).decode('ascii')}"
        assert decode_data_url(url) == (person_png, "image/png")

    @pytest.mark.parametrize(
        "value",
        [
            "https://example.com/a.png",
            "data:image/png,notbase64",
            "data:image/png;base64,",
            "",
        ],
    )
    def test_decode_rejects_invalid(self, value):
        with pytest.raises(InvalidDataUrl):
            decode_data_url(value)

    def test_decode_enforces_size_cap(self, person_png, person_data_url):
        assert decode_data_url(person_data_url, max_bytes=len(person_png))[0] == person_png

        with pytest.raises(InvalidDataUrl, match="exceeds"):
            decode_data_url(person_data_url, max_bytes=len(person_png) - 1)

    def test_is_data_url(self, person_data_url):
        assert is_data_url(person_data_url)
        assert not is_data_url("https://example.com/a.png")
        assert not is_data_url(None)

    @pytest.mark.parametrize(
        "mime,expected",
        [("image/jpeg", "jpeg"), ("image/png", "png"), ("image/svg+xml", "svg"), ("", "png")],
    )
    def test_extension_for(self, mime, expected):
        assert extension_for(mime) == expected


class TestMergeSideBySide:
    """Pillow composition."""

    def test_canvas_layout(self, person_png, object_png):
        merged = merge_side_by_side(person_png, object_png)

        with Image.open(io.BytesIO(merged)) as img:
            assert img.format == "JPEG"
            assert img.size == (800, 400)
            left = img.getpixel((200, 200))
            right = img.getpixel((600, 200))

        # Person tile is skin-toned, object tile is blue
        assert left[0] > 150 and left[2] < 200
        assert right[2] > 150 and right[0] < 100

    def test_unreadable_input(self, person_png):
        with pytest.raises(ImageMergeError):
            merge_side_by_side(person_png, b"not an image")

    def test_oversized_tile_rejected_before_decoding(self, person_png):
        buffer = io.BytesIO()
        Image.new("1", (1000, 1000)).save(buffer, format="PNG")

        with pytest.raises(ImageMergeError, match="1000x1000"):
            merge_side_by_side(person_png, buffer.getvalue(), max_pixels=100_000)

    def test_decompression_bomb_is_a_merge_error(self, person_png):
        buffer = io.BytesIO()
        Image.new("1", (15000, 15000)).save(buffer, format="PNG")

        with pytest.raises(ImageMergeError, match="Image too large"):
            merge_side_by_side(person_png, buffer.getvalue())
