"""
Shared pytest fixtures for the NanoEdit tests
"""
import io
import sys
from pathlib import Path

import pytest
from PIL import Image

# Project modules live at the repository root
root_dir = Path(__file__).parent.parent
sys.path.insert(0, str(root_dir))

from editor import EditorSession, SourceImage  # noqa: E402


class FakeClient:
    """Stands in for EditClient; records every request_edit call."""

    def __init__(self, result="data:image/png;base64,AAA=", error=None):
        self.result = result
        self.error = error
        self.calls = []
        self.configured = True
        self.model = "fake-image-model"
        self.on_request = None

    def request_edit(self, encoded_payload, media_type, prompt_text):
        self.calls.append((encoded_payload, media_type, prompt_text))
        if self.on_request:
            self.on_request()
        if self.error:
            raise self.error
        return self.result


def image_bytes(fmt="JPEG", size=(4, 4), color=(200, 40, 40)):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def jpeg_bytes():
    return image_bytes("JPEG")


@pytest.fixture
def png_bytes():
    return image_bytes("PNG")


@pytest.fixture
def photo(jpeg_bytes):
    """photo.jpg as picked by the user"""
    return SourceImage(file=jpeg_bytes, media_type="image/jpeg", filename="photo.jpg")


@pytest.fixture
def editor(fake_client):
    return EditorSession(fake_client)
