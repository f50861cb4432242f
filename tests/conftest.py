import io

import pytest
from PIL import Image

from utils import UploadedImage


ENV_VARS = (
    "GEMINI_API_KEY",
    "API_KEY",
    "GEMINI_MODEL_ID",
    "GEMINI_API_BASE",
    "REQUEST_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Tests never see the developer's real credentials or endpoints."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    return "test-key"


def make_png(width: int, height: int, color=(120, 90, 60)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def base_upload():
    return UploadedImage(data=make_png(800, 600), mime_type="image/png", name="facade.png")


@pytest.fixture
def reference_upload():
    return UploadedImage(data=make_png(64, 48, (20, 20, 80)), mime_type="image/jpeg", name="dusk.jpg")


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


def image_response(data="aW1n", mime="image/png"):
    return FakeResponse(
        payload={
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"text": "Here is your image"},
                            {"inlineData": {"mimeType": mime, "data": data}},
                        ]
                    }
                }
            ]
        }
    )
