from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union


SANITIZE_RE = re.compile(r"[^A-Za-z0-9._\- ]+")
DATA_URL_MIME_RE = re.compile(r"data:(.*?);")

DEFAULT_MIME = "image/jpeg"


def sanitize_for_fs(name: str, max_len: int = 80) -> str:
    clean = SANITIZE_RE.sub("_", name).strip().replace(" ", "_")
    return clean[:max_len] if clean else "untitled"


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class UploadedImage:
    """Raw image bytes as selected by the user."""

    data: bytes
    mime_type: str = DEFAULT_MIME
    name: str = "image"

    @classmethod
    def from_upload(cls, uploaded) -> "UploadedImage":
        raw = uploaded.getvalue() if hasattr(uploaded, "getvalue") else uploaded.read()
        return cls(
            data=raw,
            mime_type=getattr(uploaded, "type", None) or DEFAULT_MIME,
            name=getattr(uploaded, "name", None) or "image",
        )


# An image is either a fresh upload or a data URL produced by the model.
ImageAsset = Union[UploadedImage, str]


def to_data_url(payload_b64: str, mime_type: str) -> str:
    return f"data:{mime_type};base64,{payload_b64}"


def encode_image(image: ImageAsset) -> Tuple[str, str]:
    """Return ``(base64_payload, mime_type)`` for an upload or a data URL."""
    if isinstance(image, UploadedImage):
        b64 = base64.b64encode(image.data).decode("utf-8")
        return b64, image.mime_type or DEFAULT_MIME
    if isinstance(image, str):
        match = DATA_URL_MIME_RE.match(image)
        mime = match.group(1) if match and match.group(1) else DEFAULT_MIME
        payload = image.split(",", 1)[1] if "," in image else image
        return payload, mime
    raise TypeError(f"Unsupported image asset: {type(image).__name__}")


def decode_data_url(src: str) -> Tuple[bytes, str]:
    payload, mime = encode_image(src)
    return base64.b64decode(payload), mime


def asset_bytes(image: ImageAsset) -> bytes:
    if isinstance(image, UploadedImage):
        return image.data
    return decode_data_url(image)[0]


def download_filename(prefix: str, counter: int) -> str:
    return f"{sanitize_for_fs(prefix)}_mood_{counter:03d}.png"


@dataclass
class SaveResult:
    path: Path
    size: int


def save_download(*, file_name: str, data: bytes, output_base: Path) -> SaveResult:
    """Write downloaded bytes to ``output_base`` under ``file_name``.

    The bytes are stored as returned by the model; only the name says ``.png``.
    """
    ensure_dir(output_base)
    path = output_base / file_name
    with open(path, "wb") as f:
        f.write(data)
    return SaveResult(path=path, size=len(data))
