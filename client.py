from __future__ import annotations

import os
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional

import requests

from prompts import PROMPTS
from utils import ImageAsset, encode_image, to_data_url


DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash-image"
BATCH_SIZE = 4

Logger = Optional[Callable[[str], None]]


class GenerationError(RuntimeError):
    pass


class CredentialMissing(GenerationError):
    pass


class NoImageReturned(GenerationError):
    pass


class ApiError(GenerationError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


def _load_api_key() -> str:
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    if not api_key:
        raise CredentialMissing(
            "API key not found. Set GEMINI_API_KEY in env.local or .env."
        )
    return api_key


def _api_url(model: str) -> str:
    base = os.getenv("GEMINI_API_BASE", DEFAULT_API_BASE).rstrip("/")
    return f"{base}/models/{model}:generateContent"


def _request_timeout() -> float:
    return float(os.getenv("REQUEST_TIMEOUT", "300"))


def _headers() -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "x-goog-api-key": _load_api_key(),
    }


def _make_log(logger: Logger) -> Callable[[str], None]:
    def _log(msg: str) -> None:
        if logger is not None:
            try:
                logger(msg)
            except Exception:
                pass
    return _log


def _build_payload(prompt: str, base_image: ImageAsset, reference_image: ImageAsset) -> Dict:
    base_b64, base_mime = encode_image(base_image)
    ref_b64, ref_mime = encode_image(reference_image)
    return {
        "contents": [
            {
                "parts": [
                    {"text": prompt},
                    {"inlineData": {"mimeType": base_mime, "data": base_b64}},
                    {"inlineData": {"mimeType": ref_mime, "data": ref_b64}},
                ]
            }
        ],
        "generationConfig": {"responseModalities": ["IMAGE"]},
    }


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, list) and body:
        # some gateways wrap the error object in a list
        body = body[0]
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return f"API error {resp.status_code}: {err['message']}"
    text = (resp.text or "").strip()
    return f"API error {resp.status_code}: {text or 'request failed'}"


def _first_inline_image(data) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return None
    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    for part in parts:
        if not isinstance(part, dict):
            continue
        # REST responses use camelCase; accept snake_case too
        inline = part.get("inlineData", part.get("inline_data"))
        if isinstance(inline, dict):
            mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            return to_data_url(inline.get("data") or "", mime)
    return None


def generate_one(
    prompt: str,
    base_image: ImageAsset,
    reference_image: ImageAsset,
    *,
    model: Optional[str] = None,
    logger: Logger = None,
) -> str:
    """Send one prompt + two images and return the generated image as a data URL."""
    _log = _make_log(logger)
    model = model or os.getenv("GEMINI_MODEL_ID", DEFAULT_MODEL)
    headers = _headers()
    payload = _build_payload(prompt, base_image, reference_image)
    url = _api_url(model)

    _log(f"POST {url} | model={model}")
    t0 = time.time()
    resp = requests.post(url, headers=headers, json=payload, timeout=_request_timeout())
    dt = (time.time() - t0) * 1000
    _log(f"status={resp.status_code} t={dt:.0f}ms")
    if resp.status_code >= 400:
        raise ApiError(resp.status_code, _error_message(resp))

    try:
        data = resp.json()
    except ValueError:
        data = None
    src = _first_inline_image(data)
    if src is None:
        raise NoImageReturned("No image generated from API.")
    _log(f"image received | {src[:src.find(';')]}")
    return src


def generate_batch(
    prompt: str,
    base_image: ImageAsset,
    reference_image: ImageAsset,
    n: int = BATCH_SIZE,
    *,
    model: Optional[str] = None,
    logger: Logger = None,
    max_workers: Optional[int] = None,
) -> List[str]:
    """Run ``n`` identical generations in parallel; all succeed or the batch fails.

    Results come back in submission order. The first failure is raised and
    no partial results are returned.
    """
    if n < 1:
        raise ValueError("n must be at least 1")
    _log = _make_log(logger)
    workers = max(1, min(n, max_workers or n))
    _log(f"batch start | n={n} workers={workers}")

    ex = ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [
            ex.submit(generate_one, prompt, base_image, reference_image, model=model, logger=logger)
            for _ in range(n)
        ]
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        for fut in futures:
            if fut in done and fut.exception() is not None:
                _log(f"batch failed | {fut.exception()}")
                raise fut.exception()
        results = [fut.result() for fut in futures]
    finally:
        # calls already in flight keep running; their results are dropped
        ex.shutdown(wait=False, cancel_futures=True)

    _log(f"batch done | images={len(results)}")
    return results


def _generate_kind(kind: str, base_image: ImageAsset, reference_image: ImageAsset, **kwargs) -> List[str]:
    _load_api_key()
    _make_log(kwargs.get("logger"))(f"prompt={kind}")
    return generate_batch(PROMPTS[kind](), base_image, reference_image, **kwargs)


def generate_variations(
    base_image: ImageAsset,
    reference_image: ImageAsset,
    **kwargs,
) -> List[str]:
    return _generate_kind("initial", base_image, reference_image, **kwargs)


def revariate_image(
    base_variation_image: ImageAsset,
    original_reference_image: ImageAsset,
    **kwargs,
) -> List[str]:
    return _generate_kind("revariation", base_variation_image, original_reference_image, **kwargs)
