from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import client
from preprocess import aspect_ratio
from utils import ImageAsset, decode_data_url, download_filename


DEFAULT_PREFIX = "archviz"
GENERIC_ERROR = "An unknown error occurred."
GENERIC_REVARIATION_ERROR = "An unknown error occurred during re-variation."
MISSING_INPUTS = "Please upload both the base image and the reference image."
MISSING_REFERENCE = "The original reference image is required for re-variation."


class ValidationError(ValueError):
    pass


@dataclass(frozen=True)
class GeneratedImage:
    id: str
    src: str


@dataclass(frozen=True)
class DownloadArtifact:
    file_name: str
    data: bytes
    mime_type: str


@dataclass
class SessionState:
    base_image: Optional[ImageAsset] = None
    reference_image: Optional[ImageAsset] = None
    results: List[GeneratedImage] = field(default_factory=list)
    loading: bool = False
    revariating_index: Optional[int] = None
    error: Optional[str] = None
    prefix: str = DEFAULT_PREFIX
    download_counter: int = 1
    request_token: int = 0


def _new_batch(sources: List[str]) -> List[GeneratedImage]:
    return [GeneratedImage(id=uuid.uuid4().hex, src=src) for src in sources]


class StudioController:
    """Drives one interactive session: selections, batches and downloads.

    The generation functions default to the live API client; tests and the
    UI can pass their own (e.g. to bind a model or a worker limit).
    """

    def __init__(
        self,
        state: Optional[SessionState] = None,
        *,
        variations_fn: Optional[Callable[[ImageAsset, ImageAsset], List[str]]] = None,
        revariate_fn: Optional[Callable[[ImageAsset, ImageAsset], List[str]]] = None,
        logger: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.state = state if state is not None else SessionState()
        self._variations_fn = variations_fn or client.generate_variations
        self._revariate_fn = revariate_fn or client.revariate_image
        self._logger = logger

    def _log(self, msg: str) -> None:
        if self._logger is not None:
            try:
                self._logger(msg)
            except Exception:
                pass

    # --- selection -------------------------------------------------------

    def set_base_image(self, image: Optional[ImageAsset]) -> None:
        self.state.base_image = image

    def set_reference_image(self, image: Optional[ImageAsset]) -> None:
        self.state.reference_image = image

    @property
    def can_generate(self) -> bool:
        s = self.state
        return s.base_image is not None and s.reference_image is not None and not s.loading

    def base_aspect_ratio(self) -> Optional[str]:
        return aspect_ratio(self.state.base_image)

    def _fail_validation(self, message: str) -> None:
        self.state.error = message
        self._log(f"validation | {message}")
        raise ValidationError(message)

    def _next_token(self) -> int:
        self.state.request_token += 1
        return self.state.request_token

    def _is_current(self, token: int, action: str) -> bool:
        if token != self.state.request_token:
            self._log(f"{action} result dropped | stale request {token}")
            return False
        return True

    # --- generation ------------------------------------------------------

    def generate(self) -> bool:
        """Generate a fresh batch from the base and reference images.

        Returns True when the batch was applied. Validation problems raise
        ``ValidationError``; API failures are recorded in ``state.error``.
        """
        s = self.state
        if s.base_image is None or s.reference_image is None:
            self._fail_validation(MISSING_INPUTS)

        token = self._next_token()
        s.loading = True
        s.error = None
        s.results = []
        self._log("generate start")
        try:
            sources = self._variations_fn(s.base_image, s.reference_image)
            if not self._is_current(token, "generate"):
                return False
            s.results = _new_batch(sources)
            self._log(f"generate done | images={len(s.results)}")
            return True
        except Exception as e:
            if self._is_current(token, "generate"):
                s.error = str(e) or GENERIC_ERROR
            self._log(f"generate error | {e}")
            return False
        finally:
            s.loading = False

    def revariate(self, index: int) -> bool:
        """Replace the batch with subtle variants of ``results[index]``."""
        s = self.state
        if s.reference_image is None:
            self._fail_validation(MISSING_REFERENCE)
        if s.revariating_index is not None:
            self._fail_validation("A re-variation is already in progress.")
        if not 0 <= index < len(s.results):
            self._fail_validation(f"No generated image at position {index + 1}.")

        token = self._next_token()
        s.revariating_index = index
        s.error = None
        self._log(f"revariate start | index={index}")
        try:
            sources = self._revariate_fn(s.results[index].src, s.reference_image)
            if not self._is_current(token, "revariate"):
                return False
            s.results = _new_batch(sources)
            self._log(f"revariate done | images={len(s.results)}")
            return True
        except Exception as e:
            if self._is_current(token, "revariate"):
                s.error = str(e) or GENERIC_REVARIATION_ERROR
            self._log(f"revariate error | {e}")
            return False
        finally:
            s.revariating_index = None

    # --- downloads -------------------------------------------------------

    def set_prefix(self, prefix: str) -> None:
        if prefix != self.state.prefix:
            self.state.prefix = prefix
            self.state.download_counter = 1

    def next_download_name(self) -> str:
        return download_filename(self.state.prefix, self.state.download_counter)

    def download(self, index: int) -> DownloadArtifact:
        s = self.state
        if not 0 <= index < len(s.results):
            raise ValidationError(f"No generated image at position {index + 1}.")
        data, mime = decode_data_url(s.results[index].src)
        artifact = DownloadArtifact(file_name=self.next_download_name(), data=data, mime_type=mime)
        s.download_counter += 1
        self._log(f"download | {artifact.file_name} mime={mime}")
        return artifact
