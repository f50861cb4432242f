from __future__ import annotations

import os
import time
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional

import streamlit as st
from dotenv import load_dotenv

from client import DEFAULT_MODEL, generate_variations, revariate_image
from preprocess import make_preview
from session import SessionState, StudioController, ValidationError
from utils import UploadedImage, decode_data_url, save_download


load_dotenv("env.local", override=False)
load_dotenv(override=False)  # allow standard .env too


st.set_page_config(page_title="Lighting Studio X", layout="wide")


UPLOAD_TYPES = ["png", "jpg", "jpeg", "webp", "heic"]


def get_default_output_dir() -> Path:
    base = os.getenv("OUTPUT_BASE_DIR", "outputs")
    return Path(base)


def sidebar() -> Path:
    st.sidebar.header("Settings")
    base_dir = st.sidebar.text_input(
        "Output base folder",
        value=str(get_default_output_dir()),
        help="Downloads are also written here when local saving is on.",
    )
    output_dir = Path(base_dir)

    model = st.sidebar.text_input(
        "Model ID",
        value=os.getenv("GEMINI_MODEL_ID", DEFAULT_MODEL),
        help="Gemini model that returns image output.",
    )
    st.session_state["model"] = model

    st.sidebar.subheader("Performance")
    default_parallel = int(os.getenv("MAX_PARALLEL", "4"))
    max_parallel = st.sidebar.slider(
        "Max parallel requests", 1, 4, value=max(1, min(4, default_parallel))
    )
    st.session_state["max_parallel"] = max_parallel

    st.session_state["save_downloads"] = st.sidebar.checkbox(
        "Also save downloads to output folder", value=True
    )

    st.sidebar.subheader("Live Logs")
    # Recreate placeholder every run to avoid stale widget references
    st.session_state["log_placeholder"] = st.sidebar.empty()
    if "log_messages" not in st.session_state:
        st.session_state["log_messages"] = []
    _render_logs()
    return output_dir


def _append_log(message: str) -> None:
    ts = time.strftime("%H:%M:%S")
    st.session_state.setdefault("log_messages", []).append(f"[{ts}] {message}")


def log(message: str) -> None:
    _append_log(message)
    _render_logs()


def _thread_logger() -> Callable[[str], None]:
    # Worker threads have no script context; they only append
    messages: List[str] = st.session_state.setdefault("log_messages", [])

    def _append(message: str) -> None:
        messages.append(f"[{time.strftime('%H:%M:%S')}] {message}")
    return _append


def _render_logs() -> None:
    if "log_placeholder" in st.session_state:
        content = "\n".join(st.session_state.get("log_messages", [])[-200:])
        st.session_state["log_placeholder"].code(content or "(no logs yet)")


def get_controller(logger: Callable[[str], None] = log) -> StudioController:
    if "studio_state" not in st.session_state:
        st.session_state["studio_state"] = SessionState()
    options = dict(
        model=st.session_state.get("model", DEFAULT_MODEL),
        max_workers=int(st.session_state.get("max_parallel", 4)),
        logger=_thread_logger(),
    )
    return StudioController(
        st.session_state["studio_state"],
        variations_fn=partial(generate_variations, **options),
        revariate_fn=partial(revariate_image, **options),
        logger=logger,
    )


def _on_download(index: int, output_dir: Path) -> None:
    # Runs as a widget callback, before the sidebar placeholder exists
    controller = get_controller(logger=_append_log)
    artifact = controller.download(index)
    if st.session_state.get("save_downloads"):
        try:
            saved = save_download(
                file_name=artifact.file_name,
                data=artifact.data,
                output_base=output_dir,
            )
            _append_log(f"saved | {saved.path} bytes={saved.size}")
        except OSError as e:
            _append_log(f"save error | {e}")


def _on_upload(key: str, role: str) -> None:
    uploaded = st.session_state.get(key)
    image = UploadedImage.from_upload(uploaded) if uploaded is not None else None
    controller = get_controller(logger=_append_log)
    if role == "base":
        controller.set_base_image(image)
    else:
        controller.set_reference_image(image)
    _append_log(f"{role} image {'selected | ' + image.name if image else 'cleared'}")


def render_uploader(title: str, key: str, role: str) -> None:
    st.markdown(f"**{title}**")
    st.file_uploader(
        "Drag & drop or click to upload",
        type=UPLOAD_TYPES,
        key=key,
        on_change=_on_upload,
        args=(key, role),
    )


def render_preview(image: Optional[UploadedImage]) -> None:
    if image is None:
        return
    try:
        st.image(make_preview(image), use_container_width=True)
    except Exception as e:
        st.warning(f"Could not preview {image.name}: {e}")


def _render_placeholders(count: int = 4) -> None:
    cols = st.columns(2)
    for i in range(count):
        with cols[i % 2]:
            st.info(f"Variation {i + 1}: generating...")


def render_results(controller: StudioController, output_dir: Path) -> None:
    state = controller.state
    head_l, head_r = st.columns([3, 1])
    with head_l:
        st.subheader("Generated variations")
    with head_r:
        prefix = st.text_input("File prefix", value=state.prefix)
        controller.set_prefix(prefix)

    cols = st.columns(2)
    for idx, image in enumerate(list(state.results)):
        with cols[idx % 2]:
            data, _mime = decode_data_url(image.src)
            try:
                st.image(data, use_container_width=True)
            except Exception as e:
                st.warning(f"Could not display variation {idx + 1}: {e}")
            c_dl, c_rv = st.columns(2)
            with c_dl:
                st.download_button(
                    "Download",
                    data=data,
                    file_name=controller.next_download_name(),
                    mime="image/png",
                    key=f"dl_{image.id}",
                    on_click=_on_download,
                    args=(idx, output_dir),
                    use_container_width=True,
                )
            with c_rv:
                clicked = st.button(
                    "Re-variation",
                    key=f"rv_{image.id}",
                    use_container_width=True,
                )
            if clicked:
                try:
                    with st.spinner("Creating re-variations..."):
                        controller.revariate(idx)
                except ValidationError:
                    pass  # message is already in state.error
                st.rerun()


def render_form(output_dir: Path) -> None:
    st.title("Lighting Studio X")
    st.caption("Professional lighting simulation for architectural visualization")

    controller = get_controller()
    state = controller.state

    col_base, col_ref = st.columns(2)
    with col_base:
        render_uploader("Base image (architecture)", "base_upload", "base")
        render_preview(state.base_image)
        if state.base_image is not None:
            try:
                st.caption(f"Aspect ratio {controller.base_aspect_ratio()}")
            except Exception as e:
                log(f"aspect ratio error | {e}")
    with col_ref:
        render_uploader("Reference image (lighting)", "ref_upload", "reference")
        render_preview(state.reference_image)

    generate = st.button(
        "Generate variations",
        type="primary",
        disabled=not controller.can_generate,
    )

    if generate:
        _render_placeholders()
        try:
            with st.spinner("Generating..."):
                controller.generate()
        except ValidationError:
            pass  # message is already in state.error
        st.rerun()

    if state.error:
        st.error(state.error)

    if state.results:
        render_results(controller, output_dir)


def main():
    output_dir = sidebar()
    render_form(output_dir)


if __name__ == "__main__":
    main()
