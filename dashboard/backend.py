"""
Backend for the token viewer dashboard.

A module-level singleton holds the loaded records and the current
``TokenViewer`` (it carries Python callbacks, so it cannot live in gr.State).
The Gradio UI in app.py only calls these functions; every function returns
HTML (or HTML plus a status string) and never raises into the UI.
"""

import glob
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from tokenviewer.config import DashboardConfig, ViewerConfig, ViewerConfigError
from tokenviewer.records import (
    TokenRecord,
    discover_record_files,
    load_tokenizer,
    load_top_activating_records,
    read_records,
    write_records,
)
from tokenviewer.display import as_activation_list
from tokenviewer.render import format_activation
from tokenviewer.viewer import TokenViewer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Singleton viewer state
# ---------------------------------------------------------------------------
class ViewerState:
    config: DashboardConfig = DashboardConfig()
    viewer_config: ViewerConfig = ViewerConfig(shorthand=True)
    records: dict = {}  # display label -> TokenRecord
    viewer: Optional[TokenViewer] = None
    tokenizer = None
    tokenizer_loaded: bool = False


state = ViewerState()


def configure(cfg: DashboardConfig) -> None:
    state.config = cfg
    state.viewer_config = cfg.viewer_config()
    state.records = {}
    state.viewer = None
    state.tokenizer = None
    state.tokenizer_loaded = False


def _message(text: str) -> str:
    return f"<p>{text}</p>"


def _current_html() -> str:
    if state.viewer is None:
        return _message("Select a record to view.")
    return state.viewer.render_html()


# ---------------------------------------------------------------------------
# Record discovery / loading
# ---------------------------------------------------------------------------
def list_record_files() -> List[str]:
    return discover_record_files(state.config.records_dir)


def list_cached_hookpoints() -> List[str]:
    """Return ``<adapter>/<hookpoint>`` dirs under the cache that hold shards."""
    cache_dir = Path(state.config.cache_dir)
    if not cache_dir.is_dir():
        return []
    shard_dirs = {
        Path(p).parent for p in glob.glob(str(cache_dir / "*/*/*.safetensors"))
    }
    return sorted(str(d.relative_to(cache_dir)) for d in shard_dirs)


def _store_records(records: List[TokenRecord]) -> List[str]:
    state.records = {rec.display: rec for rec in records}
    state.viewer = None
    return list(state.records.keys())


def load_record_file(path: str) -> Tuple[str, List[str]]:
    """Load a JSONL record file; returns (status, record choices)."""
    if not path:
        return "No record file selected", []
    try:
        records = read_records(path)
    except (OSError, ValueError) as exc:
        logger.error("Error reading %s: %s", path, exc, exc_info=True)
        return f"❌ Error reading {path}: {exc}", []
    choices = _store_records(records)
    return f"✅ Loaded {len(choices)} records from {path}", choices


def load_cached_examples(
    hookpoint: str, latent_idx: int, n_examples: Optional[int] = None
) -> Tuple[str, List[str]]:
    """Load the top activating rows of a cached latent as records."""
    if not hookpoint:
        return "Select a cached hookpoint first", []
    if not state.tokenizer_loaded:
        state.tokenizer = load_tokenizer(state.config.tokenizer_path)
        state.tokenizer_loaded = True

    n_examples = n_examples or state.config.n_examples
    cache_dir = Path(state.config.cache_dir) / hookpoint
    try:
        records = load_top_activating_records(
            cache_dir, int(latent_idx), int(n_examples), tokenizer=state.tokenizer
        )
    except Exception as exc:
        logger.error("Error loading cache %s: %s", cache_dir, exc, exc_info=True)
        return f"❌ Error loading {cache_dir}: {exc}", []

    choices = _store_records(records)
    if not choices:
        return f"Latent {latent_idx} has no activations in {cache_dir}", []
    tokenizer_status = (
        "tokenizer loaded" if state.tokenizer else "showing token ids (no tokenizer)"
    )
    return f"✅ Top {len(choices)} examples for latent {latent_idx} | {tokenizer_status}", choices


# ---------------------------------------------------------------------------
# Viewer
# ---------------------------------------------------------------------------
def show_tokens(tokens: List[str], activations=None) -> str:
    """Build a fresh viewer for *tokens*; clicking a token selects it."""
    try:
        viewer = TokenViewer(tokens, activations, config=state.viewer_config)
    except ViewerConfigError as exc:
        return _message(f"⚠️ {exc}")
    viewer.set_data(actions=[_select_action(viewer, i) for i in range(len(tokens))])
    state.viewer = viewer
    return viewer.render_html()


def _select_action(viewer: TokenViewer, token_index: int):
    def select():
        viewer.select(token_index)
        logger.info("Selected token %d: %r", token_index, viewer.texts[token_index])

    return select


def select_record(label: str) -> str:
    record = state.records.get(label)
    if record is None:
        return _message("Select a record to view.")
    return show_tokens(record.tokens, record.activations)


def update_viewer_config(shorthand: bool, percentile: float) -> str:
    """Apply new display settings; the current record is re-rendered."""
    try:
        state.viewer_config = ViewerConfig(
            shorthand=bool(shorthand),
            activation_percentile=float(percentile),
            window_size=state.viewer_config.window_size,
            opacity_floor=state.viewer_config.opacity_floor,
            length_policy=state.viewer_config.length_policy,
        )
    except (ViewerConfigError, TypeError, ValueError) as exc:
        return _message(f"⚠️ Invalid settings: {exc}")
    if state.viewer is not None:
        state.viewer.set_config(state.viewer_config)
    return _current_html()


def toggle_expand() -> str:
    if state.viewer is not None:
        state.viewer.toggle_expand()
    return _current_html()


def hover_token(display_index) -> Tuple[str, str]:
    """Simulate pointer-enter on a unit; returns (html, tooltip text)."""
    if state.viewer is None or display_index is None:
        return _current_html(), ""
    state.viewer.pointer_enter(int(display_index))
    tooltip = state.viewer.hover_tooltip()
    return _current_html(), tooltip or ""


def leave_token() -> Tuple[str, str]:
    if state.viewer is not None:
        state.viewer.pointer_leave()
    return _current_html(), ""


def click_token(display_index) -> Tuple[str, str]:
    """Invoke the clicked unit's action; returns (html, status)."""
    if state.viewer is None or display_index is None:
        return _current_html(), "No record loaded"
    index = int(display_index)
    if not state.viewer.click(index):
        return _current_html(), f"Unit {index} is not clickable"
    return _current_html(), f"Selected token {state.viewer.highlight_token}"


def parse_activations(raw: str) -> Optional[List[float]]:
    """Parse ``"0.1, 0.5, 2"`` into floats; empty input means no activations."""
    parts = [p.strip() for p in (raw or "").replace("\n", ",").split(",")]
    parts = [p for p in parts if p]
    if not parts:
        return None
    return [float(p) for p in parts]


def parse_tokens(raw: str, separator: str = "|") -> List[str]:
    r"""Split pasted text on *separator*; a literal ``\n`` becomes a newline."""
    if not raw:
        return []
    return [t.replace("\\n", "\n") for t in raw.split(separator)]


def render_free_text(tokens_raw: str, activations_raw: str) -> str:
    tokens = parse_tokens(tokens_raw)
    if not tokens:
        return _message("⚠️ No tokens to display.")
    try:
        activations = parse_activations(activations_raw)
    except ValueError as exc:
        return _message(f"⚠️ Could not parse activations: {exc}")
    return show_tokens(tokens, activations)


SAVED_RECORDS_FILE = "saved.jsonl"


def save_current_record(record_id: str) -> str:
    """Append the tokens on screen to ``<records_dir>/saved.jsonl``."""
    viewer = state.viewer
    if viewer is None:
        return "No record loaded"
    record_id = (record_id or "").strip() or f"record_{len(viewer.texts)}_tokens"
    path = Path(state.config.records_dir) / SAVED_RECORDS_FILE
    record = TokenRecord(
        id=record_id,
        tokens=list(viewer.texts),
        activations=as_activation_list(viewer.activations),
    )
    try:
        write_records(path, [record], append=True)
    except OSError as exc:
        logger.error("Error writing %s: %s", path, exc, exc_info=True)
        return f"❌ Error writing {path}: {exc}"
    return f"✅ Saved {record_id} to {path}"


def viewer_stats() -> str:
    """One-line summary under the viewer."""
    viewer = state.viewer
    if viewer is None:
        return ""
    window = viewer.window
    parts = [f"{len(viewer.texts)} tokens", f"showing [{window.start}, {window.end})"]
    if window.peak_activation is not None:
        parts.append(f"max={format_activation(window.peak_activation)}")
    if window.threshold is not None:
        parts.append(f"threshold={format_activation(window.threshold)}")
    return " | ".join(parts)
