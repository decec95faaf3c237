from .config import DashboardConfig, ViewerConfig, ViewerConfigError, load_dashboard_config
from .display import (
    DisplayUnit,
    DisplayWindow,
    activation_threshold,
    align_activations,
    compute_display_window,
    highlight_mask,
    normalize_activations,
    peak_index,
)
from .records import TokenRecord, discover_record_files, load_top_activating_records, read_records
from .render import newline_run_length, render_token_content, render_token_html, render_viewer_html
from .viewer import TokenViewer

__all__ = [
    "DashboardConfig",
    "ViewerConfig",
    "ViewerConfigError",
    "load_dashboard_config",
    "DisplayUnit",
    "DisplayWindow",
    "activation_threshold",
    "align_activations",
    "compute_display_window",
    "highlight_mask",
    "normalize_activations",
    "peak_index",
    "TokenRecord",
    "discover_record_files",
    "load_top_activating_records",
    "read_records",
    "newline_run_length",
    "render_token_content",
    "render_token_html",
    "render_viewer_html",
    "TokenViewer",
]
