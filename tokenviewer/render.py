"""
HTML rendering for display units.

Each unit becomes one ``<span class="token-span">`` whose opacity follows the
normalized activation.  Whitespace-only tokens containing line breaks are
either rendered as real line breaks or as a bold ``\\n`` marker, depending on
the view.
"""

import html
from typing import Optional

from tokenviewer.display import DisplayUnit

HIGHLIGHT_COLOR = "maroon"

TOOLTIP_CSS = (
    "<style>"
    ".token-span.has-tooltip::after { content: attr(data-activation); position: absolute; bottom: 100%; left: 50%; "
    "transform: translateX(-50%); background: #1f2937; color: #fff; padding: 4px 8px; border-radius: 4px; "
    "font-size: 11px; white-space: nowrap; opacity: 0; pointer-events: none; transition: opacity 0.2s; "
    "margin-bottom: 4px; z-index: 1000; }"
    ".token-span.has-tooltip:hover::after { opacity: 1; }"
    '.token-span.has-tooltip::before { content: ""; position: absolute; bottom: 100%; left: 50%; '
    "transform: translateX(-50%); border: 4px solid transparent; border-top-color: #1f2937; "
    "opacity: 0; pointer-events: none; transition: opacity 0.2s; z-index: 1000; }"
    ".token-span.has-tooltip:hover::before { opacity: 1; }"
    ".token-tooltip { position: absolute; bottom: 100%; left: 50%; transform: translateX(-50%); "
    "background: #1f2937; color: #fff; padding: 4px 8px; border-radius: 4px; font-size: 11px; "
    "white-space: nowrap; z-index: 1000; }"
    "</style>"
)


def format_activation(value: float) -> str:
    return f"{value:.4f}"


def escape_token(text: str) -> str:
    return html.escape(text, quote=False).replace(" ", "&nbsp;")


def newline_run_length(text: str) -> Optional[int]:
    """Number of line breaks in a whitespace-only token, None otherwise."""
    if text.strip() == "" and "\n" in text:
        return text.count("\n")
    return None


def render_token_content(
    unit: DisplayUnit, collapsed: bool, opacity_floor: float = 0.4
) -> str:
    """Inner HTML for one unit.

    A newline run sitting exactly at the opacity floor in the full view keeps
    its line structure; any other newline run is squeezed into a bold
    ``\\n`` marker so it does not take vertical space.
    """
    run = newline_run_length(unit.text)
    if run is not None:
        if not collapsed and unit.opacity == opacity_floor:
            return "<br/>" * run
        return "<b>" + "\\n" * run + "</b>"
    if unit.highlighted:
        return f"<b>{escape_token(unit.text)}</b>"
    return escape_token(unit.text)


def render_token_html(
    unit: DisplayUnit,
    display_index: int,
    collapsed: bool = False,
    hovered: bool = False,
    selected: bool = False,
    clickable: bool = False,
    tooltip: Optional[str] = None,
    opacity_floor: float = 0.4,
) -> str:
    """Wrap a unit in its span with opacity, hover and selection styling."""
    classes = ["token-span"]
    style = [
        f"opacity:{unit.opacity}",
        f"color:{HIGHLIGHT_COLOR if unit.highlighted else 'inherit'}",
        "position:relative",
    ]
    if hovered:
        classes.append("hovered")
        style.append("border:2px solid #facc15;border-radius:3px;padding:0 2px")
    if selected:
        classes.append("selected")
        style.append("background:#fde047;color:#000;font-weight:bold")
    if clickable:
        classes.append("clickable")
        style.append("cursor:pointer")

    attrs = [f'data-index="{display_index}"']
    if unit.token_index is not None:
        attrs.append(f'data-token-index="{unit.token_index}"')
    if tooltip is not None:
        classes.append("has-tooltip")
        attrs.append(f'data-activation="{html.escape(tooltip)}"')

    body = render_token_content(unit, collapsed, opacity_floor)
    if hovered and tooltip is not None:
        body += f'<span class="token-tooltip">{html.escape(tooltip)}</span>'

    return (
        f'<span class="{" ".join(classes)}" {" ".join(attrs)} '
        f'style="{";".join(style)};">{body}</span>'
    )


def render_viewer_html(viewer) -> str:
    """Render a ``TokenViewer`` (or anything exposing the same attributes)."""
    window = viewer.window
    spans = [
        render_token_html(
            unit,
            i,
            collapsed=window.collapsed,
            hovered=viewer.hovered_index == i,
            selected=viewer.is_selected(i),
            clickable=viewer.is_clickable(i),
            tooltip=viewer.tooltip(i),
            opacity_floor=viewer.config.opacity_floor,
        )
        for i, unit in enumerate(window.units)
    ]

    controls = ""
    if viewer.show_toggle:
        summary = viewer.summary()
        summary_html = (
            f"<span class='token-summary'>Max activation: {summary}</span> "
            if summary is not None
            else ""
        )
        label = "Show less" if viewer.is_expanded else "Show all"
        controls = (
            "<div class='token-viewer-controls' style='margin-top:8px;font-size:0.85em;color:#666;'>"
            f"{summary_html}<span class='token-toggle'>[{label}]</span>"
            "</div>"
        )

    return (
        TOOLTIP_CSS
        + "<div class='token-viewer' style='padding:16px;'>"
        + "<div style='display:inline;line-height:2.2;'>"
        + "".join(spans)
        + "</div>"
        + controls
        + "</div>"
    )
