"""
Interactive token viewer.

``TokenViewer`` owns the hover index and the expanded/collapsed flag and
keeps the current ``DisplayWindow`` as derived state.  The window is
recomputed only when the data, the config or the expansion changes; reading
``units`` or rendering never mutates anything.

Example usage:
    viewer = TokenViewer(tokens, activations,
                         config=ViewerConfig(shorthand=True))
    html = viewer.render_html()
    viewer.toggle_expand()
    viewer.pointer_enter(3)
    viewer.tooltip(3)   # "0.8123" or None
"""

import logging
from typing import Callable, Optional, Sequence

from tokenviewer.config import ViewerConfig
from tokenviewer.display import DisplayUnit, DisplayWindow, compute_display_window
from tokenviewer.render import format_activation, render_viewer_html

logger = logging.getLogger(__name__)

Action = Callable[[], None]


class TokenViewer:
    def __init__(
        self,
        texts: Sequence[str],
        activations=None,
        actions: Optional[Sequence[Optional[Action]]] = None,
        highlight_token: Optional[int] = None,
        config: Optional[ViewerConfig] = None,
    ):
        """
        Args:
            texts: Token strings, in order.
            activations: Optional per-token activation values (list or tensor).
            actions: Optional per-token zero-argument callbacks invoked on click.
            highlight_token: Token index to mark as selected.
            config: Display settings; defaults to ``ViewerConfig()``.
        """
        self.texts = list(texts)
        self.activations = activations
        self.actions = list(actions) if actions is not None else None
        self.highlight_token = highlight_token
        self.config = config or ViewerConfig()
        self._expanded = False
        self._hovered: Optional[int] = None
        self._recompute()

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------
    def _recompute(self) -> None:
        self._window = compute_display_window(
            self.texts, self.activations, self.config, self._expanded
        )

    @property
    def window(self) -> DisplayWindow:
        return self._window

    @property
    def units(self) -> tuple:
        return self._window.units

    @property
    def is_expanded(self) -> bool:
        return self._expanded

    @property
    def is_collapsed(self) -> bool:
        """True in shorthand mode until the user expands the view."""
        return self.config.shorthand and not self._expanded

    @property
    def show_toggle(self) -> bool:
        return self.config.shorthand

    @property
    def hovered_index(self) -> Optional[int]:
        """Hovered display index, or None if it no longer fits the list."""
        if self._hovered is None or not 0 <= self._hovered < len(self.units):
            return None
        return self._hovered

    def _unit(self, display_index: int) -> Optional[DisplayUnit]:
        if 0 <= display_index < len(self.units):
            return self.units[display_index]
        return None

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def set_data(
        self,
        texts: Optional[Sequence[str]] = None,
        activations=None,
        actions: Optional[Sequence[Optional[Action]]] = None,
    ) -> None:
        """Replace tokens and/or activations and recompute the window.

        Passing ``texts`` without ``activations`` clears the activations,
        since the old vector no longer lines up with the new tokens.
        """
        if texts is not None:
            self.texts = list(texts)
            self.activations = activations
        elif activations is not None:
            self.activations = activations
        if actions is not None:
            self.actions = list(actions)
        self._recompute()

    def set_config(self, config: ViewerConfig) -> None:
        self.config = config
        self._recompute()

    def select(self, token_index: Optional[int]) -> None:
        self.highlight_token = token_index

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------
    def toggle_expand(self) -> bool:
        """Flip collapsed <-> expanded; a no-op outside shorthand mode."""
        if not self.config.shorthand:
            return self._expanded
        self._expanded = not self._expanded
        self._recompute()
        logger.debug("Token viewer %s", "expanded" if self._expanded else "collapsed")
        return self._expanded

    def pointer_enter(self, display_index: int) -> None:
        self._hovered = display_index

    def pointer_leave(self, display_index: Optional[int] = None) -> None:
        if display_index is None or display_index == self._hovered:
            self._hovered = None

    def action_for(self, display_index: int) -> Optional[Action]:
        unit = self._unit(display_index)
        if unit is None or unit.token_index is None or not self.actions:
            return None
        if unit.token_index >= len(self.actions):
            return None
        return self.actions[unit.token_index]

    def is_clickable(self, display_index: int) -> bool:
        return self.action_for(display_index) is not None

    def click(self, display_index: int) -> bool:
        """Invoke the unit's action; returns False if it has none."""
        action = self.action_for(display_index)
        if action is None:
            return False
        action()
        return True

    def is_selected(self, display_index: int) -> bool:
        unit = self._unit(display_index)
        return (
            unit is not None
            and self.highlight_token is not None
            and unit.token_index == self.highlight_token
        )

    # ------------------------------------------------------------------
    # Text shown around the tokens
    # ------------------------------------------------------------------
    def tooltip(self, display_index: int) -> Optional[str]:
        """Formatted activation for a unit, if it may show a tooltip."""
        if self.is_collapsed:
            return None
        unit = self._unit(display_index)
        if unit is None or not unit.activation:
            return None
        return format_activation(unit.activation)

    def hover_tooltip(self) -> Optional[str]:
        hovered = self.hovered_index
        return None if hovered is None else self.tooltip(hovered)

    def summary(self) -> Optional[str]:
        """Max activation shown next to the toggle of a truncated window."""
        window = self._window
        if not window.collapsed or not window.truncated:
            return None
        if window.peak_activation is None:
            return None
        return format_activation(window.peak_activation)

    def render_html(self) -> str:
        return render_viewer_html(self)

    def __repr__(self) -> str:
        return (
            f"TokenViewer(n_tokens={len(self.texts)}, shown={len(self.units)}, "
            f"expanded={self._expanded}, hovered={self.hovered_index})"
        )
