"""
Tests for the interactive TokenViewer: expand/collapse, hover, click and
selection.
"""

from unittest.mock import MagicMock

import pytest

from tokenviewer.config import ViewerConfig
from tokenviewer.display import ELLIPSIS
from tokenviewer.viewer import TokenViewer


@pytest.fixture
def texts():
    return [f"t{i}" for i in range(50)]


@pytest.fixture
def activations():
    acts = [0.0] * 50
    acts[40] = 5.0
    acts[35] = 1.5
    return acts


@pytest.fixture
def shorthand_viewer(texts, activations):
    return TokenViewer(texts, activations, config=ViewerConfig(shorthand=True))


def test_initially_collapsed(shorthand_viewer):
    assert shorthand_viewer.is_collapsed
    assert not shorthand_viewer.is_expanded
    assert shorthand_viewer.show_toggle
    assert shorthand_viewer.units[0].text == ELLIPSIS
    assert (shorthand_viewer.window.start, shorthand_viewer.window.end) == (28, 50)


def test_toggle_round_trip(shorthand_viewer):
    collapsed = shorthand_viewer.window

    assert shorthand_viewer.toggle_expand() is True
    assert len(shorthand_viewer.units) == 50
    assert shorthand_viewer.units[0].text == "t0"

    assert shorthand_viewer.toggle_expand() is False
    assert shorthand_viewer.window == collapsed


def test_toggle_is_noop_without_shorthand(texts, activations):
    viewer = TokenViewer(texts, activations)
    assert not viewer.show_toggle
    assert not viewer.is_collapsed
    assert viewer.toggle_expand() is False
    assert len(viewer.units) == 50


def test_tooltip_hidden_while_collapsed(shorthand_viewer):
    # display index 13 -> token 40 (ellipsis occupies index 0)
    assert shorthand_viewer.units[13].token_index == 40
    shorthand_viewer.pointer_enter(13)
    assert shorthand_viewer.hovered_index == 13
    assert shorthand_viewer.hover_tooltip() is None


def test_tooltip_when_expanded(shorthand_viewer):
    shorthand_viewer.toggle_expand()
    shorthand_viewer.pointer_enter(40)
    assert shorthand_viewer.hover_tooltip() == "5.0000"

    shorthand_viewer.pointer_leave()
    assert shorthand_viewer.hovered_index is None
    assert shorthand_viewer.hover_tooltip() is None


def test_tooltip_skips_zero_and_missing_activations(texts, activations):
    viewer = TokenViewer(texts, activations)
    assert viewer.tooltip(0) is None
    assert viewer.tooltip(35) == "1.5000"

    no_acts = TokenViewer(texts)
    assert no_acts.tooltip(35) is None


def test_pointer_leave_other_unit_keeps_hover(shorthand_viewer):
    shorthand_viewer.pointer_enter(5)
    shorthand_viewer.pointer_leave(6)
    assert shorthand_viewer.hovered_index == 5
    shorthand_viewer.pointer_leave(5)
    assert shorthand_viewer.hovered_index is None


def test_stale_hover_index_discarded(shorthand_viewer):
    shorthand_viewer.toggle_expand()
    shorthand_viewer.pointer_enter(45)
    assert shorthand_viewer.hovered_index == 45

    shorthand_viewer.toggle_expand()
    # collapsed list has only 23 units
    assert shorthand_viewer.hovered_index is None
    assert "hovered" not in shorthand_viewer.render_html()


def test_click_invokes_action_once(texts, activations):
    actions = [MagicMock() for _ in texts]
    viewer = TokenViewer(texts, activations, actions=actions)

    assert viewer.click(7) is True
    actions[7].assert_called_once_with()
    for i, action in enumerate(actions):
        if i != 7:
            action.assert_not_called()


def test_click_without_action(texts):
    actions = [None] * len(texts)
    actions[2] = MagicMock()
    viewer = TokenViewer(texts, actions=actions)

    assert viewer.click(3) is False
    assert viewer.click(99) is False
    assert not viewer.is_clickable(3)
    assert viewer.is_clickable(2)

    no_actions = TokenViewer(texts)
    assert no_actions.click(0) is False


def test_click_in_window_uses_token_index(shorthand_viewer, texts):
    actions = [MagicMock() for _ in texts]
    shorthand_viewer.set_data(actions=actions)

    assert shorthand_viewer.click(0) is False  # ellipsis
    assert shorthand_viewer.click(1) is True
    actions[28].assert_called_once_with()


def test_short_action_table(texts):
    action = MagicMock()
    viewer = TokenViewer(texts, actions=[action])
    assert viewer.click(0) is True
    assert viewer.click(1) is False
    action.assert_called_once_with()


def test_highlight_token_selection(shorthand_viewer):
    shorthand_viewer.select(40)
    selected = [i for i in range(len(shorthand_viewer.units)) if shorthand_viewer.is_selected(i)]
    assert selected == [13]
    assert not shorthand_viewer.is_selected(0)


def test_summary_only_for_truncated_collapsed_window(shorthand_viewer, texts):
    assert shorthand_viewer.summary() == "5.0000"
    html = shorthand_viewer.render_html()
    assert "Max activation: 5.0000" in html
    assert "[Show all]" in html

    shorthand_viewer.toggle_expand()
    assert shorthand_viewer.summary() is None
    assert "[Show less]" in shorthand_viewer.render_html()

    early_peak = [0.0] * 50
    early_peak[2] = 1.0
    viewer = TokenViewer(texts, early_peak, config=ViewerConfig(shorthand=True))
    assert viewer.summary() is None


def test_no_controls_without_shorthand(texts, activations):
    html = TokenViewer(texts, activations).render_html()
    assert "token-viewer-controls" not in html


def test_set_data_recomputes(shorthand_viewer):
    shorthand_viewer.set_data(texts=["a", "b"], activations=[1.0, 2.0])
    assert [u.text for u in shorthand_viewer.units] == ["a", "b"]

    shorthand_viewer.set_data(texts=["x", "y", "z"])
    assert shorthand_viewer.activations is None
    assert all(u.activation is None for u in shorthand_viewer.units)


def test_set_config_recomputes(texts, activations):
    viewer = TokenViewer(texts, activations)
    assert len(viewer.units) == 50
    viewer.set_config(ViewerConfig(shorthand=True, window_size=10))
    assert (viewer.window.start, viewer.window.end) == (35, 45)
    assert len(viewer.units) == 11


def test_render_marks_clickable_and_selected(texts, activations):
    actions = [MagicMock() for _ in texts]
    viewer = TokenViewer(texts, activations, actions=actions, highlight_token=3)
    html = viewer.render_html()
    assert html.count("clickable") == 50
    assert html.count('class="token-span selected clickable') == 1
