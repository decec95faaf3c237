"""
Display-state computation for token activation views.

Everything here is a pure function of (texts, activations, config, expanded):
normalization to an opacity range, the percentile cutoff used for
highlighting, and the shorthand window centred on the peak token.  The
interactive side lives in ``tokenviewer.viewer``.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import torch

from tokenviewer.config import ViewerConfig, ViewerConfigError

logger = logging.getLogger(__name__)

ELLIPSIS = "..."
NEUTRAL_OPACITY = 1.0


@dataclass(frozen=True)
class DisplayUnit:
    """One renderable token.

    ``token_index`` points back into the original token sequence and is None
    for the ellipsis marker.  ``activation`` is the raw (un-normalized) value,
    None when the token has no activation.
    """

    text: str
    opacity: float = NEUTRAL_OPACITY
    highlighted: bool = False
    token_index: Optional[int] = None
    activation: Optional[float] = None

    @property
    def is_ellipsis(self) -> bool:
        return self.token_index is None


@dataclass(frozen=True)
class DisplayWindow:
    """Units to render plus the token range ``[start, end)`` they cover."""

    units: Tuple[DisplayUnit, ...]
    start: int
    end: int
    collapsed: bool
    threshold: Optional[float] = None
    peak_activation: Optional[float] = None

    @property
    def truncated(self) -> bool:
        return self.start > 0

    def __len__(self) -> int:
        return len(self.units)


def _as_tensor(activations) -> Optional[torch.Tensor]:
    """Flatten a list / tensor of activations to float64, None if empty."""
    if activations is None:
        return None
    values = torch.as_tensor(activations, dtype=torch.float64).detach().cpu().flatten()
    if values.numel() == 0:
        return None
    return values


def as_activation_list(activations) -> Optional[List[float]]:
    values = _as_tensor(activations)
    return None if values is None else values.tolist()


# ---------------------------------------------------------------------------
# Normalizer / thresholder
# ---------------------------------------------------------------------------
def normalize_activations(
    activations, opacity_floor: float = 0.4
) -> Optional[List[float]]:
    """Rescale activations linearly into ``[opacity_floor, 1.0]``.

    Returns None when there is nothing to normalize.  A constant vector maps
    to all ones so a uniform sequence is shown fully opaque.
    """
    values = _as_tensor(activations)
    if values is None:
        return None
    a_min = values.min()
    a_max = values.max()
    if a_max == a_min:
        return [1.0] * values.numel()
    span = 1.0 - opacity_floor
    return (opacity_floor + span * ((values - a_min) / (a_max - a_min))).tolist()


def activation_threshold(activations, percentile: float = 90.0) -> float:
    """Cutoff value at ``percentile`` (0-100) of the sorted activations.

    The sort index is clamped to the last element, so ``percentile=100``
    yields the maximum instead of reading past the end.
    """
    values = _as_tensor(activations)
    if values is None:
        return 0.0
    sorted_values, _ = torch.sort(values)
    n = sorted_values.numel()
    index = min(int(math.floor(n * percentile / 100)), n - 1)
    return sorted_values[max(index, 0)].item()


def highlight_mask(activations, threshold: float) -> List[bool]:
    values = _as_tensor(activations)
    if values is None:
        return []
    return (values >= threshold).tolist()


def peak_index(activations) -> Optional[int]:
    """Index of the largest activation; first occurrence on ties."""
    values = _as_tensor(activations)
    if values is None:
        return None
    return int(torch.argmax(values).item())


# ---------------------------------------------------------------------------
# Window selection
# ---------------------------------------------------------------------------
def align_activations(
    texts: Sequence[str], activations, length_policy: str = "clamp"
) -> Optional[List[float]]:
    """Return activations usable for ``texts``, or None when there are none.

    Under ``"clamp"`` a longer vector is cut to ``len(texts)`` and a shorter
    one leaves the trailing tokens without an activation.  ``"reject"``
    raises ``ViewerConfigError`` on any mismatch.
    """
    values = as_activation_list(activations)
    if values is None:
        return None
    if len(values) != len(texts):
        if length_policy == "reject":
            raise ViewerConfigError(
                f"Length mismatch: {len(texts)} tokens but {len(values)} activations"
            )
        logger.warning(
            "Length mismatch: %d tokens but %d activations, clamping to %d",
            len(texts),
            len(values),
            min(len(texts), len(values)),
        )
        values = values[: len(texts)]
    return values or None


def window_bounds(
    n_tokens: int, peak: Optional[int], window_size: int
) -> Tuple[int, int]:
    """``[start, end)`` of the shorthand window around ``peak``."""
    if peak is None:
        return 0, min(n_tokens, window_size)
    start = max(0, peak - window_size // 2)
    return start, min(n_tokens, start + window_size)


def compute_display_window(
    texts: Sequence[str],
    activations=None,
    config: Optional[ViewerConfig] = None,
    expanded: bool = False,
) -> DisplayWindow:
    """Build the list of display units for the current mode.

    Opacity and highlight are always computed against the full activation
    vector, so a windowed unit looks the same as it does in the full view.
    When collapsed and the window does not start at token 0, an ellipsis unit
    is prepended.
    """
    config = config or ViewerConfig()
    texts = list(texts)
    raw = align_activations(texts, activations, config.length_policy)

    normalized = normalize_activations(raw, config.opacity_floor)
    threshold = (
        activation_threshold(raw, config.activation_percentile)
        if raw is not None
        else None
    )
    highlighted = highlight_mask(raw, threshold) if raw is not None else []

    def make_unit(i: int) -> DisplayUnit:
        act = raw[i] if raw is not None and i < len(raw) else None
        if act is None:
            return DisplayUnit(text=texts[i], token_index=i)
        return DisplayUnit(
            text=texts[i],
            opacity=normalized[i],
            highlighted=highlighted[i],
            token_index=i,
            activation=act,
        )

    collapsed = config.shorthand and not expanded
    if collapsed:
        peak = peak_index(raw) if raw is not None else None
        start, end = window_bounds(len(texts), peak, config.window_size)
    else:
        start, end = 0, len(texts)

    units = [make_unit(i) for i in range(start, end)]
    if collapsed and start > 0:
        units.insert(0, DisplayUnit(text=ELLIPSIS))

    return DisplayWindow(
        units=tuple(units),
        start=start,
        end=end,
        collapsed=collapsed,
        threshold=threshold,
        peak_activation=max(raw) if raw is not None else None,
    )
