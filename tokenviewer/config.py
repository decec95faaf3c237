"""
Configuration for the token viewer and its Gradio dashboard.

``ViewerConfig`` is validated on construction so that a bad percentile or
window size fails loudly at the edge instead of producing a silently wrong
display.  ``DashboardConfig`` is an OmegaConf structured config; YAML files
and ``key=value`` overrides are merged on top of its defaults.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from omegaconf import OmegaConf

logger = logging.getLogger(__name__)

LENGTH_POLICIES = ("clamp", "reject")


class ViewerConfigError(ValueError):
    """Raised for invalid viewer configuration or rejected inputs."""


@dataclass(frozen=True)
class ViewerConfig:
    """Display settings for one ``TokenViewer``.

    Args:
        shorthand: Show only a window around the peak token until expanded.
        activation_percentile: Highlight cutoff, in percent (0-100].  A value
            of 90 highlights roughly the top 10% of tokens.
        window_size: Number of tokens shown in collapsed shorthand mode.
        opacity_floor: Lowest opacity assigned by normalization.
        length_policy: What to do when ``texts`` and ``activations`` differ in
            length; ``"clamp"`` treats missing entries as "no activation",
            ``"reject"`` raises ``ViewerConfigError``.
    """

    shorthand: bool = False
    activation_percentile: float = 90.0
    window_size: int = 24
    opacity_floor: float = 0.4
    length_policy: str = "clamp"

    def __post_init__(self):
        pct = self.activation_percentile
        if isinstance(pct, bool) or not isinstance(pct, (int, float)):
            raise ViewerConfigError(
                f"activation_percentile must be a number, got {pct!r}"
            )
        if not 0 < pct <= 100:
            raise ViewerConfigError(
                f"activation_percentile is a percentage in (0, 100], got {pct}"
            )
        if pct < 1:
            # 0.9 is almost always a fraction meant as 90%
            logger.warning(
                "activation_percentile=%s is below 1%%; it is read as a "
                "percentage, not a fraction",
                pct,
            )
        if isinstance(self.window_size, bool) or not isinstance(self.window_size, int):
            raise ViewerConfigError(
                f"window_size must be an int, got {self.window_size!r}"
            )
        if self.window_size < 1:
            raise ViewerConfigError(f"window_size must be >= 1, got {self.window_size}")
        if not 0 <= self.opacity_floor < 1:
            raise ViewerConfigError(
                f"opacity_floor must be in [0, 1), got {self.opacity_floor}"
            )
        if self.length_policy not in LENGTH_POLICIES:
            raise ViewerConfigError(
                f"Invalid length_policy: {self.length_policy}. "
                f"Must be one of {', '.join(LENGTH_POLICIES)}"
            )


@dataclass
class ViewerSection:
    """OmegaConf-friendly mirror of ``ViewerConfig`` (mutable, no validation)."""

    shorthand: bool = True
    activation_percentile: float = 90.0
    window_size: int = 24
    opacity_floor: float = 0.4
    length_policy: str = "clamp"


@dataclass
class DashboardConfig:
    records_dir: str = "outputs"
    cache_dir: str = "delphi_cache"
    tokenizer_path: Optional[str] = None
    server_name: str = "0.0.0.0"
    server_port: int = 7860
    n_examples: int = 10
    viewer: ViewerSection = field(default_factory=ViewerSection)

    def viewer_config(self) -> ViewerConfig:
        return ViewerConfig(
            shorthand=bool(self.viewer.shorthand),
            activation_percentile=float(self.viewer.activation_percentile),
            window_size=int(self.viewer.window_size),
            opacity_floor=float(self.viewer.opacity_floor),
            length_policy=str(self.viewer.length_policy),
        )


def load_dashboard_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[List[str]] = None,
) -> DashboardConfig:
    """Merge structured defaults, an optional YAML file and dotlist overrides.

    Example:
        cfg = load_dashboard_config("config/dashboard.yaml",
                                    ["viewer.activation_percentile=95"])

    The viewer section is validated eagerly so a bad file fails at startup.
    """
    cfg = OmegaConf.structured(DashboardConfig)
    if path is not None:
        path = Path(path)
        if path.exists():
            cfg = OmegaConf.merge(cfg, OmegaConf.load(path))
        else:
            logger.warning("Config file %s not found, using defaults", path)
    if overrides:
        cfg = OmegaConf.merge(cfg, OmegaConf.from_dotlist(list(overrides)))

    dashboard_cfg = OmegaConf.to_object(cfg)
    dashboard_cfg.viewer_config()
    logger.info("Dashboard config:\n%s", OmegaConf.to_yaml(cfg))
    return dashboard_cfg
