"""
Sources of (tokens, activations) pairs for the viewer.

Two on-disk layouts are supported:

* JSONL record files, one ``{"id", "tokens", "activations"}`` object per
  line.  Records written by activation-collection scripts that store a
  ``features`` dict of per-token vectors are also accepted when a feature
  name is given.
* Cached latent activations: ``<start>_<end>.safetensors`` shards holding
  ``locations`` [n, 3] (batch, seq, latent), ``activations`` [n] and
  ``tokens`` [batch, seq].
"""

import glob
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import torch
from safetensors import safe_open

logger = logging.getLogger(__name__)


@dataclass
class TokenRecord:
    id: str
    tokens: List[str]
    activations: Optional[List[float]] = None
    meta: dict = field(default_factory=dict)

    @property
    def display(self) -> str:
        """Dropdown label, e.g. ``"ex_pii_address (42 tokens)"``."""
        return f"{self.id} ({len(self.tokens)} tokens)"


# ---------------------------------------------------------------------------
# JSONL records
# ---------------------------------------------------------------------------
def discover_record_files(records_dir: Union[str, Path]) -> List[str]:
    """Return JSONL files under *records_dir* (recursive, symlinks followed)."""
    records_dir = Path(records_dir)
    if not records_dir.is_dir():
        return []
    return sorted(glob.glob(str(records_dir / "**/*.jsonl"), recursive=True))


def _record_from_json(
    obj: dict, line_no: int, feature: Optional[str]
) -> Optional[TokenRecord]:
    tokens = obj.get("tokens")
    if not isinstance(tokens, list) or not tokens:
        return None

    activations = obj.get("activations")
    if feature is not None:
        activations = (obj.get("features") or {}).get(feature)
        if activations is None:
            return None

    return TokenRecord(
        id=str(obj.get("id", line_no)),
        tokens=[str(t) for t in tokens],
        activations=[float(a) for a in activations] if activations else None,
        meta={k: v for k, v in obj.items() if k not in ("tokens", "activations", "features")},
    )


def read_records(
    path: Union[str, Path], feature: Optional[str] = None
) -> List[TokenRecord]:
    """Read all usable records from a JSONL file.

    Malformed lines and records without tokens are skipped with a warning.
    """
    path = Path(path)
    if not path.exists():
        logger.warning("Record file %s does not exist", path)
        return []

    records = []
    # Undecodable bytes become U+FFFD so the line fails JSON parsing below
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line_no, line in enumerate(f):
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
                record = _record_from_json(obj, line_no, feature)
            except (json.JSONDecodeError, TypeError, ValueError, AttributeError):
                logger.warning(
                    "Skipping malformed line %d in %s", line_no + 1, path, exc_info=True
                )
                continue
            if record is None:
                logger.warning("Skipping line %d in %s: no usable tokens", line_no + 1, path)
                continue
            records.append(record)
    logger.info("Loaded %d records from %s", len(records), path)
    return records


def write_records(
    path: Union[str, Path], records: List[TokenRecord], append: bool = False
) -> None:
    """Write records as JSONL; with *append* they are added to an existing file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a" if append else "w", encoding="utf-8") as f:
        for rec in records:
            obj = {"id": rec.id, "tokens": rec.tokens, "activations": rec.activations}
            obj.update(rec.meta)
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")


# ---------------------------------------------------------------------------
# Cached latent activations
# ---------------------------------------------------------------------------
def load_tokenizer(tokenizer_path: Optional[str]):
    """Load a HF tokenizer, or return None if it cannot be loaded."""
    if not tokenizer_path:
        return None
    try:
        from transformers import AutoTokenizer

        return AutoTokenizer.from_pretrained(tokenizer_path, use_fast=True)
    except Exception:
        logger.warning("Failed to load tokenizer from %s", tokenizer_path, exc_info=True)
        return None


def find_shard(cache_dir: Union[str, Path], latent_idx: int) -> Optional[Path]:
    """Return the ``<start>_<end>.safetensors`` shard covering *latent_idx*."""
    for shard in sorted(Path(cache_dir).glob("*.safetensors")):
        parts = shard.stem.split("_")
        if len(parts) == 2 and parts[0].isdigit() and parts[1].isdigit():
            start, end = int(parts[0]), int(parts[1])
            if start <= latent_idx <= end:
                return shard
    return None


def load_top_activating_records(
    cache_dir: Union[str, Path],
    latent_idx: int,
    n_examples: int = 10,
    tokenizer=None,
) -> List[TokenRecord]:
    """Top-*n_examples* token rows for one latent, highest peak first.

    Each returned record carries the full token row; its activation vector is
    zero except at the positions where the latent fired.
    """
    shard = find_shard(cache_dir, latent_idx)
    if shard is None:
        logger.warning("No safetensors shard in %s contains latent %d", cache_dir, latent_idx)
        return []

    with safe_open(str(shard), framework="pt", device="cpu") as f:
        locations = f.get_tensor("locations")  # [n_activations, 3]
        activations_all = f.get_tensor("activations")  # [n_activations]
        tokens_all = f.get_tensor("tokens")  # [batch, sequence]

    # Latent ids in the shard are relative to its start
    locations = locations.to(torch.int64)
    local_latent_idx = latent_idx - int(shard.stem.split("_")[0])

    mask = locations[:, 2] == local_latent_idx
    if not mask.any():
        return []
    latent_locs = locations[mask]
    latent_acts = activations_all[mask].float()

    batch_positions = defaultdict(dict)  # batch_idx -> {seq_idx: activation}
    for (batch_idx, seq_idx, _), act in zip(latent_locs.tolist(), latent_acts.tolist()):
        batch_positions[batch_idx][seq_idx] = act

    top_batches = sorted(
        batch_positions.items(),
        key=lambda item: max(item[1].values()),
        reverse=True,
    )[:n_examples]

    records = []
    for rank, (batch_idx, positions) in enumerate(top_batches):
        token_ids = tokens_all[batch_idx]
        if tokenizer is not None:
            tokens = [str(t) for t in tokenizer.convert_ids_to_tokens(token_ids.tolist())]
        else:
            tokens = [f"tok_{tid}" for tid in token_ids.tolist()]
        activations = [0.0] * len(tokens)
        for seq_idx, act in positions.items():
            if seq_idx < len(activations):
                activations[seq_idx] = act
        records.append(
            TokenRecord(
                id=f"rank{rank + 1}_batch{batch_idx}",
                tokens=tokens,
                activations=activations,
                meta={
                    "latent": latent_idx,
                    "batch": batch_idx,
                    "max_activation": max(positions.values()),
                    "n_positions": len(positions),
                },
            )
        )
    return records
