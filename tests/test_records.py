"""
Tests for JSONL record files and cached safetensors activations.
"""

import json
import logging
from unittest.mock import MagicMock

import pytest
import torch
from safetensors.torch import save_file

from tokenviewer.records import (
    TokenRecord,
    discover_record_files,
    find_shard,
    load_top_activating_records,
    read_records,
    write_records,
)


@pytest.fixture
def record_file(tmp_path):
    path = tmp_path / "records" / "examples.jsonl"
    path.parent.mkdir()
    lines = [
        json.dumps({"id": "ex_a", "tokens": ["The", " cat"], "activations": [0.1, 2.0]}),
        "",
        "{not json",
        json.dumps({"id": "ex_empty", "tokens": []}),
        json.dumps({"id": "ex_b", "tokens": ["Hi", "\n"], "source": "manual"}),
        json.dumps(
            {
                "id": "ex_feat",
                "tokens": ["1", "2", "3"],
                "features": {"digits_610": [0.5, 0.0, 1.0]},
            }
        ),
    ]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def cache_dir(tmp_path):
    """One shard covering latents 0..9 with hits for latents 0 and 1."""
    shard_dir = tmp_path / "cache" / "mlp_k64" / "layer18"
    shard_dir.mkdir(parents=True)
    save_file(
        {
            "locations": torch.tensor(
                [[0, 3, 1], [1, 2, 1], [1, 5, 1], [0, 1, 0]], dtype=torch.int32
            ),
            "activations": torch.tensor([0.5, 2.0, 1.0, 9.0]),
            "tokens": torch.tensor(
                [[10, 11, 12, 13, 14, 15], [20, 21, 22, 23, 24, 25]], dtype=torch.int64
            ),
        },
        str(shard_dir / "0_9.safetensors"),
    )
    return shard_dir


def test_discover_record_files(record_file, tmp_path):
    assert discover_record_files(tmp_path) == [str(record_file)]
    assert discover_record_files(tmp_path / "nope") == []


def test_read_records_skips_bad_lines(record_file, caplog):
    with caplog.at_level(logging.WARNING):
        records = read_records(record_file)

    assert [r.id for r in records] == ["ex_a", "ex_b", "ex_feat"]
    assert records[0].activations == [0.1, 2.0]
    assert records[1].activations is None
    assert records[1].meta == {"id": "ex_b", "source": "manual"}
    assert "malformed line 3" in caplog.text


def test_read_records_feature(record_file):
    records = read_records(record_file, feature="digits_610")
    assert [r.id for r in records] == ["ex_feat"]
    assert records[0].activations == [0.5, 0.0, 1.0]


def test_read_missing_file(tmp_path):
    assert read_records(tmp_path / "missing.jsonl") == []


def test_write_then_read(tmp_path):
    path = tmp_path / "out" / "records.jsonl"
    write_records(path, [TokenRecord(id="r1", tokens=["a", "b"], activations=[1.0, 0.0])])
    records = read_records(path)
    assert records[0].tokens == ["a", "b"]
    assert records[0].display == "r1 (2 tokens)"


def test_find_shard(cache_dir):
    assert find_shard(cache_dir, 1).name == "0_9.safetensors"
    assert find_shard(cache_dir, 10) is None


def test_top_activating_records(cache_dir):
    records = load_top_activating_records(cache_dir, latent_idx=1, n_examples=10)

    assert [r.meta["batch"] for r in records] == [1, 0]
    top = records[0]
    assert top.tokens == ["tok_20", "tok_21", "tok_22", "tok_23", "tok_24", "tok_25"]
    assert top.activations == [0.0, 0.0, 2.0, 0.0, 0.0, 1.0]
    assert top.meta["max_activation"] == 2.0
    assert top.meta["n_positions"] == 2
    assert records[1].activations[3] == 0.5


def test_top_activating_records_limit(cache_dir):
    records = load_top_activating_records(cache_dir, latent_idx=1, n_examples=1)
    assert len(records) == 1
    assert records[0].meta["batch"] == 1


def test_top_activating_records_with_tokenizer(cache_dir):
    tokenizer = MagicMock()
    tokenizer.convert_ids_to_tokens.side_effect = lambda ids: [f"w{i}" for i in ids]

    records = load_top_activating_records(cache_dir, latent_idx=0, tokenizer=tokenizer)
    assert len(records) == 1
    assert records[0].tokens[0] == "w10"
    assert records[0].activations[1] == 9.0


def test_top_activating_records_no_hits(cache_dir):
    assert load_top_activating_records(cache_dir, latent_idx=5) == []
    assert load_top_activating_records(cache_dir, latent_idx=42) == []


def test_read_records_with_undecodable_bytes(tmp_path, caplog):
    path = tmp_path / "broken.jsonl"
    path.write_bytes(
        b'{"id": "a", "tokens": ["x"]}\n'
        b"\xff\xfe bad\n"
        b'{"id": "b", "tokens": ["y", "z"]}\n'
    )
    with caplog.at_level(logging.WARNING):
        records = read_records(path)

    assert [r.id for r in records] == ["a", "b"]
    assert "malformed line 2" in caplog.text


def test_write_records_append(tmp_path):
    path = tmp_path / "records.jsonl"
    write_records(path, [TokenRecord(id="r1", tokens=["a"])])
    write_records(path, [TokenRecord(id="r2", tokens=["b"])], append=True)
    assert [r.id for r in read_records(path)] == ["r1", "r2"]
