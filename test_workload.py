"""
Tests for workload loading and synthetic window generation.
"""

import numpy as np
import pytest

from poa_batcher.config import RunConfig
from poa_batcher.workload import (
    Sequence,
    generate_windows,
    generate_workload,
    group_max_length,
    group_total_bases,
    load_window_csv,
    make_groups,
    parse_window_data_file,
)


WINDOW_FILE = """3
ACGTACGT
ACGTACG
ACGTTCGT

2
GGGA
GGGT
1
TTTT
"""


def test_parse_window_data_file(tmp_path):
    path = tmp_path / "windows.txt"
    path.write_text(WINDOW_FILE)

    windows = parse_window_data_file(str(path))

    assert windows == [
        ["ACGTACGT", "ACGTACG", "ACGTTCGT"],
        ["GGGA", "GGGT"],
        ["TTTT"],
    ]


def test_parse_window_data_file_limit(tmp_path):
    path = tmp_path / "windows.txt"
    path.write_text(WINDOW_FILE)

    assert len(parse_window_data_file(str(path), max_windows=2)) == 2
    assert parse_window_data_file(str(path), max_windows=0) == []


def test_parse_window_data_file_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        parse_window_data_file(str(tmp_path / "missing.txt"))

    bad_count = tmp_path / "bad_count.txt"
    bad_count.write_text("ACGT\n")
    with pytest.raises(ValueError, match="expected read count"):
        parse_window_data_file(str(bad_count))

    truncated = tmp_path / "truncated.txt"
    truncated.write_text("3\nACGT\nACGT\n")
    with pytest.raises(ValueError, match="declares 3 reads, found 2"):
        parse_window_data_file(str(truncated))


def test_load_window_csv(tmp_path):
    path = tmp_path / "windows.csv"
    path.write_text(
        "window_id,sequence\n"
        "7,AAAA\n"
        "3,CCCC\n"
        "7,AAAT\n"
        "3,CCCG\n"
        "9,GGGG\n"
    )

    windows = load_window_csv(str(path))
    assert windows == [["AAAA", "AAAT"], ["CCCC", "CCCG"], ["GGGG"]]
    assert load_window_csv(str(path), max_windows=1) == [["AAAA", "AAAT"]]


def test_load_window_csv_requires_columns(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("id,value\n1,AAAA\n")

    with pytest.raises(ValueError, match="CSV must have"):
        load_window_csv(str(path))


def test_sequence_from_string():
    seq = Sequence("ACGT")

    assert seq.data == b"ACGT"
    assert len(seq) == 4
    assert seq.weights is None


def test_sequence_weight_length_checked():
    with pytest.raises(ValueError, match="weights length"):
        Sequence("ACGT", weights=[1, 2])


@pytest.mark.parametrize("weights, match", [
    ([300, 256], "between 0 and 255"),
    ([-1, 4], "between 0 and 255"),
    ([0.5, 0.7], "whole numbers"),
    ([1, float("nan")], "whole numbers"),
])
def test_sequence_weights_rejected(weights, match):
    with pytest.raises(ValueError, match=match):
        Sequence(b"AC", weights=weights)


def test_sequence_weights_integral_floats_accepted():
    seq = Sequence(b"AC", weights=[3.0, 255.0])

    assert seq.weights.tolist() == [3, 255]
    assert seq.weights.dtype == np.uint8


def test_group_helpers():
    group = make_groups([["ACGT", "AC", "ACGTACGT"]])[0]

    assert group_total_bases(group) == 14
    assert group_max_length(group) == 8
    assert group_max_length([]) == 0


def test_generate_windows_deterministic():
    first = generate_windows(20, seed=7)
    second = generate_windows(20, seed=7)
    other = generate_windows(20, seed=8)

    assert first == second
    assert first != other
    assert all(len(window) >= 2 for window in first)
    assert all(set("".join(window)) <= set("ACGT") for window in first)


def test_generate_windows_long_read_shapes():
    short = generate_windows(10, seed=1, long_read=False)
    long = generate_windows(10, seed=1, long_read=True)

    short_max = max(len(r) for w in short for r in w)
    long_max = max(len(r) for w in long for r in w)
    assert long_max > short_max


def test_generate_workload_synthetic(capsys):
    groups = generate_workload(RunConfig(NUM_WINDOWS=12))

    assert len(groups) == 12
    assert isinstance(groups[0][0], Sequence)
    assert "Generated 12 synthetic short-read windows" in capsys.readouterr().out


def test_generate_workload_from_file(tmp_path, capsys):
    path = tmp_path / "windows.txt"
    path.write_text(WINDOW_FILE)

    groups = generate_workload(RunConfig(DATASET_PATH=str(path), NUM_WINDOWS=2))
    assert len(groups) == 2

    # long-read sample loads every window
    groups = generate_workload(RunConfig(DATASET_PATH=str(path), NUM_WINDOWS=2, LONG_READ=True))
    assert len(groups) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
