import pytest
import torch

from packed_embed.batch import Batch, build_batch
from packed_embed.errors import InvalidInput, InvariantViolation


def _seqs(*lengths):
    return [(list(range(1, n + 1)), None) for n in lengths]


def test_cumulative_lengths_follow_input_order():
    batch = build_batch(_seqs(3, 5, 2))
    assert batch.cumulative_seq_lengths.tolist() == [0, 3, 8, 10]
    assert batch.num_sequences == 3
    assert batch.num_tokens == 10
    assert batch.max_length == 5
    assert batch.seq_lengths().tolist() == [3, 5, 2]


def test_flat_arrays_share_total_length():
    batch = build_batch([([7, 8], [0, 1]), ([9], [1])])
    assert batch.input_ids.tolist() == [7, 8, 9]
    assert batch.token_type_ids.tolist() == [0, 1, 1]
    assert len(batch.position_ids) == batch.cumulative_seq_lengths[-1].item()
    assert batch.cumulative_seq_lengths[0].item() == 0


def test_position_ids_restart_per_sequence_at_offset():
    batch = build_batch(_seqs(3, 2), position_offset=2)
    assert batch.position_ids.tolist() == [2, 3, 4, 2, 3]
    assert build_batch(_seqs(3, 2)).position_ids.tolist() == [0, 1, 2, 0, 1]


def test_missing_type_ids_default_to_zero():
    batch = build_batch([([4, 5, 6], None)])
    assert batch.token_type_ids.tolist() == [0, 0, 0]


def test_accepts_tokenizer_encodings(tokenizer):
    encodings = tokenizer.encode_batch(["hello world", "packed batch no padding"])
    batch = build_batch(encodings)
    assert batch.cumulative_seq_lengths.tolist() == [0, 4, 10]
    assert batch.input_ids[:4].tolist() == [1, 3, 4, 2]


def test_empty_batch_rejected():
    with pytest.raises(InvalidInput):
        build_batch([])


def test_zero_length_sequence_rejected():
    with pytest.raises(InvalidInput, match="sequence 1 is empty"):
        build_batch([([1, 2], None), ([], None)])


def test_mismatched_type_ids_rejected():
    with pytest.raises(InvalidInput):
        build_batch([([1, 2, 3], [0, 0])])


@pytest.mark.parametrize("offset", [-1, 1.5, True])
def test_bad_position_offset_rejected(offset):
    with pytest.raises(InvalidInput):
        build_batch(_seqs(2), position_offset=offset)


def test_batch_is_immutable():
    batch = build_batch(_seqs(2))
    with pytest.raises(AttributeError):
        batch.max_length = 7


def _raw_batch(cu, max_length, tokens=None):
    tokens = cu[-1] if tokens is None else tokens
    ids = torch.zeros(tokens, dtype=torch.long)
    return Batch(ids, ids.clone(), ids.clone(), torch.tensor(cu, dtype=torch.long), max_length)


def test_validate_catches_wrong_max_length():
    with pytest.raises(InvariantViolation, match="max_length"):
        _raw_batch([0, 3, 8], max_length=8).validate()


def test_validate_catches_non_monotonic_offsets():
    with pytest.raises(InvariantViolation):
        _raw_batch([0, 5, 3, 8], max_length=5).validate()


def test_validate_catches_wrong_final_offset():
    with pytest.raises(InvariantViolation):
        _raw_batch([0, 3, 8], max_length=5, tokens=9).validate()


def test_validate_catches_nonzero_start():
    with pytest.raises(InvariantViolation):
        _raw_batch([1, 3], max_length=2, tokens=3).validate()
