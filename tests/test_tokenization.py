import pytest

from packed_embed.errors import InvalidInput
from packed_embed.tokenization import encode_batch, load_tokenizer


def test_encode_batch_keeps_order_and_lengths(tokenizer):
    encodings = encode_batch(tokenizer, ["hello world", "packed batch no padding here", "hello"])
    assert [e.ids for e in encodings] == [
        [1, 3, 4, 2],
        [1, 5, 6, 7, 8, 9, 2],
        [1, 3, 2],
    ]
    assert all(e.type_ids == [0] * len(e.ids) for e in encodings)


def test_loaded_tokenizer_does_not_pad(tokenizer, tmp_path):
    tokenizer.enable_padding(length=16)
    path = tmp_path / "tokenizer.json"
    tokenizer.save(str(path))
    loaded = load_tokenizer(path)
    encodings = encode_batch(loaded, ["hello", "hello world"])
    assert [len(e.ids) for e in encodings] == [3, 4]


def test_single_string_is_one_sequence(tokenizer):
    assert len(encode_batch(tokenizer, "hello world")) == 1


def test_no_texts(tokenizer):
    with pytest.raises(InvalidInput):
        encode_batch(tokenizer, [])
