"""Tokenizer adapter: texts → ordered (ids, type_ids) encodings, no padding."""

from tokenizers import Tokenizer

from .errors import InvalidInput


def load_tokenizer(path) -> Tokenizer:
    """Load a tokenizer.json with padding and truncation switched off."""
    tokenizer = Tokenizer.from_file(str(path))
    return unpadded(tokenizer)


def unpadded(tokenizer: Tokenizer) -> Tokenizer:
    tokenizer.no_padding()
    tokenizer.no_truncation()
    return tokenizer


def encode_batch(tokenizer: Tokenizer, texts, add_special_tokens: bool = True) -> list:
    if isinstance(texts, str):
        texts = [texts]
    texts = list(texts)
    if not texts:
        raise InvalidInput("no texts to encode")
    return tokenizer.encode_batch(texts, add_special_tokens=add_special_tokens)
