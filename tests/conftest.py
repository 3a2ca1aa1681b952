import pytest
import torch
from tokenizers import Tokenizer, models, pre_tokenizers, processors

from packed_embed.config import Config
from packed_embed.model import PackedEmbedder

VOCAB = {
    "[UNK]": 0, "[CLS]": 1, "[SEP]": 2, "hello": 3, "world": 4,
    "packed": 5, "batch": 6, "no": 7, "padding": 8, "here": 9,
}


def tiny_config(**overrides) -> Config:
    settings = dict(
        vocab_size=50,
        hidden_size=16,
        num_hidden_layers=2,
        num_attention_heads=4,
        intermediate_size=32,
        max_position_embeddings=40,
        type_vocab_size=2,
        model_type="bert",
        device="cpu",
    )
    settings.update(overrides)
    return Config(**settings)


@pytest.fixture
def cfg():
    return tiny_config()


@pytest.fixture
def model(cfg):
    torch.manual_seed(0)
    return PackedEmbedder(cfg).eval()


@pytest.fixture
def tokenizer():
    tok = Tokenizer(models.WordLevel(VOCAB, unk_token="[UNK]"))
    tok.pre_tokenizer = pre_tokenizers.Whitespace()
    tok.post_processor = processors.TemplateProcessing(
        single="[CLS] $A [SEP]",
        special_tokens=[("[CLS]", VOCAB["[CLS]"]), ("[SEP]", VOCAB["[SEP]"])],
    )
    return tok
