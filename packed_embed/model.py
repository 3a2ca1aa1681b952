"""PackedEmbedder: full embedding pipeline.

Forward pass: pack → encode → (splade head) → pool → normalize
"""

import torch
import torch.nn as nn

from .batch import Batch, build_batch
from .encoder import PackedEncoder, build_splade_head
from .errors import InvalidInput
from .normalize import normalize_l2
from .pooling import PoolingMode, pool
from .tokenization import encode_batch


class PackedEmbedder(nn.Module):
    def __init__(self, cfg):
        super().__init__()
        self.cfg = cfg.validate()
        self.encoder = PackedEncoder(cfg)
        self.splade_head = build_splade_head(cfg, self.encoder)

    def embedding_dim(self, pooling_mode=None) -> int:
        """Width of embed() rows under pooling_mode (default: the configured mode)."""
        mode = self.cfg.pooling if pooling_mode is None else PoolingMode.parse(pooling_mode)
        if mode is PoolingMode.SPLADE:
            return self.cfg.vocab_size
        return self.cfg.hidden_size

    @property
    def device(self):
        return self.encoder.embeddings.token_embed.weight.device

    def forward(self, batch: Batch, pooling_mode=None) -> torch.Tensor:
        """
        Args:
            batch: packed Batch
            pooling_mode: overrides cfg.pooling when given
        Returns:
            (num_sequences, embedding_dim) pooled, un-normalized embeddings
        """
        mode = self.cfg.pooling if pooling_mode is None else PoolingMode.parse(pooling_mode)
        if mode is PoolingMode.SPLADE and self.splade_head is None:
            raise InvalidInput("splade pooling needs a model configured with pooling='splade'")

        batch = batch.to(self.device)
        hidden = self.encoder(batch)  # (T, D)
        if mode is PoolingMode.SPLADE:
            hidden = self.splade_head(hidden)  # (T, vocab)
        return pool(hidden, batch.cumulative_seq_lengths, mode)

    @torch.no_grad()
    def embed(self, sequences, pooling_mode=None, position_offset=None,
              normalize=None) -> torch.Tensor:
        """Embed tokenized sequences; one output row per input, same order."""
        if position_offset is None:
            position_offset = self.cfg.resolve_position_offset()
        if normalize is None:
            normalize = self.cfg.normalize_embeddings

        batch = build_batch(sequences, position_offset)
        pooled = self.forward(batch, pooling_mode)
        if normalize:
            pooled = normalize_l2(pooled, self.cfg.zero_norm_policy)
        return pooled

    def embed_texts(self, tokenizer, texts, **kwargs) -> torch.Tensor:
        return self.embed(encode_batch(tokenizer, texts), **kwargs)

    def count_params(self) -> dict:
        """Count parameters by component."""
        def _count(module):
            return sum(p.numel() for p in module.parameters())

        counts = {
            "embeddings": _count(self.encoder.embeddings),
            "blocks": _count(self.encoder.blocks),
            "total": _count(self),
        }
        if self.splade_head is not None:
            tied = self.encoder.embeddings.token_embed.weight.data_ptr()
            counts["splade_head"] = sum(p.numel() for p in self.splade_head.parameters()
                                        if p.data_ptr() != tied)
        return counts
