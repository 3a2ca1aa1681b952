"""Packed BERT-family encoder: flat (tokens, hidden) in, flat (tokens, hidden) out.

Sequences share one token buffer. Attention runs per sequence: sequences of
equal length are gathered into one (B, L) block so no score is ever computed
between tokens of different sequences.
"""

import math

import torch
import torch.nn as nn
import torch.nn.functional as F

from .batch import Batch
from .errors import InvalidInput, ShapeMismatch
from .pooling import PoolingMode

_ACTIVATIONS = {
    "gelu": lambda: nn.GELU(),
    "gelu_new": lambda: nn.GELU(approximate="tanh"),
    "gelu_pytorch_tanh": lambda: nn.GELU(approximate="tanh"),
    "relu": lambda: nn.ReLU(),
}


def make_activation(name: str) -> nn.Module:
    if name not in _ACTIVATIONS:
        raise InvalidInput(f"unsupported hidden_act {name!r}")
    return _ACTIVATIONS[name]()


def length_buckets(cu_seqlens: torch.Tensor) -> list:
    """
    Group packed sequences by length for attention.

    Returns a list of (num_seqs, length) long tensors; row j holds the flat
    token indices of one sequence. Every token appears in exactly one bucket.
    """
    starts = cu_seqlens[:-1]
    lengths = cu_seqlens[1:] - starts
    buckets = []
    for length in torch.unique(lengths).tolist():
        bucket_starts = starts[lengths == length]
        offsets = torch.arange(length, device=cu_seqlens.device)
        buckets.append(bucket_starts.unsqueeze(1) + offsets)
    return buckets


class Embeddings(nn.Module):
    def __init__(self, vocab_size: int, d_model: int, max_positions: int,
                 type_vocab_size: int, eps: float = 1e-12):
        super().__init__()
        self.token_embed = nn.Embedding(vocab_size, d_model)
        self.pos_embed = nn.Embedding(max_positions, d_model)
        self.type_embed = nn.Embedding(type_vocab_size, d_model)
        self.norm = nn.LayerNorm(d_model, eps=eps)

    def forward(self, input_ids, token_type_ids, position_ids) -> torch.Tensor:
        """
        Args:
            input_ids, token_type_ids, position_ids: (total_tokens,) long tensors
        Returns:
            (total_tokens, d_model) float tensor
        """
        x = self.token_embed(input_ids) + self.type_embed(token_type_ids) + self.pos_embed(position_ids)
        return self.norm(x)


class PackedSelfAttention(nn.Module):
    def __init__(self, d_model: int, n_heads: int):
        super().__init__()
        if d_model % n_heads != 0:
            raise ShapeMismatch(f"hidden size {d_model} not divisible by {n_heads} heads")
        self.n_heads = n_heads
        self.head_dim = d_model // n_heads
        self.q_proj = nn.Linear(d_model, d_model)
        self.k_proj = nn.Linear(d_model, d_model)
        self.v_proj = nn.Linear(d_model, d_model)
        self.out_proj = nn.Linear(d_model, d_model)

    def forward(self, x: torch.Tensor, buckets: list) -> torch.Tensor:
        """
        Args:
            x: (total_tokens, d_model) packed hidden states
            buckets: length_buckets() of the batch offsets
        Returns:
            (total_tokens, d_model); each token only sees its own sequence
        """
        T, C = x.shape
        q = self.q_proj(x).reshape(T, self.n_heads, self.head_dim)
        k = self.k_proj(x).reshape(T, self.n_heads, self.head_dim)
        v = self.v_proj(x).reshape(T, self.n_heads, self.head_dim)

        out = torch.empty_like(q)
        scale = math.sqrt(self.head_dim)
        for idx in buckets:
            # (B, L, H, D) → (B, H, L, D): same-length sequences side by side
            qb = q[idx].transpose(1, 2)
            kb = k[idx].transpose(1, 2)
            vb = v[idx].transpose(1, 2)
            attn = (qb @ kb.transpose(-2, -1)) / scale
            attn = F.softmax(attn, dim=-1)
            out[idx] = (attn @ vb).transpose(1, 2)
        return self.out_proj(out.reshape(T, C))


class EncoderBlock(nn.Module):
    """Post-norm transformer block as in BERT."""

    def __init__(self, d_model: int, n_heads: int, ffn_dim: int,
                 activation: str = "gelu", eps: float = 1e-12):
        super().__init__()
        self.attn = PackedSelfAttention(d_model, n_heads)
        self.ln1 = nn.LayerNorm(d_model, eps=eps)
        self.ffn = nn.Sequential(
            nn.Linear(d_model, ffn_dim),
            make_activation(activation),
            nn.Linear(ffn_dim, d_model),
        )
        self.ln2 = nn.LayerNorm(d_model, eps=eps)

    def forward(self, x: torch.Tensor, buckets: list) -> torch.Tensor:
        x = self.ln1(x + self.attn(x, buckets))
        x = self.ln2(x + self.ffn(x))
        return x


class SpladeHead(nn.Module):
    """MLM prediction head: hidden → vocab logits, decoder tied to token embeddings."""

    def __init__(self, d_model: int, vocab_size: int, activation: str = "gelu", eps: float = 1e-12):
        super().__init__()
        self.dense = nn.Linear(d_model, d_model)
        self.act = make_activation(activation)
        self.norm = nn.LayerNorm(d_model, eps=eps)
        self.decoder = nn.Linear(d_model, vocab_size)

    def tie_weights(self, embeddings: Embeddings):
        self.decoder.weight = embeddings.token_embed.weight

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.decoder(self.norm(self.act(self.dense(x))))


class PackedEncoder(nn.Module):
    def __init__(self, cfg):
        super().__init__()
        self.cfg = cfg
        self.embeddings = Embeddings(
            cfg.vocab_size, cfg.hidden_size, cfg.max_position_embeddings,
            cfg.type_vocab_size, cfg.layer_norm_eps,
        )
        self.blocks = nn.ModuleList([
            EncoderBlock(cfg.hidden_size, cfg.num_attention_heads, cfg.intermediate_size,
                         cfg.hidden_act, cfg.layer_norm_eps)
            for _ in range(cfg.num_hidden_layers)
        ])

    def check_batch(self, batch: Batch):
        """Reject batches that do not fit the embedding tables."""
        batch.validate()
        cfg = self.cfg
        limits = (
            ("input_ids", batch.input_ids, cfg.vocab_size),
            ("token_type_ids", batch.token_type_ids, cfg.type_vocab_size),
            ("position_ids", batch.position_ids, cfg.max_position_embeddings),
        )
        for name, ids, limit in limits:
            lo, hi = int(ids.min().item()), int(ids.max().item())
            if lo < 0 or hi >= limit:
                raise ShapeMismatch(f"{name} span [{lo}, {hi}] but the embedding table has {limit} rows")
        offset = int(batch.position_ids[0].item())
        if batch.max_length + offset > cfg.max_position_embeddings:
            raise ShapeMismatch(
                f"sequence of {batch.max_length} tokens at position offset {offset} "
                f"exceeds max_position_embeddings={cfg.max_position_embeddings}"
            )

    def forward(self, batch: Batch) -> torch.Tensor:
        """
        Args:
            batch: packed Batch on the encoder's device
        Returns:
            (total_tokens, hidden_size) hidden states in packed token order
        """
        self.check_batch(batch)
        buckets = length_buckets(batch.cumulative_seq_lengths)
        x = self.embeddings(batch.input_ids, batch.token_type_ids, batch.position_ids)
        for block in self.blocks:
            x = block(x, buckets)
        return x


def build_splade_head(cfg, encoder: PackedEncoder):
    if cfg.pooling is not PoolingMode.SPLADE:
        return None
    head = SpladeHead(cfg.hidden_size, cfg.vocab_size, cfg.hidden_act, cfg.layer_norm_eps)
    head.tie_weights(encoder.embeddings)
    return head
