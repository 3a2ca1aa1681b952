"""Pooling engine: per-token hidden states → one vector per packed sequence."""

from enum import Enum

import torch
import torch.nn.functional as F

from .errors import InvalidInput, InvariantViolation


class PoolingMode(Enum):
    MEAN = "mean"
    CLS = "cls"
    MAX = "max"
    SPLADE = "splade"

    @classmethod
    def parse(cls, value) -> "PoolingMode":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        choices = ", ".join(m.value for m in cls)
        raise InvalidInput(f"unknown pooling mode {value!r} (expected one of: {choices})")


def check_offsets(cu_seqlens: torch.Tensor, num_tokens: int):
    """Raise InvariantViolation unless cu_seqlens partitions [0, num_tokens)."""
    if cu_seqlens.dim() != 1 or cu_seqlens.numel() < 2:
        raise InvariantViolation(
            f"cumulative_seq_lengths must be 1-D with at least 2 entries, "
            f"got shape {tuple(cu_seqlens.shape)}"
        )
    if cu_seqlens[0].item() != 0:
        raise InvariantViolation(f"cumulative_seq_lengths[0] is {cu_seqlens[0].item()}, expected 0")
    lengths = cu_seqlens[1:] - cu_seqlens[:-1]
    if (lengths <= 0).any():
        bad = (lengths <= 0).nonzero(as_tuple=True)[0].tolist()
        raise InvariantViolation(f"non-increasing cumulative_seq_lengths at sequences {bad}")
    if cu_seqlens[-1].item() != num_tokens:
        raise InvariantViolation(
            f"cumulative_seq_lengths ends at {cu_seqlens[-1].item()} "
            f"but there are {num_tokens} token rows"
        )
    return lengths


def sequence_ids(lengths: torch.Tensor) -> torch.Tensor:
    """Index of the owning sequence for every packed token, e.g. [2, 1] → [0, 0, 1]."""
    return torch.repeat_interleave(torch.arange(lengths.numel(), device=lengths.device), lengths)


def mean_pool(hidden: torch.Tensor, cu_seqlens: torch.Tensor) -> torch.Tensor:
    lengths = check_offsets(cu_seqlens, hidden.shape[0])
    seq_ids = sequence_ids(lengths)
    sums = hidden.new_zeros(lengths.numel(), hidden.shape[-1])
    sums.index_add_(0, seq_ids, hidden)
    # True token count per sequence; never the batch max_length
    return sums / lengths.unsqueeze(-1).to(hidden.dtype)


def cls_pool(hidden: torch.Tensor, cu_seqlens: torch.Tensor) -> torch.Tensor:
    check_offsets(cu_seqlens, hidden.shape[0])
    return hidden[cu_seqlens[:-1]]


def max_pool(hidden: torch.Tensor, cu_seqlens: torch.Tensor) -> torch.Tensor:
    lengths = check_offsets(cu_seqlens, hidden.shape[0])
    seq_ids = sequence_ids(lengths)
    index = seq_ids.unsqueeze(-1).expand_as(hidden)
    out = hidden.new_empty(lengths.numel(), hidden.shape[-1])
    return out.scatter_reduce(0, index, hidden, reduce="amax", include_self=False)


def splade_pool(logits: torch.Tensor, cu_seqlens: torch.Tensor) -> torch.Tensor:
    """log(1 + relu(x)) per token, then max over the sequence."""
    return max_pool(torch.log1p(F.relu(logits)), cu_seqlens)


_POOLERS = {
    PoolingMode.MEAN: mean_pool,
    PoolingMode.CLS: cls_pool,
    PoolingMode.MAX: max_pool,
    PoolingMode.SPLADE: splade_pool,
}


def pool(hidden: torch.Tensor, cu_seqlens: torch.Tensor, mode) -> torch.Tensor:
    """
    Args:
        hidden: (total_tokens, dim) flat per-token states
        cu_seqlens: (N+1,) long tensor of packed offsets
        mode: PoolingMode or its name
    Returns:
        (N, dim) tensor, one row per sequence in packed order
    """
    if hidden.dim() != 2:
        raise InvariantViolation(f"expected flat (tokens, dim) hidden states, got shape {tuple(hidden.shape)}")
    cu_seqlens = cu_seqlens.to(device=hidden.device, dtype=torch.long)
    return _POOLERS[PoolingMode.parse(mode)](hidden, cu_seqlens)
