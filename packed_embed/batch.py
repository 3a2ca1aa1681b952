"""Packed batch: variable-length sequences concatenated without padding.

Sequence i owns the token rows [cumulative_seq_lengths[i], cumulative_seq_lengths[i+1]).
"""

from dataclasses import dataclass

import torch

from .errors import InvalidInput, InvariantViolation
from .pooling import check_offsets


@dataclass(frozen=True)
class Batch:
    input_ids: torch.Tensor               # (T,) long
    token_type_ids: torch.Tensor          # (T,) long
    position_ids: torch.Tensor            # (T,) long
    cumulative_seq_lengths: torch.Tensor  # (N+1,) long, [0, ..., T]
    max_length: int

    @property
    def num_sequences(self) -> int:
        return self.cumulative_seq_lengths.numel() - 1

    @property
    def num_tokens(self) -> int:
        return self.input_ids.numel()

    def seq_lengths(self) -> torch.Tensor:
        return self.cumulative_seq_lengths[1:] - self.cumulative_seq_lengths[:-1]

    def validate(self) -> "Batch":
        for name in ("input_ids", "token_type_ids", "position_ids"):
            t = getattr(self, name)
            if t.dim() != 1:
                raise InvariantViolation(f"{name} must be flat, got shape {tuple(t.shape)}")
        if not self.input_ids.numel() == self.token_type_ids.numel() == self.position_ids.numel():
            raise InvariantViolation(
                f"packed arrays differ in length: input_ids={self.input_ids.numel()} "
                f"token_type_ids={self.token_type_ids.numel()} position_ids={self.position_ids.numel()}"
            )
        lengths = check_offsets(self.cumulative_seq_lengths, self.num_tokens)
        true_max = int(lengths.max().item())
        if self.max_length != true_max:
            raise InvariantViolation(f"max_length is {self.max_length} but longest sequence has {true_max} tokens")
        return self

    def to(self, device) -> "Batch":
        return Batch(
            input_ids=self.input_ids.to(device),
            token_type_ids=self.token_type_ids.to(device),
            position_ids=self.position_ids.to(device),
            cumulative_seq_lengths=self.cumulative_seq_lengths.to(device),
            max_length=self.max_length,
        )


def _ids_and_types(encoding):
    if hasattr(encoding, "ids"):
        return list(encoding.ids), list(encoding.type_ids)
    ids, type_ids = encoding
    ids = list(ids)
    type_ids = [0] * len(ids) if type_ids is None else list(type_ids)
    return ids, type_ids


def build_batch(encodings, position_offset: int = 0) -> Batch:
    """
    Pack tokenized sequences into one Batch, preserving input order.

    Args:
        encodings: tokenizers.Encoding objects or (ids, type_ids) pairs
        position_offset: first position index of every sequence; set by
            the encoder family (2 for RoBERTa-style tables, else 0)
    """
    if isinstance(position_offset, bool) or not isinstance(position_offset, int) or position_offset < 0:
        raise InvalidInput(f"position_offset must be a non-negative int, got {position_offset!r}")
    encodings = list(encodings)
    if not encodings:
        raise InvalidInput("cannot build a batch from zero sequences")

    input_ids, token_type_ids, position_ids = [], [], []
    cu_seq_lengths = [0]
    current_tokens = 0
    max_length = 0

    for i, encoding in enumerate(encodings):
        ids, type_ids = _ids_and_types(encoding)
        seq_len = len(ids)
        if seq_len == 0:
            raise InvalidInput(f"sequence {i} is empty")
        if len(type_ids) != seq_len:
            raise InvalidInput(f"sequence {i} has {seq_len} ids but {len(type_ids)} type ids")

        input_ids.extend(ids)
        token_type_ids.extend(type_ids)
        position_ids.extend(range(position_offset, position_offset + seq_len))

        current_tokens += seq_len
        max_length = max(max_length, seq_len)
        cu_seq_lengths.append(current_tokens)

    batch = Batch(
        input_ids=torch.tensor(input_ids, dtype=torch.long),
        token_type_ids=torch.tensor(token_type_ids, dtype=torch.long),
        position_ids=torch.tensor(position_ids, dtype=torch.long),
        cumulative_seq_lengths=torch.tensor(cu_seq_lengths, dtype=torch.long),
        max_length=max_length,
    )
    return batch.validate()
