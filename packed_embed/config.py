"""Encoder hyperparameters and embedding configuration."""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from .errors import InvalidInput
from .normalize import ZERO_NORM_POLICIES
from .pooling import PoolingMode

# Leading position rows reserved by each encoder family. RoBERTa-style tables
# start real positions at pad_token_id + 1.
POSITION_OFFSETS = {
    "bert": 0,
    "roberta": 2,
    "xlm-roberta": 2,
    "camembert": 2,
}

# Keys in a HF config.json that name the same field differently
_ALIASES = {
    "n_positions": "max_position_embeddings",
}


@dataclass
class Config:
    # Encoder dimensions
    vocab_size: int = 30522
    hidden_size: int = 768
    num_hidden_layers: int = 12
    num_attention_heads: int = 12
    intermediate_size: int = 3072
    hidden_act: str = "gelu"
    max_position_embeddings: int = 512
    type_vocab_size: int = 2
    layer_norm_eps: float = 1e-12
    pad_token_id: int = 0

    # Model card metadata
    model_type: str = "bert"
    architectures: list = field(default_factory=list)
    id2label: Optional[dict] = None
    label2id: Optional[dict] = None

    # Embedding
    pooling: PoolingMode = PoolingMode.MEAN
    position_offset: Optional[int] = None   # None → POSITION_OFFSETS[model_type]
    normalize_embeddings: bool = True
    zero_norm_policy: str = "passthrough"   # "passthrough" or "reject"

    # Retrieval
    model_id: str = "intfloat/multilingual-e5-base"
    revision: str = "main"
    use_pth: bool = False

    # Device
    device: str = "auto"  # "auto", "cpu", "cuda", "mps"

    def __post_init__(self):
        self.pooling = PoolingMode.parse(self.pooling)

    @classmethod
    def from_dict(cls, data: dict, **overrides) -> "Config":
        """Build from a HF-style config.json dict. Unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            key = _ALIASES.get(key, key)
            if key in known:
                kwargs[key] = value
        kwargs.update(overrides)
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path, **overrides) -> "Config":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f), **overrides)

    def resolve_position_offset(self) -> int:
        if self.position_offset is not None:
            return self.position_offset
        if self.model_type not in POSITION_OFFSETS:
            raise InvalidInput(
                f"no known position offset for model_type {self.model_type!r}; "
                f"set position_offset explicitly"
            )
        return POSITION_OFFSETS[self.model_type]

    def validate(self) -> "Config":
        for name in ("vocab_size", "hidden_size", "num_hidden_layers", "num_attention_heads",
                     "intermediate_size", "max_position_embeddings", "type_vocab_size"):
            if getattr(self, name) <= 0:
                raise InvalidInput(f"{name} must be positive, got {getattr(self, name)}")
        if self.hidden_size % self.num_attention_heads != 0:
            raise InvalidInput(
                f"hidden_size {self.hidden_size} is not divisible by "
                f"num_attention_heads {self.num_attention_heads}"
            )
        offset = self.resolve_position_offset()
        if not isinstance(offset, int) or not 0 <= offset < self.max_position_embeddings:
            raise InvalidInput(
                f"position_offset {offset!r} outside [0, {self.max_position_embeddings})"
            )
        if self.zero_norm_policy not in ZERO_NORM_POLICIES:
            raise InvalidInput(f"unknown zero_norm_policy {self.zero_norm_policy!r}")
        return self

    def get_device(self) -> str:
        if self.device != "auto":
            return self.device
        import torch
        if torch.cuda.is_available():
            return "cuda"
        if torch.backends.mps.is_available():
            return "mps"
        return "cpu"

    def save(self, path):
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["pooling"] = self.pooling.value
        Path(path).write_text(json.dumps(data, indent=2), encoding="utf-8")
