"""Model retrieval and weight loading for HF BERT-family checkpoints."""

import re
from pathlib import Path

import torch
from huggingface_hub import hf_hub_download
from safetensors.torch import load_file

from .config import Config
from .errors import InvalidInput, ShapeMismatch
from .model import PackedEmbedder
from .tokenization import load_tokenizer

CONFIG_FILE = "config.json"
TOKENIZER_FILE = "tokenizer.json"
SAFETENSORS_FILE = "model.safetensors"
PTH_FILE = "pytorch_model.bin"

_PREFIXES = ("bert.", "roberta.", "xlm-roberta.", "model.")

# HF parameter names → PackedEmbedder parameter names
_KEY_MAP = [
    (r"^embeddings\.word_embeddings\.", "encoder.embeddings.token_embed."),
    (r"^embeddings\.position_embeddings\.", "encoder.embeddings.pos_embed."),
    (r"^embeddings\.token_type_embeddings\.", "encoder.embeddings.type_embed."),
    (r"^embeddings\.LayerNorm\.", "encoder.embeddings.norm."),
    (r"^encoder\.layer\.(\d+)\.attention\.self\.query\.", r"encoder.blocks.\1.attn.q_proj."),
    (r"^encoder\.layer\.(\d+)\.attention\.self\.key\.", r"encoder.blocks.\1.attn.k_proj."),
    (r"^encoder\.layer\.(\d+)\.attention\.self\.value\.", r"encoder.blocks.\1.attn.v_proj."),
    (r"^encoder\.layer\.(\d+)\.attention\.output\.dense\.", r"encoder.blocks.\1.attn.out_proj."),
    (r"^encoder\.layer\.(\d+)\.attention\.output\.LayerNorm\.", r"encoder.blocks.\1.ln1."),
    (r"^encoder\.layer\.(\d+)\.intermediate\.dense\.", r"encoder.blocks.\1.ffn.0."),
    (r"^encoder\.layer\.(\d+)\.output\.dense\.", r"encoder.blocks.\1.ffn.2."),
    (r"^encoder\.layer\.(\d+)\.output\.LayerNorm\.", r"encoder.blocks.\1.ln2."),
    (r"^cls\.predictions\.transform\.dense\.", "splade_head.dense."),
    (r"^cls\.predictions\.transform\.LayerNorm\.", "splade_head.norm."),
    (r"^cls\.predictions\.decoder\.", "splade_head.decoder."),
    (r"^cls\.predictions\.bias$", "splade_head.decoder.bias"),
]

_DROPPED = re.compile(r"^(pooler\.|embeddings\.position_ids$|lm_head\.|cls\.seq_relationship\.)")


def remap_key(key: str):
    """
    Map one HF state-dict key to ours.

    Returns None for weights this encoder never uses (pooler, position-id
    buffer, other heads). Keys from unsupported architectures come back
    unchanged so they surface as unexpected weights.
    """
    original = key
    for prefix in _PREFIXES:
        if key.startswith(prefix):
            key = key[len(prefix):]
            break
    if _DROPPED.match(key):
        return None
    # Old TF-converted checkpoints name LayerNorm params gamma/beta
    key = re.sub(r"\.gamma$", ".weight", key)
    key = re.sub(r"\.beta$", ".bias", key)
    for pattern, repl in _KEY_MAP:
        new_key, n = re.subn(pattern, repl, key)
        if n:
            return new_key
    return original


def remap_state_dict(state_dict: dict) -> dict:
    remapped = {}
    for key, tensor in state_dict.items():
        new_key = remap_key(key)
        if new_key is not None:
            remapped[new_key] = tensor
    return remapped


def load_state_dict(path) -> dict:
    path = Path(path)
    if path.suffix == ".safetensors":
        return load_file(str(path))
    if path.suffix in (".bin", ".pt", ".pth"):
        return torch.load(path, map_location="cpu", weights_only=True)
    raise InvalidInput(f"unknown weights format: {path.suffix}")


def fetch_model_files(model_id: str, revision: str = "main", use_pth: bool = False) -> tuple:
    """Download (config, tokenizer, weights) paths from the HF hub cache."""
    weights_file = PTH_FILE if use_pth else SAFETENSORS_FILE
    config_path = hf_hub_download(model_id, CONFIG_FILE, revision=revision)
    tokenizer_path = hf_hub_download(model_id, TOKENIZER_FILE, revision=revision)
    weights_path = hf_hub_download(model_id, weights_file, revision=revision)
    return Path(config_path), Path(tokenizer_path), Path(weights_path)


def resolve_model_files(model_dir_or_id: str, revision: str = "main", use_pth: bool = False) -> tuple:
    local = Path(model_dir_or_id)
    if local.is_dir():
        weights_file = PTH_FILE if use_pth else SAFETENSORS_FILE
        paths = (local / CONFIG_FILE, local / TOKENIZER_FILE, local / weights_file)
        for p in paths:
            if not p.exists():
                raise InvalidInput(f"missing {p.name} in {local}")
        return paths
    return fetch_model_files(model_dir_or_id, revision, use_pth)


def load_weights(model: PackedEmbedder, state_dict: dict):
    """Load a HF state dict into model, failing on any missing or misshapen weight."""
    state_dict = remap_state_dict(state_dict)
    try:
        missing, unexpected = model.load_state_dict(state_dict, strict=False)
    except RuntimeError as e:
        raise ShapeMismatch(f"checkpoint does not fit the config: {e}") from e
    # The splade decoder shares the token embedding matrix
    missing = [k for k in missing if k != "splade_head.decoder.weight"]
    if missing:
        raise ShapeMismatch(
            f"checkpoint is missing {len(missing)} weights, e.g. {missing[:5]}; "
            f"unrecognised checkpoint weights: {unexpected[:5]}"
        )
    if unexpected:
        print(f"ignoring {len(unexpected)} unexpected weights, e.g. {unexpected[:5]}")
    return unexpected


def load_model(model_dir_or_id=None, cfg: Config = None, device=None, **overrides):
    """
    Build a PackedEmbedder and its tokenizer from a local model dir or hub id.

    Returns:
        (model, tokenizer) with the model in eval mode on `device`
    """
    cfg = cfg or Config()
    model_dir_or_id = model_dir_or_id or cfg.model_id
    config_path, tokenizer_path, weights_path = resolve_model_files(
        model_dir_or_id, cfg.revision, cfg.use_pth
    )

    settings = {
        "pooling": cfg.pooling,
        "position_offset": cfg.position_offset,
        "normalize_embeddings": cfg.normalize_embeddings,
        "zero_norm_policy": cfg.zero_norm_policy,
        "model_id": str(model_dir_or_id),
        "revision": cfg.revision,
        "use_pth": cfg.use_pth,
        "device": cfg.device,
    }
    settings.update(overrides)
    model_cfg = Config.from_json(config_path, **settings)
    print(f"config from JSON {config_path}: model_type={model_cfg.model_type} "
          f"hidden_size={model_cfg.hidden_size} layers={model_cfg.num_hidden_layers} "
          f"pooling={model_cfg.pooling.value}")
    tokenizer = load_tokenizer(tokenizer_path)

    device = device or model_cfg.get_device()
    print(f"Starting model on {device}")
    model = PackedEmbedder(model_cfg)
    load_weights(model, load_state_dict(weights_path))
    model.to(device)
    model.eval()
    return model, tokenizer
