"""packed_embed: sentence embeddings from packed, padding-free encoder batches."""

__version__ = "0.1.0"

_EXPORTS = {
    "Config": "packed_embed.config",
    "Batch": "packed_embed.batch",
    "build_batch": "packed_embed.batch",
    "PoolingMode": "packed_embed.pooling",
    "pool": "packed_embed.pooling",
    "normalize_l2": "packed_embed.normalize",
    "PackedEmbedder": "packed_embed.model",
    "load_model": "packed_embed.loader",
}


def __getattr__(name):
    if name in _EXPORTS:
        import importlib
        return getattr(importlib.import_module(_EXPORTS[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
