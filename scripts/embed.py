"""Compute L2-normalized sentence embeddings with a packed, padding-free encoder."""

import argparse
import sys
import time
from contextlib import nullcontext
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import torch
from tqdm import tqdm

from packed_embed.config import Config
from packed_embed.errors import EmbedError
from packed_embed.loader import load_model
from packed_embed.pooling import PoolingMode

DEFAULT_PROMPTS = [
    "This framework generates embeddings for each input sentence",
    "This framework generates embeddings for each input sentence",
]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Packed sentence embeddings")
    parser.add_argument("--cpu", action="store_true",
                        help="Run on CPU rather than on GPU")
    parser.add_argument("--tracing", action="store_true",
                        help="Write a trace-<timestamp>.json Chrome trace")
    parser.add_argument("--model-id", default=None,
                        help="HF hub model id (default: intfloat/multilingual-e5-base)")
    parser.add_argument("--revision", default="main")
    parser.add_argument("--model-dir", default=None,
                        help="Local dir with config.json, tokenizer.json and weights")
    parser.add_argument("--prompt", action="append", default=None,
                        help="Sentence to embed; repeat for a batch")
    parser.add_argument("--use-pth", action="store_true",
                        help="Use pytorch_model.bin rather than model.safetensors")
    parser.add_argument("--n", type=int, default=1,
                        help="Number of times to run the prompts")
    parser.add_argument("--normalize-embeddings", action=argparse.BooleanOptionalAction,
                        default=True, help="L2 normalization for embeddings")
    parser.add_argument("--pooling", default="mean",
                        choices=[m.value for m in PoolingMode])
    parser.add_argument("--position-offset", type=int, default=None,
                        help="First position index; default is taken from the model family")
    args = parser.parse_args(argv)
    if args.n < 1:
        parser.error("--n must be at least 1")
    return args


def tracer(enabled: bool):
    if not enabled:
        return nullcontext()
    print("tracing...")
    trace_path = f"trace-{int(time.time() * 1000)}.json"
    return torch.profiler.profile(
        activities=[torch.profiler.ProfilerActivity.CPU],
        record_shapes=True,
        on_trace_ready=lambda prof: prof.export_chrome_trace(trace_path),
    )


def main(argv=None):
    args = parse_args(argv)
    cfg = Config(
        pooling=args.pooling,
        position_offset=args.position_offset,
        normalize_embeddings=args.normalize_embeddings,
        revision=args.revision,
        use_pth=args.use_pth,
        device="cpu" if args.cpu else "auto",
    )
    if args.model_id:
        cfg.model_id = args.model_id
    prompts = args.prompt or DEFAULT_PROMPTS

    start = time.time()
    try:
        with tracer(args.tracing):
            model, tokenizer = load_model(args.model_dir or cfg.model_id, cfg)
            counts = model.count_params()
            print(f"Total params: {counts['total']:,}")

            for _ in tqdm(range(args.n), desc="Embedding", disable=args.n <= 1):
                embeddings = model.embed_texts(tokenizer, prompts)
    except EmbedError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(f"pooled embeddings {tuple(embeddings.shape)}\n{embeddings}")
    print(f"Took {time.time() - start:.3f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
