"""L2 normalization of pooled embeddings."""

import torch

from .errors import InvalidInput, NumericDegeneracy

ZERO_NORM_POLICIES = ("passthrough", "reject")


def normalize_l2(x: torch.Tensor, zero_policy: str = "passthrough") -> torch.Tensor:
    """
    Scale every row of x to unit L2 norm.

    Only all-zero rows are degenerate. With zero_policy="passthrough" they
    are returned unchanged (never NaN); with "reject" a NumericDegeneracy
    error is raised. Every other row, however small or large, comes back
    with unit norm in x's dtype.
    """
    if zero_policy not in ZERO_NORM_POLICIES:
        raise InvalidInput(f"unknown zero_policy {zero_policy!r} (expected one of {ZERO_NORM_POLICIES})")
    if x.dim() == 1:
        return normalize_l2(x.unsqueeze(0), zero_policy).squeeze(0)

    # Half-precision squares overflow; reduce in at least float32
    work = x.to(torch.promote_types(x.dtype, torch.float32))
    # Divide by the largest component first so squaring can neither overflow nor underflow
    scale = work.abs().amax(dim=-1, keepdim=True)
    degenerate = scale.squeeze(-1) == 0
    if degenerate.any():
        if zero_policy == "reject":
            rows = degenerate.nonzero(as_tuple=True)[0].tolist()
            raise NumericDegeneracy(f"cannot L2-normalize zero-norm embeddings at rows {rows}")
        scale = torch.where(degenerate.unsqueeze(-1), torch.ones_like(scale), scale)

    work = work / scale
    norms = torch.linalg.vector_norm(work, dim=-1, keepdim=True)
    # Zero rows stay zero: their scaled norm is 0, so divide them by 1
    norms = torch.where(degenerate.unsqueeze(-1), torch.ones_like(norms), norms)
    return (work / norms).to(x.dtype)
