import pytest
import torch

from packed_embed.errors import InvalidInput, NumericDegeneracy
from packed_embed.normalize import normalize_l2


def test_rows_have_unit_norm():
    torch.manual_seed(0)
    x = torch.randn(4, 8) * 10
    norms = normalize_l2(x).norm(dim=-1)
    torch.testing.assert_close(norms, torch.ones(4), atol=1e-5, rtol=0)


def test_idempotent_on_unit_vectors():
    x = normalize_l2(torch.randn(3, 5))
    torch.testing.assert_close(normalize_l2(x), x)


def test_known_vector():
    out = normalize_l2(torch.tensor([[3.0, 4.0]]))
    torch.testing.assert_close(out, torch.tensor([[0.6, 0.8]]))


def test_zero_vector_passes_through_without_nan():
    x = torch.tensor([[0.0, 0.0, 0.0], [1.0, 2.0, 2.0]])
    out = normalize_l2(x)
    assert torch.isfinite(out).all()
    assert out[0].tolist() == [0.0, 0.0, 0.0]
    torch.testing.assert_close(out[1].norm(), torch.tensor(1.0))


def test_zero_vector_rejected_under_reject_policy():
    x = torch.tensor([[1.0, 0.0], [0.0, 0.0]])
    with pytest.raises(NumericDegeneracy, match=r"\[1\]"):
        normalize_l2(x, zero_policy="reject")


def test_single_vector():
    out = normalize_l2(torch.tensor([0.0, 5.0]))
    assert out.tolist() == [0.0, 1.0]


def test_unknown_policy():
    with pytest.raises(InvalidInput):
        normalize_l2(torch.ones(1, 2), zero_policy="clip")


def test_half_precision_does_not_overflow():
    x = torch.tensor([[300.0, 0.0], [60000.0, 60000.0]], dtype=torch.float16)
    out = normalize_l2(x)
    assert out.dtype == torch.float16
    torch.testing.assert_close(out[0], torch.tensor([1.0, 0.0], dtype=torch.float16))
    torch.testing.assert_close(out.float().norm(dim=-1), torch.ones(2), atol=1e-3, rtol=0)


@pytest.mark.parametrize("policy", ["passthrough", "reject"])
def test_tiny_nonzero_vector_still_gets_unit_norm(policy):
    x = torch.tensor([[1e-13, 0.0], [1e-30, 1e-30]])
    out = normalize_l2(x, zero_policy=policy)
    torch.testing.assert_close(out[0], torch.tensor([1.0, 0.0]))
    torch.testing.assert_close(out.norm(dim=-1), torch.ones(2), atol=1e-5, rtol=0)
