"""Error taxonomy. Every error aborts the whole embedding call."""


class EmbedError(Exception):
    pass


class InvalidInput(EmbedError, ValueError):
    """Empty batch, zero-length sequence or a bad argument."""


class ShapeMismatch(EmbedError, ValueError):
    """Encoder weights or config do not fit the batch tensors."""


class InvariantViolation(EmbedError, RuntimeError):
    """Malformed packed offsets. Indicates a batch construction bug."""


class NumericDegeneracy(EmbedError, ArithmeticError):
    """Zero-norm vector under the 'reject' normalization policy."""
