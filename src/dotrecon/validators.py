import numpy as np
import pint

from dotrecon.errors import DimensionMismatch


def has_positions(array: np.ndarray, what: str, npos: int = 3):
    if (array.ndim != 2) or (array.shape[1] < npos):
        raise DimensionMismatch(
            f"{what}: expected an array of shape (nnodes, {npos}) but found "
            f"{array.shape}."
        )


def check_dimensionality(name: str, q: pint.Quantity, dim: str):
    if not q.check(dim):
        raise ValueError(f"quantity '{name}' does not have dimensionality '{dim}'")
