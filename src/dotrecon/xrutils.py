"""Utility functions for xarray objects."""

import numpy as np
import xarray as xr


def pinv(array: xr.DataArray) -> xr.DataArray:
    """Calculate the pseudoinverse of a 2D xr.DataArray.

    Handles unitless and quantified DataArrays. Units stored only in the attrs are
    not inverted and get dropped.

    Args:
        array (xr.DataArray): Input array

    Returns:
        array_inv (xr.DataArray): Pseudoinverse of the input array
    """
    if not array.ndim == 2:
        raise ValueError("array must have only 2 dimensions")

    # /!\ need to transpose dimensions when applying np.linalg.pinv
    dims = list(array.dims)
    transposed_dims = dims[::-1]

    units = array.pint.units
    inv_units = None

    # determine inverted units and dequantify
    if units is not None:
        q = 1 / units
        inv_units = q.units
        array = array.pint.dequantify()

    # apply numpy's pinv
    array_inv = xr.apply_ufunc(
        np.linalg.pinv,
        array,
        input_core_dims=[dims],
        output_core_dims=[transposed_dims],
    )
    array_inv.attrs.pop("units", None)

    # quantify if necessary
    if inv_units is not None:
        array_inv = array_inv.pint.quantify(inv_units)

    return array_inv


def as_matrix(array: xr.DataArray, row_dim: str, col_dim: str) -> np.ndarray:
    """Return the values of a 2D DataArray with dims ordered as (row_dim, col_dim).

    Args:
        array: a 2D DataArray
        row_dim: name of the dimension that becomes the rows
        col_dim: name of the dimension that becomes the columns

    Returns:
        A 2D float numpy array.
    """
    if set(array.dims) != {row_dim, col_dim}:
        raise ValueError(
            f"expected dimensions ('{row_dim}', '{col_dim}') but found {array.dims}"
        )

    if array.pint.units is not None:
        array = array.pint.dequantify()

    return np.asarray(array.transpose(row_dim, col_dim).values, dtype=float)


def empty_like_image(dim: str) -> xr.DataArray:
    """Create an empty (0, 0) image array with dims ("time", dim)."""

    return xr.DataArray(np.zeros((0, 0)), dims=("time", dim))
