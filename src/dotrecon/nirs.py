"""Spectral helpers for converting absorption into chromophore concentrations."""

from __future__ import annotations

import logging

import numpy as np
import xarray as xr
from numpy.typing import ArrayLike

import dotrecon.dataclasses as cdc
import dotrecon.typing as cdt
import dotrecon.xrutils as xrutils
from dotrecon.errors import DimensionMismatch

logger = logging.getLogger("dotrecon")

#: Tabulated molar extinction coefficients are divided by this constant before they
#: enter the reconstruction.
EXTINCTION_NORMALIZATION = 1e7


@cdc.validate_schemas
def get_extinction_matrix(
    extinction: cdt.ExtinctionTable, wavelengths: ArrayLike
) -> xr.DataArray:
    """Select and normalize the extinction coefficients of HbO and HbR.

    Args:
        extinction: table of molar extinction coefficients with dims
            (wavelength, chromo).
        wavelengths: the wavelengths (nm) for which to return coefficients, in the
            order of the measurement series.

    Returns:
        xr.DataArray: matrix with dims (wavelength, chromo) of shape
        (nwavelength, 2), scaled by 1 / EXTINCTION_NORMALIZATION.
    """
    wavelengths = np.atleast_1d(np.asarray(wavelengths, dtype=float))

    missing = [wl for wl in wavelengths if wl not in extinction.wavelength.values]
    if missing:
        raise DimensionMismatch(
            f"no extinction coefficients tabulated for wavelengths {missing}."
        )

    missing = [c for c in cdc.CHROMOPHORES if c not in extinction.chromo.values]
    if missing:
        raise DimensionMismatch(
            f"no extinction coefficients tabulated for chromophores {missing}."
        )

    E = extinction.sel(wavelength=wavelengths, chromo=cdc.CHROMOPHORES)
    E = E / EXTINCTION_NORMALIZATION
    E.attrs.clear()

    return E


def get_unmixing_operator(
    extinction: cdt.ExtinctionTable, wavelengths: ArrayLike
) -> xr.DataArray:
    """Calculate the operator that converts mua at each wavelength into HbO/HbR.

    The operator is the Moore-Penrose pseudo-inverse of the normalized extinction
    matrix. With fewer wavelengths than chromophores the system is under-determined
    and the minimum-norm solution is returned.

    Args:
        extinction: table of molar extinction coefficients with dims
            (wavelength, chromo).
        wavelengths: the wavelengths (nm) in the order of the mua images.

    Returns:
        xr.DataArray: the unmixing operator with dims (chromo, wavelength).
    """
    E = get_extinction_matrix(extinction, wavelengths)

    if E.sizes["wavelength"] < E.sizes["chromo"]:
        logger.warning(
            f"unmixing {E.sizes['chromo']} chromophores from "
            f"{E.sizes['wavelength']} wavelength(s) is under-determined. "
            "Returning the minimum-norm solution."
        )

    return xrutils.pinv(E)
