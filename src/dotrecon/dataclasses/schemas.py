"""Data array schemas and utilities to build labeled data arrays."""

import functools
import inspect
import typing
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pint
import xarray as xr
from numpy.typing import ArrayLike

import dotrecon.validators as validators
from dotrecon import units
from dotrecon.errors import DimensionMismatch

#: Chromophores resolved by the reconstruction, in the order of the image rows.
CHROMOPHORES = ["HbO", "HbR"]


class ValidationError(DimensionMismatch):
    pass


@dataclass(frozen=True)
class DataArraySchema:
    dims: tuple[str]
    coords: tuple[tuple[str, tuple[str]]]

    def validate(self, data_array: xr.DataArray):
        if not isinstance(data_array, xr.DataArray):
            raise ValidationError("object is not a xr.DataArray")

        for dim in self.dims:
            if dim not in data_array.dims:
                raise ValidationError(f"dimension '{dim}' not found in data array.")

        if len(data_array.dims) != len(self.dims):
            raise ValidationError(
                f"expected dimensions {self.dims} but found {data_array.dims}."
            )

        for dim, coordinate_names in self.coords:
            for name in coordinate_names:
                if name not in data_array.coords:
                    raise ValidationError(
                        f"coordinate '{name}' missing for " f"dimension '{dim}'"
                    )
                coords = data_array.coords[name]
                actual_dim = coords.dims[0]

                if not actual_dim == dim:
                    raise ValidationError(
                        f"coordinate '{name}' belongs to dimension "
                        f"'{actual_dim}' instead of '{dim}'"
                    )


def validate_schemas(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        ba = inspect.signature(func).bind(*args, **kwargs)
        ba.apply_defaults()

        hints = typing.get_type_hints(func, include_extras=True)
        for arg_name, hint in hints.items():
            if typing.get_origin(hint) is not typing.Annotated:
                continue

            if arg_name == "return":
                continue

            for md in hint.__metadata__:
                if isinstance(md, DataArraySchema):
                    md.validate(ba.arguments[arg_name])

        return func(*args, **kwargs)

    return wrapper


MeasurementTimeSeriesSchema = DataArraySchema(
    dims=("time", "measurement"),
    coords=(
        ("time", ("time", "samples")),
        ("measurement", ("measurement", "wavelength_index", "active")),
    ),
)

ExtinctionTableSchema = DataArraySchema(
    dims=("wavelength", "chromo"),
    coords=(
        ("wavelength", ("wavelength",)),
        ("chromo", ("chromo",)),
    ),
)

InverseMatrixSchema = DataArraySchema(dims=("node", "measurement"), coords=())

JacobianMatrixSchema = DataArraySchema(dims=("measurement", "node"), coords=())


def build_dod_timeseries(
    data: ArrayLike,
    time: ArrayLike | pint.Quantity,
    wavelength_index: ArrayLike,
    active: Optional[ArrayLike] = None,
    time_units: str = "s",
    source: Optional[List[str]] = None,
    detector: Optional[List[str]] = None,
):
    """Build a labeled optical density time series with dims (time, measurement).

    Args:
        data (ArrayLike): optical density changes of shape (ntime, nmeasurement).
        time (ArrayLike): The time values. Can also be a pint.Quantity.
        wavelength_index (ArrayLike): 0-based wavelength index of each measurement.
        active (ArrayLike, optional): Flags of usable measurements. Defaults to all
            measurements being active.
        time_units (str): The units of the time values if time is not a Quantity.
        source (List[str], optional): Source labels of the measurements.
        detector (List[str], optional): Detector labels of the measurements.

    Returns:
        da (xr.DataArray): The labeled time series with the time axis in seconds.
    """
    data = np.asarray(data, dtype=float)
    if data.ndim == 1:
        data = data[np.newaxis, :]
    if data.ndim != 2:
        raise ValidationError("dOD data must have dimensions (time, measurement).")

    ntime, nmeas = data.shape

    if not isinstance(time, pint.Quantity):
        time = units.Quantity(np.asarray(time, dtype=float), time_units)
    validators.check_dimensionality("time", time, "[time]")
    time = np.atleast_1d(time.to("s").magnitude)

    if active is None:
        active = np.ones(nmeas, dtype=bool)

    wavelength_index = np.asarray(wavelength_index, dtype=int)
    active = np.asarray(active).astype(bool)

    if len(time) != ntime:
        raise ValidationError(f"expected {ntime} time points but found {len(time)}.")
    for name, values in [("wavelength_index", wavelength_index), ("active", active)]:
        if len(values) != nmeas:
            raise ValidationError(
                f"expected {nmeas} entries in '{name}' but found {len(values)}."
            )

    coords = {
        "time": ("time", time, {"units": "s"}),
        "samples": ("time", np.arange(ntime)),
        "measurement": ("measurement", np.arange(nmeas)),
        "wavelength_index": ("measurement", wavelength_index),
        "active": ("measurement", active),
    }
    if source is not None:
        coords["source"] = ("measurement", list(source))
    if detector is not None:
        coords["detector"] = ("measurement", list(detector))

    return xr.DataArray(data, dims=("time", "measurement"), coords=coords)


def build_extinction_table(coefficients: ArrayLike, wavelengths: ArrayLike):
    """Build a table of molar extinction coefficients.

    Args:
        coefficients (ArrayLike): array of shape (nwavelength, 2) with the
            coefficients of HbO and HbR at each wavelength.
        wavelengths (ArrayLike): the wavelengths in nm.

    Returns:
        xr.DataArray: extinction table with dims (wavelength, chromo).
    """
    coefficients = np.atleast_2d(np.asarray(coefficients, dtype=float))
    wavelengths = np.atleast_1d(np.asarray(wavelengths, dtype=float))

    if coefficients.shape != (len(wavelengths), len(CHROMOPHORES)):
        raise ValidationError(
            f"expected extinction coefficients of shape "
            f"({len(wavelengths)}, {len(CHROMOPHORES)}) but found "
            f"{coefficients.shape}."
        )

    return xr.DataArray(
        coefficients,
        dims=("wavelength", "chromo"),
        coords={"wavelength": wavelengths, "chromo": CHROMOPHORES},
    )


def build_matrix(values: ArrayLike, dims: tuple[str, str]) -> xr.DataArray:
    """Wrap a 2D array in a DataArray with the given dims."""

    values = np.atleast_2d(np.asarray(values, dtype=float))
    if values.ndim != 2:
        raise ValidationError(f"expected a 2D matrix but found {values.ndim} dims.")

    return xr.DataArray(values, dims=dims)
