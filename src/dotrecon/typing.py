"""Type aliases for dotrecon data arrays.

dotrecon relies on generic data types (xarray DataArrays) and uses type aliases and
annotations to augment them with information about the data they carry. Each alias
is annotated with a schema that specifies the expected dimension and coordinate names.
"""

from __future__ import annotations
from typing import Annotated, TypeAlias

import xarray as xr

from dotrecon.dataclasses.schemas import (
    ExtinctionTableSchema,
    InverseMatrixSchema,
    JacobianMatrixSchema,
    MeasurementTimeSeriesSchema,
)


#: DataArrays of optical density changes with dims (time, measurement).
MeasurementTimeSeries: TypeAlias = Annotated[xr.DataArray, MeasurementTimeSeriesSchema]

#: DataArrays of extinction coefficients with dims (wavelength, chromo).
ExtinctionTable: TypeAlias = Annotated[xr.DataArray, ExtinctionTableSchema]

#: DataArrays mapping active measurements to node space, dims (node, measurement).
InverseMatrix: TypeAlias = Annotated[xr.DataArray, InverseMatrixSchema]

#: DataArrays mapping node space to active measurements, dims (measurement, node).
JacobianMatrix: TypeAlias = Annotated[xr.DataArray, JacobianMatrixSchema]
