"""Data classes used throughout dotrecon."""

from .schemas import (
    CHROMOPHORES,
    ValidationError,
    build_dod_timeseries,
    build_extinction_table,
    build_matrix,
    validate_schemas,
)
from .artifacts import (
    InverseOperator,
    Jacobian,
    MeasurementSeries,
    SpatialMapping,
    build_measurement_series,
)
from .images import Image, ImageSet
