"""Containers for the inputs of the image reconstruction."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pint
import scipy.sparse
import xarray as xr
from numpy.typing import ArrayLike

import dotrecon.validators as validators
from dotrecon.dataclasses.schemas import (
    ExtinctionTableSchema,
    InverseMatrixSchema,
    JacobianMatrixSchema,
    MeasurementTimeSeriesSchema,
    ValidationError,
    build_dod_timeseries,
    build_extinction_table,
    build_matrix,
)
from dotrecon.typing import (
    ExtinctionTable,
    InverseMatrix,
    JacobianMatrix,
    MeasurementTimeSeries,
)


def normalize_log_key(key: str) -> str:
    """Strip whitespace and trailing colons from a provenance key."""
    return str(key).strip().rstrip(":").strip()


def _lookup_log(log: list[tuple[str, Any]], key: str, default=None):
    key = normalize_log_key(key).lower()
    for k, v in log:
        if normalize_log_key(k).lower() == key:
            return v
    return default


def _normalize_basis(basis) -> Optional[tuple[int, ...]]:
    if basis is None:
        return None
    basis = tuple(int(b) for b in np.atleast_1d(basis))
    if len(basis) == 0:
        return None
    return basis


@dataclass(frozen=True)
class MeasurementSeries:
    """Preprocessed optical density changes of one recording.

    The order of the measurement dimension is the measurement list of the recording.
    It must match the column order of the inverse operators used with this series.
    """

    dod: MeasurementTimeSeries
    """Optical density changes with dims (time, measurement)."""

    wavelengths: np.ndarray
    """The wavelengths in nm. Indexed by the 'wavelength_index' coordinate of dod."""

    extinction: ExtinctionTable
    """Molar extinction coefficients of HbO and HbR with dims (wavelength, chromo)."""

    name: Optional[str] = None
    """Identity of the source artifact, usually its file name."""

    def __post_init__(self):
        MeasurementTimeSeriesSchema.validate(self.dod)
        ExtinctionTableSchema.validate(self.extinction)
        object.__setattr__(
            self, "wavelengths", np.atleast_1d(np.asarray(self.wavelengths, float))
        )

        wl_index = self.dod.wavelength_index.values
        if len(wl_index) and (
            (wl_index.min() < 0) or (wl_index.max() >= len(self.wavelengths))
        ):
            raise ValidationError(
                "the 'wavelength_index' coordinate refers to wavelengths that are "
                f"not among the {len(self.wavelengths)} wavelengths of the series."
            )

    @property
    def nframes(self) -> int:
        return self.dod.sizes["time"]

    @property
    def nwavelengths(self) -> int:
        return len(self.wavelengths)

    @property
    def time(self) -> np.ndarray:
        return self.dod.time.values

    def __repr__(self):
        return (
            f"<MeasurementSeries | name: {self.name}, frames: {self.nframes}, "
            f"measurements: {self.dod.sizes['measurement']}, "
            f"wavelengths: {list(self.wavelengths)}>"
        )


def build_measurement_series(
    dod: ArrayLike,
    time: ArrayLike | pint.Quantity,
    wavelength_index: ArrayLike,
    wavelengths: ArrayLike,
    extinction: ArrayLike,
    active: Optional[ArrayLike] = None,
    time_units: str = "s",
    name: Optional[str] = None,
    **labels,
) -> MeasurementSeries:
    """Build a validated measurement series from plain arrays.

    Args:
        dod: optical density changes of shape (ntime, nmeasurement).
        time: frame times. Can also be a pint.Quantity.
        wavelength_index: 0-based index into 'wavelengths' for each measurement.
        wavelengths: the wavelengths in nm.
        extinction: molar extinction coefficients of HbO and HbR, shape
            (nwavelength, 2).
        active: flags of usable measurements. Defaults to all active.
        time_units: units of 'time' if it is not a Quantity.
        name: identity of the source artifact.
        **labels: optional 'source' and 'detector' labels of the measurements.

    Returns:
        MeasurementSeries: the series with its time axis in seconds.
    """
    return MeasurementSeries(
        dod=build_dod_timeseries(
            dod,
            time=time,
            wavelength_index=wavelength_index,
            active=active,
            time_units=time_units,
            **labels,
        ),
        wavelengths=wavelengths,
        extinction=build_extinction_table(extinction, wavelengths),
        name=name,
    )


@dataclass
class InverseOperator:
    """Regularized inverse of the sensitivity matrix.

    For the standard reconstruction there is one matrix per wavelength. For the
    multispectral reconstruction there is a single matrix with 2N rows, HbO rows
    first, followed by the HbR rows.
    """

    matrices: list[InverseMatrix]
    basis: Optional[tuple[int, ...]] = None
    log: list[tuple[str, Any]] = field(default_factory=list)
    name: Optional[str] = None

    def __post_init__(self):
        self.matrices = [
            m if isinstance(m, xr.DataArray)
            else build_matrix(m, InverseMatrixSchema.dims)
            for m in self.matrices
        ]
        for m in self.matrices:
            InverseMatrixSchema.validate(m)
        self.basis = _normalize_basis(self.basis)
        self.log = [(normalize_log_key(k), v) for k, v in self.log]

    def log_value(self, key: str, default=None):
        """Look up a provenance entry by its key (case-insensitive)."""
        return _lookup_log(self.log, key, default)


@dataclass
class Jacobian:
    """Sensitivity matrices of the active measurements, one per wavelength.

    'matrices' live in the native volume (or basis) space. For reconstructions on
    the cortex, 'gm_matrices' hold the sensitivities on the surface mesh nodes.
    """

    matrices: list[JacobianMatrix]
    gm_matrices: Optional[list[JacobianMatrix]] = None
    basis: Optional[tuple[int, ...]] = None
    name: Optional[str] = None

    def __post_init__(self):
        def _wrap(matrices):
            return [
                m if isinstance(m, xr.DataArray)
                else build_matrix(m, JacobianMatrixSchema.dims)
                for m in matrices
            ]

        self.matrices = _wrap(self.matrices)
        if self.gm_matrices is not None:
            self.gm_matrices = _wrap(self.gm_matrices)
            if len(self.gm_matrices) != len(self.matrices):
                raise ValidationError(
                    "volume and cortex Jacobians must cover the same wavelengths."
                )

        for m in self.matrices + (self.gm_matrices or []):
            JacobianMatrixSchema.validate(m)
        self.basis = _normalize_basis(self.basis)


@dataclass
class SpatialMapping:
    """Volume mesh, cortical surface mesh and the linear map between them."""

    volume_nodes: np.ndarray
    surface_nodes: np.ndarray
    vol2gm: scipy.sparse.sparray | np.ndarray
    volume_elements: Optional[np.ndarray] = None
    name: Optional[str] = None

    def __post_init__(self):
        self.volume_nodes = np.asarray(self.volume_nodes, dtype=float)
        self.surface_nodes = np.asarray(self.surface_nodes, dtype=float)
        validators.has_positions(self.volume_nodes, "volume mesh nodes")
        validators.has_positions(self.surface_nodes, "surface mesh nodes")

        self.vol2gm = scipy.sparse.csr_array(self.vol2gm)
        expected = (self.n_surface, self.n_volume)
        if self.vol2gm.shape != expected:
            raise ValidationError(
                f"vol2gm must have shape {expected} (surface nodes, volume nodes) but "
                f"has shape {self.vol2gm.shape}."
            )

    @property
    def n_volume(self) -> int:
        return self.volume_nodes.shape[0]

    @property
    def n_surface(self) -> int:
        return self.surface_nodes.shape[0]

    def volume_to_surface(self, vector: np.ndarray) -> np.ndarray:
        """Map a vector of volume node values onto the surface nodes."""
        return np.asarray(self.vol2gm @ np.asarray(vector))
