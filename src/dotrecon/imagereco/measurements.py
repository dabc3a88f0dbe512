"""Extraction of the measurement vectors that enter the inverse operators."""

from __future__ import annotations

import numpy as np

from dotrecon.dataclasses import MeasurementSeries
from dotrecon.imagereco.config import ReconMethod


class MeasurementPreparer:
    """Provides per-frame measurement vectors in the column order of the operators.

    For the standard method there is one vector per wavelength holding the active
    measurements of that wavelength. For the multispectral method there is a single
    vector with all active measurements. In both cases measurements keep the order
    of the measurement list.

    The inverse operators expect ln(I / I0), i.e. the negated optical density
    changes, so the dOD values are negated here.
    """

    def __init__(self, series: MeasurementSeries, recon_method: ReconMethod):
        self.series = series
        self.recon_method = recon_method

        dod = series.dod.transpose("time", "measurement")
        active = dod.active.values.astype(bool)
        wl_index = dod.wavelength_index.values

        self._data = -np.asarray(dod.values, dtype=float)

        if recon_method == ReconMethod.MULTISPECTRAL:
            self._selections = [np.flatnonzero(active)]
        else:
            self._selections = [
                np.flatnonzero(active & (wl_index == iwl))
                for iwl in range(series.nwavelengths)
            ]

    @property
    def nframes(self) -> int:
        return self._data.shape[0]

    @property
    def selections(self) -> list[np.ndarray]:
        """Indices into the measurement list of each measurement vector."""
        return self._selections

    def counts(self) -> list[int]:
        """Number of active measurements in each measurement vector."""
        return [len(sel) for sel in self._selections]

    def frame(self, iframe: int) -> list[np.ndarray]:
        """Return the measurement vectors of one frame."""
        row = self._data[iframe]
        return [row[sel] for sel in self._selections]

    def variances(self) -> list[np.ndarray]:
        """Variance over time of each entry of the measurement vectors."""
        return [np.var(self._data[:, sel], axis=0) for sel in self._selections]
