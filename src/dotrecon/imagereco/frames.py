"""Per-frame application of the inverse operators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

import dotrecon.nirs as nirs
import dotrecon.xrutils as xrutils
from dotrecon.dataclasses import InverseOperator, MeasurementSeries
from dotrecon.errors import DimensionMismatch
from dotrecon.imagereco.config import ReconConfig, ReconMethod


@dataclass
class FrameResult:
    haem: Optional[np.ndarray] = None
    """HbO (row 0) and HbR (row 1) node values, shape (2, N)."""

    mua: Optional[np.ndarray] = None
    """Absorption changes per wavelength, shape (nwavelength, N)."""


class FrameReconstructor:
    """Reconstructs node-space images from the measurement vectors of one frame.

    Args:
        config: the effective reconstruction configuration.
        operator: the inverse operator. Must hold one matrix per wavelength for the
            standard method and a single matrix with 2N rows for the multispectral
            method.
        series: the measurement series, providing wavelengths and extinction
            coefficients.
    """

    def __init__(
        self,
        config: ReconConfig,
        operator: InverseOperator,
        series: MeasurementSeries,
    ):
        self.config = config
        self._matrices = [
            xrutils.as_matrix(m, "node", "measurement") for m in operator.matrices
        ]
        self._unmix = None

        if config.recon_method == ReconMethod.MULTISPECTRAL:
            if len(self._matrices) != 1:
                raise DimensionMismatch(
                    "the multispectral reconstruction requires a single inverse "
                    f"operator but {len(self._matrices)} were provided."
                )
            if self._matrices[0].shape[0] % 2 != 0:
                raise DimensionMismatch(
                    "the multispectral inverse operator must have an even number of "
                    f"rows (HbO and HbR) but has {self._matrices[0].shape[0]}."
                )
        else:
            if len(self._matrices) != series.nwavelengths:
                raise DimensionMismatch(
                    f"the standard reconstruction requires one inverse operator per "
                    f"wavelength ({series.nwavelengths}) but {len(self._matrices)} "
                    "were provided."
                )
            if len({m.shape[0] for m in self._matrices}) > 1:
                raise DimensionMismatch(
                    "the inverse operators of all wavelengths must have the same "
                    "number of nodes."
                )

            if config.wants_haem:
                self._unmix = nirs.get_unmixing_operator(
                    series.extinction, series.wavelengths
                ).transpose("chromo", "wavelength").values

    @property
    def n_nodes(self) -> int:
        """Size N of the native node space."""
        if self.config.recon_method == ReconMethod.MULTISPECTRAL:
            return self._matrices[0].shape[0] // 2
        return self._matrices[0].shape[0]

    def check_measurements(self, counts: list[int]):
        """Compare the operator columns with the number of active measurements."""
        if len(counts) != len(self._matrices):
            raise DimensionMismatch(
                f"expected {len(self._matrices)} measurement vectors but found "
                f"{len(counts)}."
            )

        for i, (matrix, count) in enumerate(zip(self._matrices, counts)):
            if matrix.shape[1] != count:
                what = (
                    "multispectral operator"
                    if self.config.recon_method == ReconMethod.MULTISPECTRAL
                    else f"operator of wavelength #{i}"
                )
                raise DimensionMismatch.channel_count(what, matrix.shape[1], count)

    def reconstruct(self, vectors: list[np.ndarray]) -> FrameResult:
        """Apply the inverse operators to the measurement vectors of one frame."""

        if self.config.recon_method == ReconMethod.MULTISPECTRAL:
            img = self._matrices[0] @ vectors[0]
            n = self.n_nodes
            return FrameResult(haem=np.stack([img[:n], img[n:]]))

        # (nwavelength, N)
        mua = np.stack([W @ y for W, y in zip(self._matrices, vectors)])

        result = FrameResult()
        if self._unmix is not None:
            # (2, nwavelength) @ (nwavelength, N) -> (2, N)
            result.haem = self._unmix @ mua
        if self.config.wants_mua:
            result.mua = mua

        return result
