"""Solver for the image reconstruction problem.

Provides the default inverse operator provider, which computes regularized
pseudo-inverses of a Jacobian when no precomputed inverse operator is available.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import numpy as np
from numpy.typing import ArrayLike

import dotrecon.nirs as nirs
import dotrecon.xrutils as xrutils
from dotrecon.dataclasses import (
    InverseOperator,
    Jacobian,
    MeasurementSeries,
    SpatialMapping,
    build_matrix,
)
from dotrecon.errors import DimensionMismatch, MissingInput
from dotrecon.imagereco.config import (
    LOG_KEYS,
    ReconConfig,
    ReconMethod,
    ReconSpace,
    RegMethod,
    check_consistency,
)
from dotrecon.imagereco.measurements import MeasurementPreparer

logger = logging.getLogger("dotrecon")


class InverseOperatorProvider(Protocol):
    """Callable that computes an inverse operator for a reconstruction run."""

    def __call__(
        self,
        jacobian: Jacobian,
        series: MeasurementSeries,
        mapping: SpatialMapping,
        config: ReconConfig,
    ) -> InverseOperator: ...


def pseudo_inverse(
    A: np.ndarray,
    alpha: float = 0.01,
    c_meas: Optional[ArrayLike] = None,
    alpha_spatial: Optional[float] = None,
) -> np.ndarray:
    """Calculate the regularized pseudo-inverse of a sensitivity matrix.

    Computes W = D @ inv(F + lambda_meas * C) with lambda_meas = alpha * max eig(F).
    Without spatial regularization D = A.T and F = A @ A.T. With spatial
    regularization the columns of A are scaled by 1/L with
    L = sqrt(diag(A.T @ A) + alpha_spatial * max(diag(A.T @ A))), and
    D = L^-2 @ A.T, F = A_hat @ A_hat.T.

    Args:
        A: sensitivity matrix of shape (nmeasurement, nnode).
        alpha: Tikhonov regularization parameter.
        c_meas: Optional measurement regularization. Either a vector of size
            nmeasurement or a matrix of size nmeasurement x nmeasurement. Defaults to
            the identity.
        alpha_spatial: Optional spatial regularization parameter.

    Returns:
        np.ndarray: the inverse of shape (nnode, nmeasurement).
    """
    A = np.asarray(A, dtype=float)

    if alpha_spatial is not None:
        B = np.sum(A**2, axis=0)
        lambda_spatial = alpha_spatial * B.max()

        Linv = 1 / np.sqrt(B + lambda_spatial)
        A_hat = A * Linv[np.newaxis, :]

        F = A_hat @ A_hat.T
        D = Linv[:, np.newaxis] ** 2 * A.T
    else:  # no spatial regularization
        F = A @ A.T
        D = A.T

    max_eig = np.max(np.linalg.eigvals(F).real)
    lambda_meas = alpha * max_eig

    if c_meas is None:
        C = np.eye(F.shape[0])
    else:
        c_meas = np.asarray(c_meas, dtype=float)
        C = c_meas if c_meas.ndim == 2 else np.diag(c_meas)

    return D @ np.linalg.inv(F + lambda_meas * C)


def _regularization(config: ReconConfig) -> tuple[float, Optional[float]]:
    # configs built without resolve_config are not validated yet
    check_consistency(config)

    hp = config.hyper_parameter
    if config.reg_method == RegMethod.SPATIAL:
        return hp[0], hp[1]
    return hp, None


def stack_multispectral(
    jacobians: list[np.ndarray],
    preparer: MeasurementPreparer,
    extinction: np.ndarray,
) -> np.ndarray:
    """Combine per-wavelength Jacobians into the multispectral sensitivity matrix.

    The rows follow the order of all active measurements in the measurement list,
    i.e. the order of the multispectral measurement vector. The first N columns
    are the sensitivities to HbO, the last N columns those to HbR.

    Args:
        jacobians: per wavelength, matrices of shape (nactive_wl, N) whose rows are
            the active measurements of that wavelength in measurement-list order.
        preparer: a multispectral MeasurementPreparer of the series.
        extinction: normalized extinction matrix of shape (nwavelength, 2).

    Returns:
        np.ndarray: matrix of shape (nactive, 2N).
    """
    series = preparer.series
    wl_index = series.dod.wavelength_index.values
    active = np.flatnonzero(series.dod.active.values.astype(bool))

    n_nodes = jacobians[0].shape[1]
    stacked = np.zeros((len(active), 2 * n_nodes))

    # position of each active measurement within its wavelength's Jacobian
    row_in_wavelength = np.zeros(len(active), dtype=int)
    for iwl in range(len(jacobians)):
        mask = wl_index[active] == iwl
        if jacobians[iwl].shape[0] != np.count_nonzero(mask):
            raise DimensionMismatch.channel_count(
                f"Jacobian of wavelength #{iwl}",
                jacobians[iwl].shape[0],
                np.count_nonzero(mask),
            )
        row_in_wavelength[mask] = np.arange(np.count_nonzero(mask))

    for irow, imeas in enumerate(active):
        iwl = wl_index[imeas]
        J = jacobians[iwl][row_in_wavelength[irow]]
        stacked[irow, :n_nodes] = extinction[iwl, 0] * J
        stacked[irow, n_nodes:] = extinction[iwl, 1] * J

    return stacked


def invert_jacobian(
    jacobian: Jacobian,
    series: MeasurementSeries,
    mapping: SpatialMapping,
    config: ReconConfig,
) -> InverseOperator:
    """Compute the inverse operator of a Jacobian for the given configuration.

    Args:
        jacobian: per-wavelength sensitivities of the active measurements.
        series: the measurement series. Provides wavelengths, extinction
            coefficients and, for regMethod 'covariance', the measurement variances.
        mapping: the spatial mapping. Used to verify the node count of the Jacobian.
        config: the reconstruction configuration.

    Returns:
        InverseOperator: one matrix per wavelength for the standard method or a
        single stacked matrix for the multispectral method.
    """
    if jacobian is None:
        raise MissingInput("no Jacobian available to compute the inverse operator.")

    if len(jacobian.matrices) != series.nwavelengths:
        raise DimensionMismatch(
            f"the Jacobian covers {len(jacobian.matrices)} wavelengths but the "
            f"measurement series has {series.nwavelengths}."
        )

    if (config.recon_space == ReconSpace.CORTEX) and (jacobian.basis is None):
        if jacobian.gm_matrices is None:
            raise MissingInput(
                "reconSpace 'cortex' requires a Jacobian on the cortical surface."
            )
        matrices, n_expected = jacobian.gm_matrices, mapping.n_surface
    else:
        matrices = jacobian.matrices
        n_expected = None if jacobian.basis is not None else mapping.n_volume

    matrices = [xrutils.as_matrix(m, "measurement", "node") for m in matrices]

    for J in matrices:
        if (n_expected is not None) and (J.shape[1] != n_expected):
            raise DimensionMismatch.node_count("Jacobian", n_expected, J.shape[1])

    alpha, alpha_spatial = _regularization(config)
    preparer = MeasurementPreparer(series, config.recon_method)

    c_meas = None
    if config.reg_method == RegMethod.COVARIANCE:
        c_meas = preparer.variances()

    logger.info(
        f"inverting Jacobian ({config.recon_method}, {config.reg_method}, "
        f"hyperParameter={config.hyper_parameter})."
    )

    if config.recon_method == ReconMethod.MULTISPECTRAL:
        E = nirs.get_extinction_matrix(series.extinction, series.wavelengths)
        A = stack_multispectral(
            matrices, preparer, E.transpose("wavelength", "chromo").values
        )
        inverses = [
            pseudo_inverse(
                A,
                alpha,
                None if c_meas is None else c_meas[0],
                alpha_spatial,
            )
        ]
    else:
        counts = preparer.counts()
        for iwl, (J, count) in enumerate(zip(matrices, counts)):
            if J.shape[0] != count:
                raise DimensionMismatch.channel_count(
                    f"Jacobian of wavelength #{iwl}", J.shape[0], count
                )
        inverses = [
            pseudo_inverse(
                J,
                alpha,
                None if c_meas is None else c_meas[iwl],
                alpha_spatial,
            )
            for iwl, J in enumerate(matrices)
        ]

    log = [
        (LOG_KEYS["recon_method"], str(config.recon_method)),
        (LOG_KEYS["recon_space"], str(config.recon_space)),
        (LOG_KEYS["reg_method"], str(config.reg_method)),
        (LOG_KEYS["hyper_parameter"], config.hyper_parameter),
        ("Associated jacobian", str(jacobian.name)),
    ]

    return InverseOperator(
        matrices=[build_matrix(W, ("node", "measurement")) for W in inverses],
        basis=jacobian.basis,
        log=log,
        name=f"{jacobian.name or 'jacobian'} (computed)",
    )
