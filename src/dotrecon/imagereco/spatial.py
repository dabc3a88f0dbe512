"""Mapping of node-space vectors between basis, volume mesh and cortical surface."""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
import scipy.sparse
from numpy.typing import ArrayLike

from dotrecon.dataclasses import SpatialMapping
from dotrecon.errors import DimensionMismatch
from dotrecon.imagereco.config import ReconSpace

logger = logging.getLogger("dotrecon")


class BasisToVolume(ABC):
    """Maps vectors from a reduced basis space onto the volume mesh nodes."""

    @property
    @abstractmethod
    def n_basis(self) -> int:
        """Number of basis coefficients."""
        pass

    @property
    @abstractmethod
    def n_volume(self) -> int:
        """Number of volume mesh nodes."""
        pass

    @abstractmethod
    def map(self, vector: np.ndarray) -> np.ndarray:
        """Map basis coefficients to volume node values."""
        pass


class MatrixBasisToVolume(BasisToVolume):
    """Basis mapping given by a linear operator of shape (n_volume, n_basis)."""

    def __init__(self, matrix: ArrayLike | scipy.sparse.sparray):
        self._matrix = scipy.sparse.csr_array(matrix)

    @property
    def n_basis(self) -> int:
        return self._matrix.shape[1]

    @property
    def n_volume(self) -> int:
        return self._matrix.shape[0]

    @property
    def matrix(self) -> scipy.sparse.csr_array:
        return self._matrix

    def map(self, vector: np.ndarray) -> np.ndarray:
        vector = np.asarray(vector)
        if vector.shape[0] != self.n_basis:
            raise DimensionMismatch.node_count(
                "basis mapping", self.n_basis, vector.shape[0]
            )
        return np.asarray(self._matrix @ vector)

    @classmethod
    def from_regular_grid(
        cls, shape: tuple[int, ...], volume_nodes: ArrayLike
    ) -> "MatrixBasisToVolume":
        """Build the trilinear interpolation from a regular grid onto mesh nodes.

        The grid spans the bounding box of the volume nodes with shape[i] points
        along axis i. Basis coefficients are ordered with the first (x) grid index
        varying fastest.

        Args:
            shape: number of grid points along each axis, e.g. (30, 30, 30).
            volume_nodes: node coordinates of the volume mesh (n_volume, >=ndim).

        Returns:
            The basis mapping as a sparse matrix of shape (n_volume, prod(shape)).
        """
        shape = np.asarray(shape, dtype=int)
        ndim = len(shape)
        if np.any(shape < 1):
            raise DimensionMismatch(f"invalid basis grid shape {tuple(shape)}.")

        nodes = np.asarray(volume_nodes, dtype=float)
        if (nodes.ndim != 2) or (nodes.shape[1] < ndim):
            raise DimensionMismatch(
                f"cannot map a {ndim}D basis onto nodes of shape {nodes.shape}."
            )
        nodes = nodes[:, :ndim]
        nnodes = nodes.shape[0]

        lo = nodes.min(axis=0)
        hi = nodes.max(axis=0)
        span = np.where(hi > lo, hi - lo, 1.0)

        # continuous grid coordinates in [0, shape-1] and the lower cell corner
        u = (nodes - lo) / span * (shape - 1)
        base = np.clip(np.floor(u).astype(int), 0, np.maximum(shape - 2, 0))
        frac = u - base

        rows, cols, vals = [], [], []
        for offsets in itertools.product((0, 1), repeat=ndim):
            offsets = np.asarray(offsets)
            idx = base + offsets
            valid = np.all(idx < shape, axis=1)
            weights = np.prod(np.where(offsets == 1, frac, 1.0 - frac), axis=1)
            flat = np.ravel_multi_index(
                tuple(np.minimum(idx, shape - 1).T), tuple(shape), order="F"
            )

            rows.append(np.flatnonzero(valid))
            cols.append(flat[valid])
            vals.append(weights[valid])

        matrix = scipy.sparse.coo_array(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=(nnodes, int(np.prod(shape))),
        )
        logger.debug(
            f"built basis mapping from a {tuple(shape)} grid onto {nnodes} nodes."
        )

        return cls(matrix)


class SpatialMapper:
    """Transforms reconstructed node-space vectors into volume and surface images.

    Three regimes exist:

    - with a basis mapping: basis -> volume mesh -> cortical surface,
    - without basis in cortex space: the vector already lives on the surface,
    - without basis in volume space: volume mesh -> cortical surface.

    Args:
        mapping: volume mesh, surface mesh and the vol2gm operator.
        recon_space: the space in which the inverse operator was computed.
        basis_to_volume: mapping from the basis space, if a basis is used.
    """

    def __init__(
        self,
        mapping: SpatialMapping,
        recon_space: ReconSpace,
        basis_to_volume: Optional[BasisToVolume] = None,
    ):
        self.mapping = mapping
        self.recon_space = recon_space
        self.basis_to_volume = basis_to_volume

        if (basis_to_volume is not None) and (
            basis_to_volume.n_volume != mapping.n_volume
        ):
            raise DimensionMismatch(
                f"the basis mapping produces {basis_to_volume.n_volume} volume nodes "
                f"but the volume mesh has {mapping.n_volume} nodes."
            )

    def native_size(self) -> int:
        """Length of the node-space vectors produced by the inverse operator."""
        if self.basis_to_volume is not None:
            return self.basis_to_volume.n_basis
        elif self.recon_space == ReconSpace.CORTEX:
            return self.mapping.n_surface
        else:
            return self.mapping.n_volume

    def check(self, n_nodes: int, what: str = "inverse operator"):
        """Raise DimensionMismatch if n_nodes differs from the native size."""
        if n_nodes != self.native_size():
            raise DimensionMismatch.node_count(what, self.native_size(), n_nodes)

    def map(self, vector: np.ndarray) -> tuple[Optional[np.ndarray], np.ndarray]:
        """Map a native node-space vector.

        Returns:
            The volume image (None in cortex space without basis) and the surface
            image.
        """
        if self.basis_to_volume is not None:
            vol = self.basis_to_volume.map(vector)
            return vol, self.mapping.volume_to_surface(vol)
        elif self.recon_space == ReconSpace.CORTEX:
            return None, np.asarray(vector)
        else:
            return np.asarray(vector), self.mapping.volume_to_surface(vector)
