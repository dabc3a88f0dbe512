"""Utility functions for tests."""

import contextlib
import tempfile
from collections.abc import Iterator
from pathlib import Path

import numpy as np
import scipy.sparse

import dotrecon.dataclasses as cdc


@contextlib.contextmanager
def temporary_filename(suffix: str = None) -> Iterator[Path]:
    """Context that creates a temporary file, returns its name and deletes it on exit.

    Using this context to create a temporary file works around the problem that on
    Windows an open temporary file may not be reopened again.

    Adapted from https://stackoverflow.com/a/57701186.

    Args:
      suffix: filename extension

    Yields:
      The path of the temporary file.
    """

    try:
        f = tempfile.NamedTemporaryFile(suffix=suffix, delete=False)
        tmp_name = Path(f.name)
        f.close()
        yield tmp_name
    finally:
        tmp_name.unlink(missing_ok=True)


def synthetic_series(
    dod: np.ndarray,
    wavelength_index: np.ndarray,
    wavelengths: list[float],
    extinction: np.ndarray,
    active: np.ndarray = None,
    name: str = "synthetic.prepro",
) -> cdc.MeasurementSeries:
    """Build a measurement series with time points at 1 Hz."""
    dod = np.atleast_2d(np.asarray(dod, dtype=float))
    return cdc.build_measurement_series(
        dod,
        time=np.arange(dod.shape[0], dtype=float),
        wavelength_index=wavelength_index,
        wavelengths=wavelengths,
        extinction=extinction,
        active=active,
        name=name,
    )


def synthetic_mapping(
    n_volume: int, n_surface: int, vol2gm=None, seed: int = 0
) -> cdc.SpatialMapping:
    """Build a spatial mapping with random node positions.

    If vol2gm is None, each surface node takes the value of one volume node.
    """
    rng = np.random.default_rng(seed)

    if vol2gm is None:
        cols = np.arange(n_surface) % n_volume
        vol2gm = scipy.sparse.coo_array(
            (np.ones(n_surface), (np.arange(n_surface), cols)),
            shape=(n_surface, n_volume),
        )

    return cdc.SpatialMapping(
        volume_nodes=rng.uniform(0, 100, size=(n_volume, 3)),
        surface_nodes=rng.uniform(0, 100, size=(n_surface, 3)),
        vol2gm=vol2gm,
        name="synthetic.rmap",
    )
