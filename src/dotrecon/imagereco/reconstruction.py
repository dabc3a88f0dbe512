"""Linear reconstruction of absorption and concentration images from dOD data."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import numpy as np
from tqdm import tqdm

import dotrecon.io as dio
from dotrecon.dataclasses import (
    ImageSet,
    InverseOperator,
    Jacobian,
    MeasurementSeries,
    SpatialMapping,
)
from dotrecon.errors import InverseOperatorError, MissingInput
from dotrecon.imagereco.assembly import ImageAssembler, build_provenance
from dotrecon.imagereco.config import (
    ReconConfig,
    log_config,
    merge_operator_config,
    resolve_config,
)
from dotrecon.imagereco.frames import FrameReconstructor
from dotrecon.imagereco.measurements import MeasurementPreparer
from dotrecon.imagereco.solver import InverseOperatorProvider, invert_jacobian
from dotrecon.imagereco.spatial import (
    BasisToVolume,
    MatrixBasisToVolume,
    SpatialMapper,
)

logger = logging.getLogger("dotrecon")

ImageWriter = Callable[[ImageSet, Optional[Path], bool], Optional[Path]]


def provide_inverse_operator(
    provider: InverseOperatorProvider,
    jacobian: Optional[Jacobian],
    series: MeasurementSeries,
    mapping: SpatialMapping,
    config: ReconConfig,
) -> InverseOperator:
    """Invoke the inverse operator provider once.

    Errors of the provider are raised as InverseOperatorError (a MissingInput).
    """
    if jacobian is None:
        raise MissingInput(
            "either an inverse operator or a Jacobian to compute it from is required."
        )

    logger.info("no inverse operator supplied, computing it from the Jacobian.")
    try:
        operator = provider(jacobian, series, mapping, config)
    except MissingInput:
        raise
    except Exception as e:
        raise InverseOperatorError(
            f"the inverse operator could not be computed: {e}"
        ) from e

    if operator is None:
        raise InverseOperatorError("the inverse operator provider returned nothing.")

    return operator


def _basis_to_volume(
    operator: InverseOperator,
    mapping: SpatialMapping,
    basis_to_volume: Optional[BasisToVolume],
) -> Optional[BasisToVolume]:
    if operator.basis is None:
        return None
    if basis_to_volume is not None:
        return basis_to_volume

    logger.info(f"building basis mapping for basis grid {operator.basis}.")
    return MatrixBasisToVolume.from_regular_grid(operator.basis, mapping.volume_nodes)


def _map_rows(
    mapper: SpatialMapper, rows: Optional[np.ndarray]
) -> tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    if rows is None:
        return None, None

    mapped = [mapper.map(row) for row in rows]
    gm = np.stack([g for _, g in mapped])
    if mapped[0][0] is None:
        return None, gm
    return np.stack([v for v, _ in mapped]), gm


def reconstruct(
    series: MeasurementSeries,
    mapping: SpatialMapping,
    inverse_operator: Optional[InverseOperator] = None,
    jacobian: Optional[Jacobian] = None,
    *,
    provider: InverseOperatorProvider = invert_jacobian,
    writer: ImageWriter = dio.write_dotimg,
    filename: str | Path | None = None,
    basis_to_volume: Optional[BasisToVolume] = None,
    progress: bool = True,
    **options: Any,
) -> tuple[ImageSet, Optional[Path]]:
    """Reconstruct images of HbO/HbR and/or mua changes from dOD time series.

    Args:
        series: the preprocessed optical density changes.
        mapping: volume mesh, cortical surface mesh and the vol2gm operator.
        inverse_operator: a precomputed inverse operator. Its recorded
            hyperParameter, reconMethod, regMethod and reconSpace override the
            corresponding options.
        jacobian: the Jacobian from which to compute the inverse operator if none is
            supplied. The computed operator is not saved.
        provider: computes the inverse operator from the Jacobian.
        writer: receives the images, the output file name and the persist flag.
        filename: output file name. Defaults to the measurement name with the
            suffix '.dotimg'.
        basis_to_volume: mapping from the operator's basis space to the volume mesh.
            If the operator has a basis and this is None, the mapping is built from
            the basis grid and the volume mesh nodes.
        progress: show a progress bar over the frames.
        **options: reconstruction options, see resolve_config.

    Returns:
        The images and the file they were written to (None if not persisted).

    Raises:
        InvalidConfiguration: if the options are invalid.
        MissingInput: if no inverse operator can be obtained.
        DimensionMismatch: if measurements, operators and meshes do not fit.
    """
    config = resolve_config(options)

    if config.persist and filename is None:
        if series.name is None:
            raise MissingInput("no file name to save the images to.")
        filename = dio.dotimg_filename(series.name)

    if inverse_operator is None:
        log_config(config)
        inverse_operator = provide_inverse_operator(
            provider, jacobian, series, mapping, config
        )
    else:
        config = merge_operator_config(config, inverse_operator)
        log_config(config, "effective reconstruction parameters")

    # all checks run before the first frame
    preparer = MeasurementPreparer(series, config.recon_method)
    reconstructor = FrameReconstructor(config, inverse_operator, series)
    reconstructor.check_measurements(preparer.counts())

    mapper = SpatialMapper(
        mapping,
        config.recon_space,
        _basis_to_volume(inverse_operator, mapping, basis_to_volume),
    )
    mapper.check(reconstructor.n_nodes)

    assembler = ImageAssembler(
        config,
        series.nframes,
        mapping.n_volume,
        mapping.n_surface,
        series.wavelengths,
    )

    logger.info(f"reconstructing {series.nframes} frames.")
    for iframe in tqdm(range(series.nframes), disable=not progress):
        result = reconstructor.reconstruct(preparer.frame(iframe))
        logger.debug(f"frame {iframe} at t={series.time[iframe]:g}s reconstructed.")

        haem_vol, haem_gm = _map_rows(mapper, result.haem)
        mua_vol, mua_gm = _map_rows(mapper, result.mua)
        assembler.add(iframe, haem_vol, haem_gm, mua_vol, mua_gm)

    images = assembler.finalize(
        series.time, build_provenance(config, series, inverse_operator)
    )

    return images, writer(images, filename, config.persist)
