from .config import (
    ImageType,
    ReconConfig,
    ReconMethod,
    ReconSpace,
    RegMethod,
    merge_operator_config,
    resolve_config,
)
from .reconstruction import reconstruct
from .solver import invert_jacobian, pseudo_inverse
from .spatial import BasisToVolume, MatrixBasisToVolume, SpatialMapper
