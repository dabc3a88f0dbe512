from .artifacts import (
    load_inverse_operator,
    load_jacobian,
    load_measurement_series,
    load_spatial_mapping,
    save_inverse_operator,
    save_jacobian,
    save_measurement_series,
    save_spatial_mapping,
)
from .dotimg import dotimg_filename, read_dotimg, write_dotimg
