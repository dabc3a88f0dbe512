import pint_xarray

units = pint_xarray.unit_registry
Quantity = units.Quantity

import dotrecon.dataclasses
import dotrecon.io
import dotrecon.nirs
import dotrecon.imagereco
