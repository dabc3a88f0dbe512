"""Reconstruction options and their validation."""

from __future__ import annotations

import logging
import numbers
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

import numpy as np
from strenum import StrEnum

from dotrecon.dataclasses import InverseOperator
from dotrecon.dataclasses.artifacts import normalize_log_key
from dotrecon.errors import InvalidConfiguration

logger = logging.getLogger("dotrecon")


class ReconMethod(StrEnum):
    STANDARD = "standard"  # invert each wavelength, then unmix
    MULTISPECTRAL = "multispectral"  # invert HbO and HbR jointly


class ReconSpace(StrEnum):
    VOLUME = "volume"
    CORTEX = "cortex"


class RegMethod(StrEnum):
    TIKHONOV = "tikhonov"
    COVARIANCE = "covariance"
    SPATIAL = "spatial"


class ImageType(StrEnum):
    HAEM = "haem"
    MUA = "mua"
    BOTH = "both"


HyperParameter = float | tuple[float, ...]


@dataclass(frozen=True)
class ReconConfig:
    """Resolved options of a reconstruction run.

    Instances are created with resolve_config, which parses and validates the
    options, and are passed explicitly to every stage of the reconstruction.
    """

    recon_method: ReconMethod = ReconMethod.STANDARD
    recon_space: ReconSpace = ReconSpace.VOLUME
    reg_method: RegMethod = RegMethod.TIKHONOV
    hyper_parameter: HyperParameter = 0.01
    image_type: ImageType = ImageType.HAEM
    save_volume_images: bool = True
    persist: bool = True

    @property
    def wants_haem(self) -> bool:
        return self.image_type in (ImageType.HAEM, ImageType.BOTH)

    @property
    def wants_mua(self) -> bool:
        return self.image_type in (ImageType.MUA, ImageType.BOTH)

    def as_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def as_log(self) -> list[tuple[str, Any]]:
        """Return the options as (key, value) pairs using the log key names."""
        return [(LOG_KEYS[k], v) for k, v in self.as_dict().items()]


#: names under which the options appear in logs and configuration files
LOG_KEYS = {
    "recon_method": "reconMethod",
    "recon_space": "reconSpace",
    "reg_method": "regMethod",
    "hyper_parameter": "hyperParameter",
    "image_type": "imageType",
    "save_volume_images": "saveVolumeImages",
    "persist": "persist",
}

_ALIASES = {k.lower(): k for k in LOG_KEYS}
_ALIASES.update({v.lower(): k for k, v in LOG_KEYS.items()})
_ALIASES["saveflag"] = "persist"

#: options that an inverse operator's log overrides
OPERATOR_OVERRIDES = ("hyper_parameter", "recon_method", "reg_method", "recon_space")


def canonical_option_name(key: str) -> Optional[str]:
    """Map an option name or alias (e.g. 'reconMethod') to its field name."""
    return _ALIASES.get(normalize_log_key(key).lower())


def _parse_enum(enum_cls, option: str, value):
    if isinstance(value, enum_cls):
        return value

    if isinstance(value, bytes):
        value = value.decode()

    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass

    raise InvalidConfiguration.unknown_value(option, value, [m.value for m in enum_cls])


def _is_real(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, (bool, np.bool_))


def _parse_hyper_parameter(value) -> HyperParameter:
    if _is_real(value):
        return float(value)

    if isinstance(value, (list, tuple, np.ndarray)):
        values = np.asarray(value).ravel().tolist()
        if len(values) > 0 and all(_is_real(v) for v in values):
            if len(values) == 1:
                return float(values[0])
            return tuple(float(v) for v in values)

    raise InvalidConfiguration(
        f"hyperParameter must be a number or a sequence of numbers, got '{value}'."
    )


def _parse_flag(option: str, value) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if _is_real(value) and value in (0, 1):
        return bool(value)

    raise InvalidConfiguration(f"option '{option}' must be a boolean, got '{value}'.")


_PARSERS = {
    "recon_method": lambda v: _parse_enum(ReconMethod, "reconMethod", v),
    "recon_space": lambda v: _parse_enum(ReconSpace, "reconSpace", v),
    "reg_method": lambda v: _parse_enum(RegMethod, "regMethod", v),
    "hyper_parameter": _parse_hyper_parameter,
    "image_type": lambda v: _parse_enum(ImageType, "imageType", v),
    "save_volume_images": lambda v: _parse_flag("saveVolumeImages", v),
    "persist": lambda v: _parse_flag("persist", v),
}


def check_consistency(config: ReconConfig):
    """Raise InvalidConfiguration for option combinations that are not supported."""

    if config.wants_mua and (config.recon_method != ReconMethod.STANDARD):
        raise InvalidConfiguration(
            f"imageType '{config.image_type}' requires reconMethod 'standard' but "
            f"reconMethod is '{config.recon_method}'."
        )

    hp = config.hyper_parameter
    if config.reg_method == RegMethod.SPATIAL:
        if not isinstance(hp, tuple) or len(hp) != 2:
            raise InvalidConfiguration(
                "regMethod 'spatial' requires hyperParameter to be a pair "
                f"(alpha_meas, alpha_spatial) but got '{hp}'."
            )
    elif isinstance(hp, tuple):
        raise InvalidConfiguration(
            f"regMethod '{config.reg_method}' requires a scalar hyperParameter but "
            f"got '{hp}'."
        )


def resolve_config(options: Optional[Mapping[str, Any]] = None, **kwargs):
    """Parse and validate reconstruction options.

    Option names can be given as field names (e.g. 'recon_method') or in the
    camelCase spelling of logs and configuration files (e.g. 'reconMethod').
    Enumerated values are matched case-insensitively. Options that are not
    specified keep their defaults.

    Args:
        options: mapping of option names to values.
        **kwargs: further options. These take precedence over 'options'.

    Returns:
        ReconConfig: the validated configuration.

    Raises:
        InvalidConfiguration: for unknown options, unrecognized values or an
            inconsistent combination of options.
    """

    merged = dict(options or {})
    merged.update(kwargs)

    parsed = {}
    for key, value in merged.items():
        if (name := canonical_option_name(key)) is None:
            raise InvalidConfiguration.unknown_option(key)
        parsed[name] = _PARSERS[name](value)

    config = ReconConfig(**parsed)
    check_consistency(config)

    return config


def merge_operator_config(
    config: ReconConfig, operator: InverseOperator
) -> ReconConfig:
    """Let the options recorded by an inverse operator override the caller's options.

    The operator was computed for a specific hyper parameter, reconstruction method,
    regularization method and reconstruction space. These values are read from the
    operator's log and replace the corresponding options of 'config'.

    Args:
        config: the caller's configuration.
        operator: the inverse operator supplied to the reconstruction.

    Returns:
        ReconConfig: the effective configuration.
    """
    overrides = {}
    for key, value in operator.log:
        name = canonical_option_name(key)
        if name in OPERATOR_OVERRIDES:
            overrides[name] = value

    if not overrides:
        return config

    logger.info("inverse operator supplied, reverting to its recorded parameters.")

    options = config.as_dict()
    options.update(overrides)
    effective = resolve_config(options)

    for name in OPERATOR_OVERRIDES:
        if getattr(config, name) != getattr(effective, name):
            logger.info(
                f"{LOG_KEYS[name]}: {getattr(config, name)} -> "
                f"{getattr(effective, name)}"
            )

    return effective


def log_config(config: ReconConfig, header: str = "reconstruction parameters"):
    logger.info(f"{header}:")
    for key, value in config.as_log():
        logger.info(f"  {key} = {value}")
