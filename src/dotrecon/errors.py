"""dotrecon-specific exceptions."""


class ReconstructionError(ValueError):
    """Base class of all errors raised during image reconstruction."""


class InvalidConfiguration(ReconstructionError):
    """Error when reconstruction options are unknown or inconsistent."""

    @classmethod
    def unknown_value(cls, option: str, value, allowed: list[str]):
        return cls(
            f"unrecognized value '{value}' for option '{option}'. "
            f"Expected one of: {', '.join(allowed)}."
        )

    @classmethod
    def unknown_option(cls, option: str):
        return cls(f"unknown reconstruction option '{option}'.")


class MissingInput(ReconstructionError):
    """Error when inputs required for the reconstruction are not provided."""


class InverseOperatorError(MissingInput):
    """Error when the inverse operator could not be provided."""


class DimensionMismatch(ReconstructionError):
    """Error when array sizes of measurements, operators and meshes disagree."""

    @classmethod
    def channel_count(cls, what: str, expected: int, found: int):
        return cls(
            f"{what}: the inverse operator expects {expected} active measurements "
            f"but the measurement series provides {found}."
        )

    @classmethod
    def node_count(cls, what: str, expected: int, found: int):
        return cls(
            f"{what}: expected vectors with {expected} nodes but found {found}."
        )
