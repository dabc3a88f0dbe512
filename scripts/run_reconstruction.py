#!/usr/bin/env python
"""Reconstruct images from a measurement series using a YAML configuration.

Example configuration:

    reconstruction:
      reconMethod: standard
      imageType: both
      saveVolumeImages: false
    inverse_operator: subject01.invjac
    # or, to compute the inverse operator on the fly:
    # jacobian: subject01.jac
"""

import logging
from pathlib import Path

import click
import yaml

import dotrecon.imagereco as reco
import dotrecon.io


def _resolve(path: str, config_dir: Path) -> Path:
    path = Path(path)
    return path if path.is_absolute() else config_dir / path


@click.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False), required=True)
@click.argument("src", type=click.Path(exists=True), required=True)
@click.argument("rmap", type=click.Path(exists=True), required=True)
@click.argument("dst", required=False)
@click.option("--no-save", is_flag=True, help="Reconstruct without writing images.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(config, src, rmap, dst, no_save, verbose):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)

    config_dir = Path(config).parent
    with open(config, "r") as fin:
        config = yaml.safe_load(fin) or {}

    options = dict(config.get("reconstruction", None) or {})
    if no_save:
        options["persist"] = False

    series = dotrecon.io.load_measurement_series(src)
    mapping = dotrecon.io.load_spatial_mapping(rmap)

    inverse_operator = None
    jacobian = None
    if "inverse_operator" in config:
        fname = _resolve(config["inverse_operator"], config_dir)
        inverse_operator = dotrecon.io.load_inverse_operator(fname)
    elif "jacobian" in config:
        jacobian = dotrecon.io.load_jacobian(_resolve(config["jacobian"], config_dir))
    else:
        raise click.UsageError(
            "the configuration must specify 'inverse_operator' or 'jacobian'."
        )

    images, fname = reco.reconstruct(
        series,
        mapping,
        inverse_operator=inverse_operator,
        jacobian=jacobian,
        filename=dst,
        **options,
    )

    click.echo(f"{images}")
    if fname is not None:
        click.echo(f"images saved to '{fname}'")


if __name__ == "__main__":
    main()
