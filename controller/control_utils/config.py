"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from omegaconf import DictConfig, OmegaConf

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "configs" / "tracking_mpc.yaml"

SECTIONS = ("time", "constraints", "controller", "reference", "roadmap", "solver")


def read_yaml(path: Union[str, Path]) -> DictConfig:
    cfg = OmegaConf.load(path)
    if not isinstance(cfg, DictConfig):
        raise ValueError(f"Configuration file {path} must hold a mapping, got {type(cfg).__name__}.")
    return cfg


def load_config(path: Optional[Union[str, Path]] = None, overrides: Optional[dict] = None) -> dict:
    """
    Load the controller configuration.

    The packaged defaults are read first, then the optional file at `path` and
    the optional `overrides` mapping are merged on top, key by key. The result
    is returned as plain containers so the sections can be handed to the
    constructors directly.
    """
    layers = [read_yaml(DEFAULT_CONFIG_PATH)]
    if path is not None:
        layers.append(read_yaml(path))
        logger.info(f"Loaded controller configuration from {path}")
    if overrides:
        layers.append(OmegaConf.create(overrides))
    cfg = OmegaConf.to_container(OmegaConf.merge(*layers), resolve=True)
    missing = [section for section in SECTIONS if section not in cfg]
    if missing:
        raise ValueError(f"Configuration is missing sections {missing}.")
    return cfg
