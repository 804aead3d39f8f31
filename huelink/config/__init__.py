"""Configuration module for huelink."""

from huelink.config.schema import Config

__all__ = ["Config"]
