"""Map tile capture and mosaic assembly."""

__version__ = "0.3.0"
