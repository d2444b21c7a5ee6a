"""confgate - test configuration files against declarative policies."""

__version__ = "0.1.0"
