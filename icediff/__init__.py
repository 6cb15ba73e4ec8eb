"""icediff: a differential ICE fuzzer for two builds of the same compiler."""

__version__ = "0.1.0"
