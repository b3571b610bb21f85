"""Peripheral devices of the Varvara computer, driven by a caller-supplied Uxn machine."""

__version__ = "0.1.0"