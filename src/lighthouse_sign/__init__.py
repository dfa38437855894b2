"""Lighthouse Sign: multi-party sequential e-signature for GLRS agreements."""

__version__ = "0.1.0"
