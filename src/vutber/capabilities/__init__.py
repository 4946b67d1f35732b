"""Capability executors backed by external AI providers."""

from .base import BinaryArtifact, CapabilityError, CapabilityExecutor, TextResult

__all__ = ["BinaryArtifact", "CapabilityError", "CapabilityExecutor", "TextResult"]
