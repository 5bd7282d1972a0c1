"""
Source generation from execution traces
"""

from .code_generator import CodeGenerator, SourceArtifact

__all__ = ["CodeGenerator", "SourceArtifact"]
