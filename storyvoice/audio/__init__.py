"""Audio container handling and audiobook assembly modules."""

from .assembler import (
    AssemblyError,
    AssemblyInput,
    AssemblyOptions,
    AssemblyResult,
    AudioAssembler,
)
from .wav import AudioFormatError, WavFormat, build_wav, parse_wav

__all__ = [
    "AssemblyError",
    "AssemblyInput",
    "AssemblyOptions",
    "AssemblyResult",
    "AudioAssembler",
    "AudioFormatError",
    "WavFormat",
    "build_wav",
    "parse_wav",
]
