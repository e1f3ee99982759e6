"""
Canonical PCM WAV container.

The transcription service accepts a WAV file; captured audio is raw
interleaved 16-bit PCM, so it gets a 44-byte RIFF header and nothing else.
"""
import struct
from dataclasses import dataclass

WAV_HEADER_SIZE = 44

# 48 kHz stereo 16-bit, the format LiveKit frames are requested in
DEFAULT_SAMPLE_RATE = 48000
DEFAULT_CHANNELS = 2
DEFAULT_BIT_DEPTH = 16


@dataclass(frozen=True)
class EncodedClip:
    """A captured segment wrapped in a WAV container, ready for transcription."""

    data: bytes
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    bit_depth: int = DEFAULT_BIT_DEPTH

    @property
    def pcm_length(self) -> int:
        return len(self.data) - WAV_HEADER_SIZE


def wav_header(
    data_length: int,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
    bit_depth: int = DEFAULT_BIT_DEPTH,
) -> bytes:
    byte_rate = sample_rate * channels * bit_depth // 8
    block_align = channels * bit_depth // 8

    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_length,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size
        1,  # PCM
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bit_depth,
        b"data",
        data_length,
    )


def encode_wav(
    samples: bytes,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
    bit_depth: int = DEFAULT_BIT_DEPTH,
) -> bytes:
    """Return ``samples`` prefixed with a canonical 44-byte WAV header."""
    return wav_header(len(samples), sample_rate, channels, bit_depth) + bytes(samples)


def encode_clip(
    samples: bytes,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
    bit_depth: int = DEFAULT_BIT_DEPTH,
) -> EncodedClip:
    return EncodedClip(
        data=encode_wav(samples, sample_rate, channels, bit_depth),
        sample_rate=sample_rate,
        channels=channels,
        bit_depth=bit_depth,
    )
