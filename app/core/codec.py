"""Audio codec for μ-law <-> PCM16 and 8kHz <-> 16kHz conversion.

Twilio Media Streams carry G.711 μ-law @ 8kHz, ElevenLabs ConvAI expects and
returns PCM16 @ 16kHz. The rate conversion here is deliberately naive (linear
midpoint interpolation up, pairwise box average down) and uses integer floor
arithmetic throughout, so output is byte-for-byte reproducible.
"""

import base64
import binascii
from typing import Literal

import numpy as np


Endian = Literal["le", "be"]

_PCM16_DTYPES = {
    "le": np.dtype("<i2"),
    "be": np.dtype(">i2"),
}


class AudioFormatError(ValueError):
    """Raised when an audio payload cannot be decoded."""


class Codec:
    """G.711 μ-law codec with vectorized operations."""

    # μ-law constants
    ULAW_MAX = 0x7FFF  # Maximum biased linear value
    ULAW_BIAS = 0x84  # Bias for linear code

    _ulaw_table: np.ndarray | None = None
    _pcm_to_ulaw_table: np.ndarray | None = None

    @staticmethod
    def decode_ulaw_sample(ulaw_byte: int) -> int:
        """Decode a single μ-law byte to a PCM16 sample."""
        # Complement to obtain normal u-law value
        ulaw = ~ulaw_byte & 0xFF

        sign = ulaw & 0x80
        exponent = (ulaw >> 4) & 0x07
        mantissa = ulaw & 0x0F

        # Standard G.711 expansion, not ((mantissa << 1) + 1) << (exponent + 2); 0xFF decodes to 0
        sample = ((mantissa << 3) + Codec.ULAW_BIAS) << exponent
        sample -= Codec.ULAW_BIAS

        return -sample if sign else sample

    @staticmethod
    def encode_ulaw_sample(sample: int) -> int:
        """Encode a single PCM16 sample to μ-law."""
        sample = max(-32768, min(32767, int(sample)))

        # Get sign
        if sample < 0:
            sign = 0x80
            sample = -sample
        else:
            sign = 0

        # Add bias, then clip
        sample += Codec.ULAW_BIAS
        if sample > Codec.ULAW_MAX:
            sample = Codec.ULAW_MAX

        # Find exponent
        exponent = 7
        mask = 0x4000
        while (sample & mask) == 0 and exponent > 0:
            exponent -= 1
            mask >>= 1

        mantissa = (sample >> (exponent + 3)) & 0x0F

        # Combine and complement
        return ~(sign | (exponent << 4) | mantissa) & 0xFF

    @staticmethod
    def ulaw_to_pcm16(ulaw_data: bytes) -> np.ndarray:
        """Convert μ-law bytes to PCM16 samples.

        Args:
            ulaw_data: μ-law encoded audio data

        Returns:
            int16 sample array, one sample per input byte
        """
        if Codec._ulaw_table is None:
            Codec._ulaw_table = np.array(
                [Codec.decode_ulaw_sample(i) for i in range(256)],
                dtype=np.int16
            )

        ulaw_array = np.frombuffer(ulaw_data, dtype=np.uint8)
        return Codec._ulaw_table[ulaw_array]

    @staticmethod
    def pcm16_to_ulaw(samples: np.ndarray) -> bytes:
        """Convert PCM16 samples to μ-law bytes.

        Args:
            samples: int16 sample array

        Returns:
            μ-law encoded audio data, one byte per sample
        """
        if Codec._pcm_to_ulaw_table is None:
            # Indexed by sample + 32768, covers the whole int16 range
            Codec._pcm_to_ulaw_table = np.array(
                [Codec.encode_ulaw_sample(pcm) for pcm in range(-32768, 32768)],
                dtype=np.uint8
            )

        index = samples.astype(np.int32) + 32768
        return Codec._pcm_to_ulaw_table[index].tobytes()


def upsample_8k_to_16k(samples: np.ndarray) -> np.ndarray:
    """Double the sample rate by midpoint interpolation.

    For each adjacent pair (a, b) emits a and (a + b) >> 1; the last input
    sample is emitted twice so the output is exactly twice the input length.

    Args:
        samples: int16 samples @ 8kHz

    Returns:
        int16 samples @ 16kHz
    """
    count = len(samples)
    if count == 0:
        return np.zeros(0, dtype=np.int16)

    wide = samples.astype(np.int32)
    out = np.empty(count * 2, dtype=np.int16)
    out[0::2] = samples
    out[1:-1:2] = (wide[:-1] + wide[1:]) >> 1
    out[-1] = samples[-1]
    return out


def downsample_16k_to_8k(samples: np.ndarray) -> np.ndarray:
    """Halve the sample rate by averaging consecutive pairs (floor).

    A trailing odd sample is dropped.

    Args:
        samples: int16 samples @ 16kHz

    Returns:
        int16 samples @ 8kHz
    """
    pairs = len(samples) // 2
    wide = samples[:pairs * 2].astype(np.int32)
    return ((wide[0::2] + wide[1::2]) >> 1).astype(np.int16)


def decode_base64(payload: str) -> bytes:
    """Decode a base64 audio payload.

    Raises:
        AudioFormatError: If the payload is not valid base64
    """
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise AudioFormatError(f"Invalid base64 payload: {e}") from e


def encode_base64(data: bytes) -> str:
    """Encode raw audio bytes as a base64 string."""
    return base64.b64encode(data).decode("ascii")


def pcm16_from_bytes(data: bytes, endian: Endian = "le") -> np.ndarray:
    """Interpret raw bytes as PCM16 samples.

    Raises:
        AudioFormatError: If the byte length is odd
    """
    if len(data) % 2:
        raise AudioFormatError(f"PCM16 payload has odd length: {len(data)} bytes")
    return np.frombuffer(data, dtype=_PCM16_DTYPES[endian]).astype(np.int16)


def pcm16_to_bytes(samples: np.ndarray, endian: Endian = "le") -> bytes:
    """Serialize PCM16 samples with the given byte order."""
    return samples.astype(_PCM16_DTYPES[endian]).tobytes()


def mulaw_8k_to_pcm16_16k(ulaw_data: bytes, endian: Endian = "le") -> bytes:
    """Convert Twilio μ-law @ 8kHz to PCM16 @ 16kHz bytes.

    Args:
        ulaw_data: μ-law audio from Twilio
        endian: Byte order expected by the AI leg

    Returns:
        PCM16 @ 16kHz, 4 bytes per input byte
    """
    pcm_8k = Codec.ulaw_to_pcm16(ulaw_data)
    return pcm16_to_bytes(upsample_8k_to_16k(pcm_8k), endian)


def pcm16_16k_to_mulaw_8k(pcm_data: bytes, endian: Endian = "le") -> bytes:
    """Convert PCM16 @ 16kHz bytes to Twilio μ-law @ 8kHz.

    Args:
        pcm_data: PCM16 audio from the AI leg
        endian: Byte order of pcm_data

    Returns:
        μ-law audio, one byte per pair of input samples

    Raises:
        AudioFormatError: If pcm_data has an odd byte length
    """
    pcm_16k = pcm16_from_bytes(pcm_data, endian)
    return Codec.pcm16_to_ulaw(downsample_16k_to_8k(pcm_16k))
