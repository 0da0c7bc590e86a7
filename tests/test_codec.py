"""Tests for the G.711 μ-law codec."""

import numpy as np
import pytest

from app.core.codec import Codec


class TestCodec:
    """Test μ-law encode/decode."""

    @pytest.mark.parametrize("ulaw_byte,expected", [
        (0xFF, 0),
        (0x7F, 0),
        (0x80, 32124),
        (0x00, -32124),
        (0xFE, 8),
        (0x7E, -8),
        (0xF0, 120),
        (0xEF, 132),
    ])
    def test_decode_vectors(self, ulaw_byte: int, expected: int) -> None:
        """Test canonical G.711 decode values."""
        assert Codec.decode_ulaw_sample(ulaw_byte) == expected

    @pytest.mark.parametrize("sample,expected", [
        (0, 0xFF),
        (8, 0xFE),
        (-8, 0x7E),
        (1000, 0xCE),
        (32767, 0x80),
        (-32768, 0x00),
        (40000, 0x80),    # clamped to int16
        (-40000, 0x00),
    ])
    def test_encode_vectors(self, sample: int, expected: int) -> None:
        """Test canonical G.711 encode values, including clamping."""
        assert Codec.encode_ulaw_sample(sample) == expected

    def test_byte_round_trip(self) -> None:
        """Every byte survives decode+encode except negative zero."""
        for ulaw_byte in range(256):
            encoded = Codec.encode_ulaw_sample(Codec.decode_ulaw_sample(ulaw_byte))
            if ulaw_byte == 0x7F:
                assert encoded == 0xFF  # -0 and +0 decode to the same sample
            else:
                assert encoded == ulaw_byte

    def test_reconstruction_error_bounded(self) -> None:
        """Decoded value stays within the quantization step of its band."""
        for sample in range(-32768, 32768, 7):
            ulaw_byte = Codec.encode_ulaw_sample(sample)
            exponent = ((~ulaw_byte & 0xFF) >> 4) & 0x07
            error = abs(Codec.decode_ulaw_sample(ulaw_byte) - sample)
            assert error <= 1 << (exponent + 3), f"sample={sample}"

    def test_small_signals_are_precise(self) -> None:
        """Low-level samples reconstruct within a few units."""
        for sample in range(-100, 101):
            decoded = Codec.decode_ulaw_sample(Codec.encode_ulaw_sample(sample))
            assert abs(decoded - sample) <= 4

    def test_vectorized_decode_matches_scalar(self) -> None:
        """Test table-driven decode against the scalar reference."""
        pcm = Codec.ulaw_to_pcm16(bytes(range(256)))

        assert pcm.dtype == np.int16
        assert pcm.tolist() == [Codec.decode_ulaw_sample(b) for b in range(256)]

    def test_vectorized_encode_matches_scalar(self) -> None:
        """Test table-driven encode against the scalar reference."""
        samples = np.arange(-32768, 32768, 97, dtype=np.int16)
        ulaw = Codec.pcm16_to_ulaw(samples)

        assert len(ulaw) == len(samples)
        assert list(ulaw) == [Codec.encode_ulaw_sample(int(s)) for s in samples]

    def test_frame_size(self) -> None:
        """Test 20ms frame conversion sizes."""
        # 20ms frame at 8kHz = 160 samples = 160 bytes μ-law
        pcm = Codec.ulaw_to_pcm16(b'\xff' * 160)
        assert len(pcm) == 160
        assert not pcm.any()

        ulaw = Codec.pcm16_to_ulaw(pcm)
        assert ulaw == b'\xff' * 160

    def test_empty_data(self) -> None:
        """Test handling of empty data."""
        assert len(Codec.ulaw_to_pcm16(b'')) == 0
        assert Codec.pcm16_to_ulaw(np.zeros(0, dtype=np.int16)) == b''
