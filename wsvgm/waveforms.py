"""
Waveform fingerprinting and instrument classification.

A waveform is 32 four-bit samples unpacked from 16 bytes of wave RAM (low
nibble first). Its fingerprint is the identity key for instrument reuse.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

WAVEFORM_SAMPLES = 32
WAVEFORM_BYTES = 16
FINGERPRINT_LENGTH = WAVEFORM_SAMPLES * 2

# Programs picked by the classifier
PROGRAM_SQUARE_LEAD = 80
PROGRAM_SAW_LEAD = 81
PROGRAM_CALLIOPE = 82
PROGRAM_CHIFF = 83
PROGRAM_FLUTE = 74

Waveform = Tuple[int, ...]


def unpack_waveform(ram: Sequence[int], base: int) -> Waveform:
    """Read a 32-sample waveform from wave RAM starting at `base`."""
    mask = len(ram) - 1
    samples: List[int] = []
    for i in range(WAVEFORM_BYTES):
        byte = ram[(base + i) & mask]
        samples.append(byte & 0x0F)
        samples.append((byte >> 4) & 0x0F)
    return tuple(samples)


def fingerprint(waveform: Sequence[int]) -> str:
    """Deterministic hex identity of a waveform (two hex digits per sample)."""
    return ''.join(f"{sample:02x}" for sample in waveform)


def decode_fingerprint(fp: str) -> Waveform:
    """Inverse of fingerprint().

    Raises:
        ValueError: if the string is not a valid fingerprint
    """
    if len(fp) != FINGERPRINT_LENGTH:
        raise ValueError(f"Fingerprint must be {FINGERPRINT_LENGTH} hex digits, got {len(fp)}")
    samples = tuple(int(fp[i:i + 2], 16) for i in range(0, FINGERPRINT_LENGTH, 2))
    if any(s > 15 for s in samples):
        raise ValueError(f"Fingerprint has sample values above 15: {fp}")
    return samples


def classify(waveform: Sequence[int]) -> int:
    """Best-effort General MIDI program guess for a waveform shape.

    Checks, in order: duty cycle (near-empty or near-full shapes are thin
    pulses, a half duty is a square), a consistent slope run for ramps and
    triangles, then peaks and troughs for rounded multi-lobed shapes.
    """
    high_samples = sum(1 for sample in waveform if sample > 7)
    if high_samples <= 4 or high_samples >= 28:
        return PROGRAM_CALLIOPE
    if high_samples <= 8 or high_samples >= 24:
        return PROGRAM_CHIFF
    if 14 <= high_samples <= 18:
        return PROGRAM_SQUARE_LEAD

    # Near-monotonic runs: consecutive differences that stay within 1 of each other
    diffs = [waveform[i + 1] - waveform[i] for i in range(len(waveform) - 1)]
    consistent_slope_count = sum(
        1 for prev, cur in zip(diffs, diffs[1:]) if abs(cur - prev) <= 1
    )
    if consistent_slope_count > 25:
        return PROGRAM_SAW_LEAD

    peaks = troughs = 0
    for i in range(1, len(waveform) - 1):
        if waveform[i] > waveform[i - 1] and waveform[i] > waveform[i + 1]:
            peaks += 1
        if waveform[i] < waveform[i - 1] and waveform[i] < waveform[i + 1]:
            troughs += 1
    if peaks >= 1 and troughs >= 1:
        return PROGRAM_FLUTE

    return PROGRAM_SQUARE_LEAD


def render_graph(waveform: Sequence[int]) -> List[str]:
    """Render a waveform as 16 text rows, top row = level 15."""
    rows = []
    for level in range(15, -1, -1):
        rows.append(''.join('█' if sample >= level else ' ' for sample in waveform))
    return rows


def sample_distance(wave1: Sequence[int], wave2: Sequence[int]) -> int:
    """Number of sample positions at which two waveforms differ."""
    return sum(1 for a, b in zip(wave1, wave2) if a != b)


def are_similar(wave1: Sequence[int], wave2: Sequence[int], threshold: int = 6) -> bool:
    """Check whether two waveforms differ in at most `threshold` positions."""
    return sample_distance(wave1, wave2) <= threshold


@dataclass(frozen=True)
class DefaultInstrument:
    """A built-in instrument seeded into an empty instrument store."""
    name: str
    program: int
    waveform: Waveform
    description: str


PULSE_WAVE = (15,) * 16 + (0,) * 16
NOISE_WAVE = (8, 2, 15, 5, 12, 9, 0, 7, 11, 4, 13, 1, 6, 10, 3, 14) * 2
TRIANGLE_WAVE = tuple(range(16)) + tuple(range(15, -1, -1))
SINE_LIKE_WAVE = (8, 10, 12, 14, 15, 15, 14, 12, 10, 8, 6, 4, 2, 1, 1, 2,
                  4, 6, 8, 10, 12, 14, 15, 15, 14, 12, 10, 8, 6, 4, 2, 1)
SAWTOOTH_WAVE = tuple(range(15, -1, -1)) + tuple(range(16))

DEFAULT_INSTRUMENTS: Tuple[DefaultInstrument, ...] = (
    DefaultInstrument("PULSE", 80, PULSE_WAVE, "Pulse Wave"),
    DefaultInstrument("NOISE", 127, NOISE_WAVE, "Noise Channel"),
    DefaultInstrument("WAVE_BUILTIN_1", 84, TRIANGLE_WAVE, "Built-in Waveform (Triangle)"),
    DefaultInstrument("WAVE_BUILTIN_2", 28, SINE_LIKE_WAVE, "Built-in Waveform (Sine-like)"),
    DefaultInstrument("WAVE_BUILTIN_3", 26, SAWTOOTH_WAVE, "Built-in Waveform (Sawtooth)"),
)
