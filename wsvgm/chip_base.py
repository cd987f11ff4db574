"""
Base classes and shared utilities for sound chip engines.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional


# Global constants
NOTE_NAMES = ["C ", "C#", "D ", "D#", "E ", "F ", "F#",
              "G ", "G#", "A ", "A#", "B "]

# General MIDI instrument names for reference
GM_INSTRUMENTS = [
    "Acoustic Grand Piano", "Bright Acoustic Piano", "Electric Grand Piano", "Honky-tonk Piano",
    "Electric Piano 1", "Electric Piano 2", "Harpsichord", "Clavi",
    "Celesta", "Glockenspiel", "Music Box", "Vibraphone",
    "Marimba", "Xylophone", "Tubular Bells", "Dulcimer",
    "Drawbar Organ", "Percussive Organ", "Rock Organ", "Church Organ",
    "Reed Organ", "Accordion", "Harmonica", "Tango Accordion",
    "Acoustic Guitar (nylon)", "Acoustic Guitar (steel)", "Electric Guitar (jazz)", "Electric Guitar (clean)",
    "Electric Guitar (muted)", "Overdriven Guitar", "Distortion Guitar", "Guitar harmonics",
    "Acoustic Bass", "Electric Bass (finger)", "Electric Bass (pick)", "Fretless Bass",
    "Slap Bass 1", "Slap Bass 2", "Synth Bass 1", "Synth Bass 2",
    "Violin", "Viola", "Cello", "Contrabass",
    "Tremolo Strings", "Pizzicato Strings", "Orchestral Harp", "Timpani",
    "String Ensemble 1", "String Ensemble 2", "SynthStrings 1", "SynthStrings 2",
    "Choir Aahs", "Voice Oohs", "Synth Voice", "Orchestra Hit",
    "Trumpet", "Trombone", "Tuba", "Muted Trumpet",
    "French Horn", "Brass Section", "SynthBrass 1", "SynthBrass 2",
    "Soprano Sax", "Alto Sax", "Tenor Sax", "Baritone Sax",
    "Oboe", "English Horn", "Bassoon", "Clarinet",
    "Piccolo", "Flute", "Recorder", "Pan Flute",
    "Blown Bottle", "Shakuhachi", "Whistle", "Ocarina",
    "Lead 1 (square)", "Lead 2 (sawtooth)", "Lead 3 (calliope)", "Lead 4 (chiff)",
    "Lead 5 (charang)", "Lead 6 (voice)", "Lead 7 (fifths)", "Lead 8 (bass + lead)",
    "Pad 1 (new age)", "Pad 2 (warm)", "Pad 3 (polysynth)", "Pad 4 (choir)",
    "Pad 5 (bowed)", "Pad 6 (metallic)", "Pad 7 (halo)", "Pad 8 (sweep)",
    "FX 1 (rain)", "FX 2 (soundtrack)", "FX 3 (crystal)", "FX 4 (atmosphere)",
    "FX 5 (brightness)", "FX 6 (goblins)", "FX 7 (echoes)", "FX 8 (sci-fi)",
    "Sitar", "Banjo", "Shamisen", "Koto",
    "Kalimba", "Bag pipe", "Fiddle", "Shanai",
    "Tinkle Bell", "Agogo", "Steel Drums", "Woodblock",
    "Taiko Drum", "Melodic Tom", "Synth Drum", "Reverse Cymbal",
    "Guitar Fret Noise", "Breath Noise", "Seashore", "Bird Tweet",
    "Telephone Ring", "Helicopter", "Applause", "Gunshot"
]

# WonderSwan master clock and the waveform length it divides by
MASTER_CLOCK = 3072000.0
WAVE_LENGTH = 32

# Period values at or above this have no defined pitch
SILENT_PERIOD = 2048

PITCH_BEND_CENTER = 8192
PITCH_BEND_MAX = 16383


def gm_instrument_name(program: int) -> str:
    """Get the General MIDI name for a program number."""
    if 0 <= program < len(GM_INSTRUMENTS):
        return GM_INSTRUMENTS[program]
    return f"Unknown Instrument ({program})"


def period_to_freq(period: int) -> float:
    """Convert a channel period to its output frequency in Hz.

    Returns 0.0 when the period has no defined pitch.
    """
    if period >= SILENT_PERIOD:
        return 0.0
    return (MASTER_CLOCK / (SILENT_PERIOD - period)) / WAVE_LENGTH


def freq_to_midi_note(freq: float) -> Optional[int]:
    """Convert a frequency to the nearest MIDI note, clamped to 0-127."""
    if freq <= 0:
        return None
    note = round(69 + 12 * math.log2(freq / 440.0))
    return max(0, min(127, note))


def period_to_midi_note(period: int) -> Optional[int]:
    """Convert a channel period to a MIDI note (None = silent)."""
    return freq_to_midi_note(period_to_freq(period))


def note_name(note: int) -> str:
    """Human-readable name for a MIDI note, e.g. 'A 4'."""
    return f"{NOTE_NAMES[note % 12]}{note // 12 - 1}"


@dataclass(frozen=True)
class ConversionSettings:
    """Tunable parameters of a conversion run."""
    ticks_per_quarter: int = 480
    tempo_bpm: int = 120
    sample_rate: int = 44100
    loops: int = 2
    pitch_bend_range: float = 2.0  # Semitones each side of centre
    expression_exponent: float = 1.0  # 1.0 = linear, 0.5 = square-root curve
    default_program: int = 80
    pcm_program: int = 119
    noise_program: int = 127
    instrument_file: str = 'instruments.yaml'
    log_file: str = 'conversion_log.txt'
    output_dir: Optional[str] = None
    debug_events: bool = False
    dump_text: bool = False

    @classmethod
    def from_config(cls, config: Optional[Dict] = None, **overrides) -> 'ConversionSettings':
        """Build settings from a YAML config mapping plus explicit overrides.

        Unknown keys are ignored; overrides set to None are skipped.
        """
        values = {}
        known = cls.__dataclass_fields__
        for key, value in (config or {}).items():
            if key in known:
                values[key] = value
        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        return cls(**values)

    def samples_to_ticks(self, samples: int) -> int:
        """Convert elapsed samples to output ticks on the fixed linear time base."""
        return (samples * self.ticks_per_quarter * self.tempo_bpm) // (self.sample_rate * 60)

    @property
    def microseconds_per_quarter(self) -> int:
        return 60000000 // self.tempo_bpm

    @property
    def bend_range_cents(self) -> float:
        return self.pitch_bend_range * 100.0


class SoundChip(ABC):
    """Abstract interface a capture decoder drives.

    Calls arrive strictly in capture order: register writes update chip state
    synchronously, time advances are where musical events get produced.
    """

    @abstractmethod
    def write_register(self, address: int, value: int):
        """Write one byte to an I/O port."""
        pass

    @abstractmethod
    def write_wave_ram(self, address: int, value: int):
        """Write one byte to internal wave RAM."""
        pass

    @abstractmethod
    def advance(self, samples: int):
        """Advance emulated time by a number of output samples."""
        pass

    @abstractmethod
    def finalize(self):
        """Close any open notes at end of input."""
        pass
