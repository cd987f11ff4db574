"""
Waveform usage tracking and the per-conversion usage log.
"""

import sys
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

from chip_base import gm_instrument_name


class UsageTracker:
    """Tally of note starts per (channel, fingerprint) for one conversion."""

    def __init__(self, source_filename: str = ""):
        self.source_filename = source_filename
        self._counts: Dict[int, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.new_instruments: List = []

    def record(self, channel: int, fp: str):
        """Count one note start on a channel with the given sound fingerprint."""
        self._counts[channel][fp] += 1

    def report_new_instrument(self, entry):
        """Called by the instrument registry when a new waveform is registered."""
        self.new_instruments.append(entry)

    @property
    def counts(self) -> Dict[int, Dict[str, int]]:
        """Channel -> fingerprint -> note start count, as plain dictionaries."""
        return {channel: dict(fps) for channel, fps in self._counts.items()}

    def count(self, channel: int, fp: str) -> int:
        return self._counts.get(channel, {}).get(fp, 0)

    def total(self) -> int:
        return sum(sum(fps.values()) for fps in self._counts.values())

    def format_log(self, registry=None, timestamp: Optional[str] = None) -> str:
        """Render the conversion log text.

        Args:
            registry: Optional InstrumentRegistry used to name known fingerprints
            timestamp: Override for the log timestamp
        """
        if timestamp is None:
            timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())

        output = []
        output.append("--- Conversion Log ---")
        output.append(f"Timestamp: {timestamp}")
        output.append(f"Source File: {self.source_filename}")
        output.append("")

        if self.new_instruments:
            output.append("New Waveforms Registered:")
            for entry in self.new_instruments:
                output.append(f"  - {entry.name} (Fingerprint: {entry.fingerprint})")
            output.append("")

        counts = self.counts
        if not counts:
            output.append("Waveform Usage: None")
        else:
            output.append("Waveform Usage by Channel:")
            for channel in sorted(counts.keys()):
                output.append(f"  Channel {channel}:")
                for fp, count in sorted(counts[channel].items()):
                    label = fp
                    entry = registry.get(fp) if registry is not None else None
                    if entry is not None:
                        label = (f"{entry.name} [{fp}] program {entry.midi_instrument} "
                                 f"{gm_instrument_name(entry.midi_instrument)}")
                    output.append(f"    - {label} ({count} times)")
        output.append("")

        return '\n'.join(output)

    def write_log(self, path, registry=None):
        """Overwrite the log file with this conversion's report."""
        try:
            Path(path).write_text(self.format_log(registry), encoding='utf-8')
        except OSError as e:
            print(f"ERROR: Could not write log file {path}: {e}", file=sys.stderr)
