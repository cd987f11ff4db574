"""
Conversion orchestrator.
Handles config loading, the instrument registry, single-file and batch conversion.
"""

import sys
import traceback
import yaml
from pathlib import Path
from typing import Dict, List, Optional

from chip_base import ConversionSettings
from engine import WonderSwanEngine
from instruments import InstrumentStore, InstrumentRegistry, InstrumentEntry
from usage import UsageTracker
from vgm_reader import VgmReader
from output_generators import MidiGenerator, dump_events_to_text

CAPTURE_SUFFIXES = ('.vgm', '.vgz')


def load_config(config_path: Optional[str]) -> Dict:
    """Load the YAML settings file; no path means an empty config."""
    if not config_path:
        return {}
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return config


class VgmConverter:
    """Main converter class."""

    def __init__(self, config_path: Optional[str] = None, **overrides):
        """Initialize with an optional YAML config file.

        Args:
            config_path: YAML settings file
            overrides: Setting values from the command line, None = not given
        """
        self.config = load_config(config_path)
        self.settings = ConversionSettings.from_config(self.config, **overrides)

        self.store = InstrumentStore(self.settings.instrument_file)
        self.registry = InstrumentRegistry(self.store)
        self.registry.load()

        self.midi_generator = MidiGenerator(self.settings)

    def _output_path_for(self, input_path: Path) -> Path:
        if self.settings.output_dir:
            output_dir = Path(self.settings.output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            return output_dir / f"{input_path.stem}.mid"
        return input_path.with_suffix('.mid')

    def convert_file(self, input_path, output_path=None) -> Dict:
        """Convert one capture to a MIDI file.

        Raises:
            VgmFormatError: if the capture header is invalid
            OSError: if the capture cannot be read or the output written

        Returns:
            Decoding statistics plus 'notes' and 'new_instruments' counts
        """
        input_path = Path(input_path)
        output_path = Path(output_path) if output_path else self._output_path_for(input_path)

        print(f"--- Converting {input_path.name} ---")

        reader = VgmReader.from_file(input_path)
        header = reader.header
        if header.wonderswan_clock:
            print(f"  VGM {header.version_string}, WonderSwan clock {header.wonderswan_clock} Hz")
        else:
            print(f"  VGM {header.version_string}")

        tracker = UsageTracker(input_path.name)
        self.registry.usage = tracker
        engine = WonderSwanEngine(self.registry, tracker, self.settings, source_label=input_path.name)

        try:
            stats = reader.play(engine, loops=self.settings.loops)
        finally:
            self.registry.usage = None

        sequence = engine.build_sequence(input_path.stem)
        self.midi_generator.generate(sequence, output_path, debug_events=self.settings.debug_events)

        generated = [output_path.name]
        if self.settings.dump_text:
            text_file = output_path.with_suffix('.txt')
            text_file.write_text(dump_events_to_text(sequence))
            generated.append(text_file.name)
        if self.settings.debug_events:
            generated.append(output_path.with_suffix('.events').name)

        tracker.write_log(self.settings.log_file, self.registry)

        if stats['truncated']:
            print("  Note: command stream ended mid-command")
        print(f"  OK: Generated {', '.join(generated)} "
              f"({stats['samples']} samples, {stats['loops_played']} loop(s), "
              f"{tracker.total()} notes)")

        stats['notes'] = tracker.total()
        stats['new_instruments'] = len(tracker.new_instruments)
        return stats

    def convert_batch(self, directory) -> Dict[str, int]:
        """Convert every capture in a directory, continuing past failures.

        Returns:
            Dict with 'converted' and 'failed' counts
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise NotADirectoryError(f"Not a directory: {directory}")

        captures = sorted(p for p in directory.iterdir()
                          if p.is_file() and p.suffix.lower() in CAPTURE_SUFFIXES)
        print(f"Processing: {directory} ({len(captures)} file(s))")

        results = {'converted': 0, 'failed': 0}
        for capture in captures:
            try:
                self.convert_file(capture)
                results['converted'] += 1
            except Exception as e:
                print(f"  ERROR: {capture.name}: {e}", file=sys.stderr)
                traceback.print_exc()
                results['failed'] += 1

        print(f"Batch complete: {results['converted']} converted, {results['failed']} failed")
        return results

    def sort_instruments(self, threshold: int = 6) -> List[List[InstrumentEntry]]:
        """Cluster similar waveforms together in the instrument store."""
        print(f"Sorting instruments in {self.store.path} (threshold {threshold})")
        clusters = self.registry.cluster_by_similarity(threshold)
        for cluster in clusters:
            if len(cluster) > 1:
                names = ', '.join(entry.name for entry in cluster)
                print(f"  Cluster: {names}")
        print(f"  OK: {len(self.registry)} instruments in {len(clusters)} group(s)")
        return clusters
