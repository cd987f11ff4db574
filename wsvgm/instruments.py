"""
Instrument table: maps waveform fingerprints to MIDI programs.

The table is persisted as YAML so the `midi_instrument` of any entry can be
edited by hand; edited programs stick because lookups return the stored value.
"""

import re
import shutil
import sys
import time
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from waveforms import (
    DEFAULT_INSTRUMENTS, DefaultInstrument,
    fingerprint, decode_fingerprint, classify, render_graph, are_similar
)


CUSTOM_NAME_PREFIX = "CustomWave_"
BUILTIN_SOURCE = "Built-in"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

STORE_HEADER = (
    "# Instrument configuration for vgm2mid\n"
    "# This file is auto-generated and managed by the converter.\n"
    "# You can manually edit the 'midi_instrument' for any entry.\n"
    "\n"
)


def current_timestamp() -> str:
    return time.strftime(TIMESTAMP_FORMAT, time.localtime())


@dataclass
class InstrumentEntry:
    """One learned (or built-in) instrument."""
    name: str
    fingerprint: str
    midi_instrument: int
    source: str = ""
    registered_at: str = ""
    graph: List[str] = field(default_factory=list)

    @property
    def waveform(self) -> Tuple[int, ...]:
        return decode_fingerprint(self.fingerprint)

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'fingerprint': self.fingerprint,
            'midi_instrument': self.midi_instrument,
            'source': self.source,
            'registered_at': self.registered_at,
            'graph': list(self.graph),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'InstrumentEntry':
        """Build an entry from a store record.

        Raises:
            ValueError: if the record is unusable
        """
        if not isinstance(data, dict):
            raise ValueError(f"entry is not a mapping: {data!r}")
        name = data.get('name')
        fp = data.get('fingerprint')
        if not name or not fp:
            raise ValueError(f"entry is missing a name or fingerprint: {data!r}")
        fp = str(fp).strip().lower()
        decode_fingerprint(fp)

        program = data.get('midi_instrument')
        if isinstance(program, bool) or not isinstance(program, int):
            raise ValueError(f"{name}: midi_instrument must be an integer, got {program!r}")
        if not 0 <= program <= 127:
            raise ValueError(f"{name}: midi_instrument {program} out of range 0-127")

        graph = data.get('graph') or []
        if not isinstance(graph, list):
            graph = str(graph).splitlines()

        return cls(
            name=str(name),
            fingerprint=fp,
            midi_instrument=program,
            source=str(data.get('source') or ''),
            registered_at=str(data.get('registered_at') or ''),
            graph=[str(row) for row in graph],
        )

    @classmethod
    def from_default(cls, default: DefaultInstrument, registered_at: str) -> 'InstrumentEntry':
        return cls(
            name=default.name,
            fingerprint=fingerprint(default.waveform),
            midi_instrument=default.program,
            source=BUILTIN_SOURCE,
            registered_at=registered_at,
            graph=render_graph(default.waveform),
        )


class InstrumentStore:
    """YAML text store for the instrument table."""

    def __init__(self, path):
        self.path = Path(path)
        # Set when the file on disk holds content load() could not use;
        # the next write copies it to the backup path first
        self.damaged = False

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + '.bak')

    def load(self) -> List[InstrumentEntry]:
        """Read all usable entries in file order.

        A missing or unparseable file yields an empty list; bad entries are
        skipped with a warning. Either problem marks the store as damaged.
        """
        self.damaged = False
        if not self.path.exists():
            return []

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            print(f"WARNING: Could not read instrument file {self.path}: {e}", file=sys.stderr)
            self.damaged = True
            return []

        if not isinstance(document, dict) or not isinstance(document.get('instruments'), list):
            print(f"WARNING: Instrument file {self.path} has no 'instruments' list", file=sys.stderr)
            self.damaged = document is not None
            return []

        entries = []
        for index, record in enumerate(document['instruments']):
            try:
                entries.append(InstrumentEntry.from_dict(record))
            except ValueError as e:
                print(f"WARNING: Skipping instrument entry {index} in {self.path}: {e}", file=sys.stderr)
                self.damaged = True
        return entries

    def _backup_damaged_file(self):
        if not self.damaged or not self.path.exists():
            return
        shutil.copyfile(self.path, self.backup_path)
        print(f"WARNING: Saved unreadable instrument file as {self.backup_path}", file=sys.stderr)
        self.damaged = False

    def save(self, entries: Sequence[InstrumentEntry]):
        """Write all entries sorted by name."""
        self.rewrite(sorted(entries, key=lambda e: e.name))

    def rewrite(self, entries: Sequence[InstrumentEntry]):
        """Write all entries in the given order."""
        document = {'instruments': [entry.to_dict() for entry in entries]}
        try:
            self._backup_damaged_file()
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                f.write(STORE_HEADER)
                yaml.safe_dump(document, f, allow_unicode=True, sort_keys=False,
                               default_flow_style=False, width=200)
        except OSError as e:
            print(f"ERROR: Could not write instrument file {self.path}: {e}", file=sys.stderr)


class InstrumentRegistry:
    """Owns the fingerprint -> instrument map and its persistence round-trip."""

    def __init__(self, store: InstrumentStore,
                 defaults: Sequence[DefaultInstrument] = DEFAULT_INSTRUMENTS,
                 usage=None):
        """Initialize with a store and the built-in instrument table.

        Args:
            store: Persistent text store for the table
            defaults: Immutable built-in instruments used when the store is empty
            usage: Optional UsageTracker that is told about newly discovered instruments
        """
        self.store = store
        self.defaults = tuple(defaults)
        self.usage = usage
        self.instruments: Dict[str, InstrumentEntry] = {}
        self.next_custom_id = 1

    def __len__(self) -> int:
        return len(self.instruments)

    def __contains__(self, fp: str) -> bool:
        return fp in self.instruments

    def load(self):
        """Load the table, regenerating built-in defaults if nothing usable is stored.

        Defaults are only written out when the file was missing or empty; a
        damaged file is left in place until something new has to be saved.
        """
        self.instruments = {}
        for entry in self.store.load():
            self.instruments[entry.fingerprint] = entry

        if not self.instruments:
            self._populate_with_defaults()
            if not self.store.damaged:
                self.store.save(self.entries())

        self.next_custom_id = 1
        for entry in self.instruments.values():
            match = re.fullmatch(CUSTOM_NAME_PREFIX + r'(\d+)', entry.name)
            if match:
                self.next_custom_id = max(self.next_custom_id, int(match.group(1)) + 1)

    def _populate_with_defaults(self):
        ts = current_timestamp()
        for default in self.defaults:
            entry = InstrumentEntry.from_default(default, ts)
            self.instruments.setdefault(entry.fingerprint, entry)

    def entries(self) -> List[InstrumentEntry]:
        return list(self.instruments.values())

    def get(self, fp: str) -> Optional[InstrumentEntry]:
        return self.instruments.get(fp)

    def resolve(self, waveform: Sequence[int], source_label: str) -> int:
        """Return the MIDI program for a waveform, registering it if unseen.

        Lookup is exact-match on the fingerprint.
        """
        fp = fingerprint(waveform)
        entry = self.instruments.get(fp)
        if entry is not None:
            return entry.midi_instrument

        entry = InstrumentEntry(
            name=f"{CUSTOM_NAME_PREFIX}{self.next_custom_id}",
            fingerprint=fp,
            midi_instrument=classify(waveform),
            source=source_label,
            registered_at=current_timestamp(),
            graph=render_graph(waveform),
        )
        self.next_custom_id += 1
        self.instruments[fp] = entry

        print(f"  New instrument: {entry.name} -> program {entry.midi_instrument}")
        if self.usage is not None:
            self.usage.report_new_instrument(entry)
        self.store.save(self.entries())

        return entry.midi_instrument

    def cluster_by_similarity(self, threshold: int = 6) -> List[List[InstrumentEntry]]:
        """Group near-identical waveforms and rewrite the store in cluster order.

        Each unprocessed entry seeds a cluster of every later entry within
        `threshold` differing samples. Lookups are unaffected.

        Returns:
            The clusters in the order they were written
        """
        if not self.instruments:
            return []

        all_entries = self.entries()
        waves = [entry.waveform for entry in all_entries]
        processed = [False] * len(all_entries)
        clusters = []

        for i, seed in enumerate(all_entries):
            if processed[i]:
                continue
            cluster = [seed]
            processed[i] = True
            for j in range(i + 1, len(all_entries)):
                if not processed[j] and are_similar(waves[i], waves[j], threshold):
                    cluster.append(all_entries[j])
                    processed[j] = True
            cluster.sort(key=lambda e: e.name)
            clusters.append(cluster)

        self.store.rewrite([entry for cluster in clusters for entry in cluster])
        self.load()
        return clusters
