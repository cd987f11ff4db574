"""
Output generation for converted captures.

Generates MIDI files and text/JSON event listings from a MidiSequence.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional
from midiutil import MIDIFile

from chip_base import ConversionSettings, PITCH_BEND_CENTER, note_name, gm_instrument_name
from midi_events import (
    MidiEventType, MidiSequence, MidiTrackEvents,
    CC_MAIN_VOLUME, CC_EXPRESSION, CC_RPN_MSB, CC_RPN_LSB, CC_DATA_ENTRY_MSB, CC_DATA_ENTRY_LSB
)


def dump_events_to_text(sequence: MidiSequence) -> str:
    """Generate a plain-text listing of every event in a sequence.

    Args:
        sequence: Converted sequence

    Returns:
        Formatted event listing
    """
    output = []
    output.append(f"Song: {sequence.title}")
    output.append(f"Song length: {sequence.length} ticks ({sequence.ticks_per_quarter} per quarter)")
    output.append("")

    for track in [sequence.tempo_track] + sequence.tracks:
        output.append(f"=== {track.name} ===")
        output.append("")

        for idx, event in enumerate(track.events):
            parts = [f"[{idx:04d}] @{event.time:7d} +{event.delta:<5d} {event.type.name:15s}"]

            if event.type == MidiEventType.NOTE_ON:
                parts.append(f"note={event.note}({note_name(event.note)}) vel={event.velocity}")
            elif event.type == MidiEventType.NOTE_OFF:
                parts.append(f"note={event.note}({note_name(event.note)})")
            elif event.type == MidiEventType.CONTROLLER:
                parts.append(f"cc={event.controller} value={event.value}")
            elif event.type == MidiEventType.PROGRAM_CHANGE:
                parts.append(f"program={event.value} {gm_instrument_name(event.value)}")
            elif event.type == MidiEventType.PITCH_BEND:
                parts.append(f"value={event.value} ({event.value - PITCH_BEND_CENTER:+d})")
            elif event.type == MidiEventType.TEMPO:
                parts.append(f"usec_per_quarter={event.value}")

            output.append(''.join(parts))

        output.append("")
        output.append(f"  events: {len(track)}  notes: {len(track.get_events_of_type(MidiEventType.NOTE_ON))}")
        output.append("")

    return '\n'.join(output)


class MidiGenerator:
    """Generates MIDI files from converted sequences."""

    def __init__(self, settings: Optional[ConversionSettings] = None):
        """Initialize MIDI generator.

        Args:
            settings: Conversion settings (default program, bend range)
        """
        self.settings = settings or ConversionSettings()

    def generate(self, sequence: MidiSequence, output_path: Path, debug_events: bool = False):
        """Write a format 1 MIDI file: tempo track plus one track per channel.

        Args:
            sequence: Converted sequence
            output_path: Path to write MIDI file
            debug_events: Also write a JSON listing next to the MIDI file
        """
        output_path = Path(output_path)
        try:
            midi = self.build_midi(sequence)

            if debug_events:
                self._write_debug_events(output_path.with_suffix('.events'), sequence)

            with open(output_path, 'wb') as f:
                midi.writeFile(f)
        except Exception as e:
            raise Exception(f"MIDI generation failed: {e}") from e

    def build_midi(self, sequence: MidiSequence) -> MIDIFile:
        """Convert a sequence into a MIDIUtil file object."""
        # Times are passed to MIDIUtil in ticks throughout
        midi = MIDIFile(len(sequence.tracks), removeDuplicates=False, deinterleave=False,
                        file_format=1, ticks_per_quarternote=sequence.ticks_per_quarter,
                        eventtime_is_ticks=True)

        for event in sequence.tempo_track.get_events_of_type(MidiEventType.TEMPO):
            bpm = 60000000.0 / event.value
            midi.addTempo(0, event.time, bpm)

        for track_num, track in enumerate(sequence.tracks):
            self._write_midi_track(midi, track_num, track)

        return midi

    def _write_track_preamble(self, midi: MIDIFile, track_num: int, channel: int, name: str):
        """Track name, default program, full volume and the pitch bend range RPN."""
        midi.addTrackName(track_num, 0, name)
        midi.addProgramChange(track_num, channel, 0, self.settings.default_program)
        midi.addControllerEvent(track_num, channel, 0, CC_MAIN_VOLUME, 127)
        midi.addControllerEvent(track_num, channel, 0, CC_EXPRESSION, 127)

        bend_range = int(self.settings.pitch_bend_range)
        midi.addControllerEvent(track_num, channel, 0, CC_RPN_MSB, 0)
        midi.addControllerEvent(track_num, channel, 0, CC_RPN_LSB, 0)
        midi.addControllerEvent(track_num, channel, 0, CC_DATA_ENTRY_MSB, bend_range)
        midi.addControllerEvent(track_num, channel, 0, CC_DATA_ENTRY_LSB, 0)

    def _write_midi_track(self, midi: MIDIFile, track_num: int, track: MidiTrackEvents):
        """Write a single channel track to the MIDI file.

        Args:
            midi: MIDIFile object
            track_num: Track number (0-based, excluding the tempo track)
            track: Channel events
        """
        channel = track.channel if track.channel is not None else track_num
        self._write_track_preamble(midi, track_num, channel, track.name)

        # Key: note number, Value: start time of the sounding note
        open_notes: Dict[int, int] = {}

        for event in track.events:
            if event.type == MidiEventType.NOTE_ON:
                open_notes[event.note] = event.time

            elif event.type == MidiEventType.NOTE_OFF:
                start = open_notes.pop(event.note, None)
                if start is None:
                    continue
                duration = event.time - start
                if duration > 0:
                    midi.addNote(track_num, channel, event.note, start, duration, 127)

            elif event.type == MidiEventType.CONTROLLER:
                midi.addControllerEvent(track_num, channel, event.time,
                                        event.controller, event.value)

            elif event.type == MidiEventType.PROGRAM_CHANGE:
                midi.addProgramChange(track_num, channel, event.time, event.value)

            elif event.type == MidiEventType.PITCH_BEND:
                # MIDIUtil takes the bend relative to centre
                midi.addPitchWheelEvent(track_num, channel, event.time,
                                        event.value - PITCH_BEND_CENTER)

    def _write_debug_events(self, output_path: Path, sequence: MidiSequence):
        """Write debug output of raw event structure to help diagnose issues."""
        debug_data: Dict = {
            'title': sequence.title,
            'ticks_per_quarter': sequence.ticks_per_quarter,
            'tempo_events': [e.to_dict() for e in sequence.tempo_track.events],
            'tracks': []
        }

        for track_num, track in enumerate(sequence.tracks):
            events: List[Dict] = []
            for event in track.events:
                event_copy = event.to_dict()
                event_copy['time_beats'] = event.time / float(sequence.ticks_per_quarter)
                events.append(event_copy)
            debug_data['tracks'].append({
                'track_num': track_num,
                'name': track.name,
                'channel': track.channel,
                'events': events,
            })

        with open(output_path, 'w') as f:
            json.dump(debug_data, f, indent=2)
