#!/usr/bin/env python3
"""
Musical event stream produced by the chip engine.
Represents timed MIDI-level events per channel before file serialization.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
from enum import Enum


# Controller numbers used by the converter
CC_DATA_ENTRY_MSB = 6
CC_MAIN_VOLUME = 7
CC_PAN = 10
CC_EXPRESSION = 11
CC_DATA_ENTRY_LSB = 38
CC_RPN_LSB = 100
CC_RPN_MSB = 101


class MidiEventType(Enum):
    """Types of musical events."""
    NOTE_ON = "note_on"
    NOTE_OFF = "note_off"
    CONTROLLER = "controller"
    PROGRAM_CHANGE = "program_change"
    PITCH_BEND = "pitch_bend"
    TEMPO = "tempo"


@dataclass
class MidiEvent:
    """A single timed event on one output track.

    `time` is the absolute output tick; `delta` is the gap in ticks since the
    previous event on the same track.
    """
    type: MidiEventType
    time: int
    delta: int = 0
    channel: int = 0

    # Note events
    note: Optional[int] = None
    velocity: Optional[int] = None

    # Controller / program / pitch bend / tempo payload
    controller: Optional[int] = None
    value: Optional[int] = None

    # Additional metadata
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Plain dictionary form used by the debug dump."""
        result: Dict[str, Any] = {
            'type': self.type.value,
            'time': self.time,
            'delta': self.delta,
            'channel': self.channel,
        }
        for key in ('note', 'velocity', 'controller', 'value'):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result['metadata'] = dict(self.metadata)
        return result


@dataclass
class MidiTrackEvents:
    """Event list for a single output track."""
    name: str
    channel: Optional[int] = None  # None for the tempo/meta track
    events: List[MidiEvent] = field(default_factory=list)

    def __len__(self) -> int:
        """Return number of events in this track."""
        return len(self.events)

    def extend(self, events: List[MidiEvent]):
        """Append events that already carry their delta times."""
        self.events.extend(events)

    def get_events_of_type(self, event_type: MidiEventType) -> List[MidiEvent]:
        return [e for e in self.events if e.type == event_type]

    @property
    def end_time(self) -> int:
        """Absolute tick of the last event (0 when empty)."""
        return self.events[-1].time if self.events else 0


@dataclass
class MidiSequence:
    """A complete converted capture: one tempo track plus one track per channel."""
    title: str
    ticks_per_quarter: int = 480
    tempo_track: MidiTrackEvents = field(default_factory=lambda: MidiTrackEvents(name="Tempo"))
    tracks: List[MidiTrackEvents] = field(default_factory=list)

    def __len__(self) -> int:
        """Return number of channel tracks in this sequence."""
        return len(self.tracks)

    def add_track(self, track: MidiTrackEvents):
        """Add a channel track to this sequence."""
        self.tracks.append(track)

    @property
    def length(self) -> int:
        """Song length in ticks (latest event across all tracks)."""
        return max([self.tempo_track.end_time] + [t.end_time for t in self.tracks])


# Helper functions for creating common event types

def make_note_on(time: int, channel: int, note: int, velocity: int = 127) -> MidiEvent:
    """Create a note on event."""
    return MidiEvent(
        type=MidiEventType.NOTE_ON,
        time=time,
        channel=channel,
        note=note,
        velocity=velocity
    )


def make_note_off(time: int, channel: int, note: int) -> MidiEvent:
    """Create a note off event."""
    return MidiEvent(
        type=MidiEventType.NOTE_OFF,
        time=time,
        channel=channel,
        note=note,
        velocity=0
    )


def make_controller(time: int, channel: int, controller: int, value: int) -> MidiEvent:
    """Create a controller change event.

    Args:
        time: Time in MIDI ticks
        channel: MIDI channel (0-15)
        controller: Controller number (10=pan, 11=expression, 100/101/6/38 for RPN)
        value: Controller value (0-127)
    """
    return MidiEvent(
        type=MidiEventType.CONTROLLER,
        time=time,
        channel=channel,
        controller=controller,
        value=value
    )


def make_pan(time: int, channel: int, pan: int) -> MidiEvent:
    """Create a pan controller event."""
    return make_controller(time, channel, CC_PAN, pan)


def make_expression(time: int, channel: int, expression: int) -> MidiEvent:
    """Create an expression controller event."""
    return make_controller(time, channel, CC_EXPRESSION, expression)


def make_program_change(time: int, channel: int, program: int) -> MidiEvent:
    """Create a program change event."""
    return MidiEvent(
        type=MidiEventType.PROGRAM_CHANGE,
        time=time,
        channel=channel,
        value=program
    )


def make_pitch_bend(time: int, channel: int, value: int) -> MidiEvent:
    """Create a pitch bend event (0-16383, centre 8192)."""
    return MidiEvent(
        type=MidiEventType.PITCH_BEND,
        time=time,
        channel=channel,
        value=value
    )


def make_tempo(time: int, microseconds_per_quarter: int) -> MidiEvent:
    """Create a tempo event.

    Args:
        time: Time in MIDI ticks
        microseconds_per_quarter: Tempo as stored in the MIDI meta event
    """
    return MidiEvent(
        type=MidiEventType.TEMPO,
        time=time,
        value=microseconds_per_quarter
    )


def assign_deltas(events: List[MidiEvent], last_time: int) -> int:
    """Fill in delta times for events emitted in order after `last_time`.

    Returns the absolute time of the last event (or `last_time` if none).
    """
    for event in events:
        event.delta = event.time - last_time
        last_time = event.time
    return last_time
