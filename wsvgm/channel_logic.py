"""
Per-channel note logic.

Each time the engine advances, every channel reads the chip state into a
ChannelInputs snapshot and runs transition(), which returns the channel's
next state plus the events to emit. A channel is either silent or sounding;
while sounding it tracks loudness, stereo position and pitch, bending within
the configured range and retriggering beyond it.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple

from chip_base import (
    ConversionSettings, PITCH_BEND_CENTER, PITCH_BEND_MAX,
    period_to_freq, freq_to_midi_note
)
from midi_events import (
    MidiEvent, MidiEventType,
    make_note_on, make_note_off, make_pan, make_expression,
    make_program_change, make_pitch_bend, assign_deltas
)
from ws_chip import ChipState, PCM_CHANNEL, NOISE_CHANNEL, REG_PCM_SAMPLE
from waveforms import fingerprint

NOTE_VELOCITY = 127
PCM_BASE_NOTE = 60

PCM_FINGERPRINT = "PCM_SOUND"
NOISE_FINGERPRINT = "NOISE_SOUND"
PULSE_FINGERPRINT = "PULSE_WAVE"


class SoundSource(Enum):
    """What is currently feeding a channel."""
    WAVE = "wave"
    PCM = "pcm"
    NOISE = "noise"
    PULSE = "pulse"  # Channel disabled; default program


@dataclass
class ChannelState:
    """Note lifecycle state of one channel."""
    is_sounding: bool = False
    last_note: int = 0
    last_expression: Optional[int] = None
    last_pan: Optional[int] = None
    last_program: Optional[int] = None
    last_pitch_bend: Optional[int] = None
    base_frequency: float = 0.0
    last_event_time: int = 0


@dataclass(frozen=True)
class ChannelInputs:
    """Everything transition() needs to know about the chip for one channel."""
    source: SoundSource
    program: int
    fingerprint: str
    eligible: bool
    note: Optional[int]
    frequency: float
    volume_left: int
    volume_right: int


def loudness(left: int, right: int, exponent: float = 1.0) -> int:
    """Expression value (0-127) from the louder of the two 4-bit volumes."""
    level = max(left, right) / 15.0
    return round(127 * (level ** exponent))


def stereo_pan(left: int, right: int) -> int:
    """Pan value (0 = hard left, 127 = hard right); centred when both are silent."""
    total = left + right
    if total == 0:
        return 64
    return round(127 * right / total)


def cents_between(freq: float, base_freq: float) -> float:
    return 1200.0 * math.log2(freq / base_freq)


def pitch_bend_value(cents: float, range_cents: float) -> int:
    """Map a deviation in cents linearly onto the 14-bit pitch bend range."""
    value = PITCH_BEND_CENTER + int((cents / range_cents) * 8191.0)
    return max(0, min(PITCH_BEND_MAX, value))


def read_inputs(chip: ChipState, channel: int, registry, settings: ConversionSettings,
                source_label: str) -> ChannelInputs:
    """Snapshot the chip state relevant to one channel.

    Wave-table channels resolve their live waveform through the instrument
    registry, which may register a new instrument as a side effect.
    """
    if channel == PCM_CHANNEL and chip.pcm_mode:
        source = SoundSource.PCM
        program = settings.pcm_program
        fp = PCM_FINGERPRINT
    elif channel == NOISE_CHANNEL and chip.noise_mode:
        source = SoundSource.NOISE
        program = settings.noise_program
        fp = NOISE_FINGERPRINT
    elif chip.enabled[channel]:
        source = SoundSource.WAVE
        waveform = chip.waveform(channel)
        program = registry.resolve(waveform, source_label)
        fp = fingerprint(waveform)
    else:
        source = SoundSource.PULSE
        program = settings.default_program
        fp = PULSE_FINGERPRINT

    frequency = period_to_freq(chip.periods[channel])

    if source == SoundSource.PCM:
        left, right = chip.pcm_volume_left, chip.pcm_volume_right
        note: Optional[int] = PCM_BASE_NOTE + (chip.registers[REG_PCM_SAMPLE] & 0x0F)
        eligible = chip.enabled[channel] and (left > 0 or right > 0)
    else:
        left, right = chip.volumes_left[channel], chip.volumes_right[channel]
        note = freq_to_midi_note(frequency)
        eligible = chip.enabled[channel] and (left > 0 or right > 0) and note is not None

    return ChannelInputs(
        source=source,
        program=program,
        fingerprint=fp,
        eligible=eligible,
        note=note,
        frequency=frequency,
        volume_left=left,
        volume_right=right,
    )


def _start_note(state: ChannelState, inputs: ChannelInputs, channel: int, tick: int,
                settings: ConversionSettings, events: List[MidiEvent]) -> ChannelState:
    expression = loudness(inputs.volume_left, inputs.volume_right, settings.expression_exponent)
    pan = stereo_pan(inputs.volume_left, inputs.volume_right)

    if pan != state.last_pan:
        events.append(make_pan(tick, channel, pan))
    if expression != state.last_expression:
        events.append(make_expression(tick, channel, expression))
    if state.last_pitch_bend != PITCH_BEND_CENTER:
        events.append(make_pitch_bend(tick, channel, PITCH_BEND_CENTER))

    events.append(make_note_on(tick, channel, inputs.note, NOTE_VELOCITY))

    return replace(
        state,
        is_sounding=True,
        last_note=inputs.note,
        last_expression=expression,
        last_pan=pan,
        last_pitch_bend=PITCH_BEND_CENTER,
        base_frequency=inputs.frequency,
    )


def _track_sounding(state: ChannelState, inputs: ChannelInputs, channel: int, tick: int,
                    settings: ConversionSettings, events: List[MidiEvent]) -> ChannelState:
    expression = loudness(inputs.volume_left, inputs.volume_right, settings.expression_exponent)
    pan = stereo_pan(inputs.volume_left, inputs.volume_right)

    if expression != state.last_expression:
        events.append(make_expression(tick, channel, expression))
        state = replace(state, last_expression=expression)
    if pan != state.last_pan:
        events.append(make_pan(tick, channel, pan))
        state = replace(state, last_pan=pan)

    if state.base_frequency <= 0 or inputs.frequency <= 0:
        return state

    cents = cents_between(inputs.frequency, state.base_frequency)
    if abs(cents) > settings.bend_range_cents:
        # Too far to bend: retrigger at the new pitch
        events.append(make_note_off(tick, channel, state.last_note))
        state = replace(state, is_sounding=False, base_frequency=0.0)
        return _start_note(state, inputs, channel, tick, settings, events)

    bend = pitch_bend_value(cents, settings.bend_range_cents)
    if bend != state.last_pitch_bend:
        events.append(make_pitch_bend(tick, channel, bend))
        state = replace(state, last_pitch_bend=bend)
    return state


def transition(state: ChannelState, inputs: ChannelInputs, channel: int, tick: int,
               settings: ConversionSettings) -> Tuple[ChannelState, List[MidiEvent]]:
    """Compute a channel's next state and the events produced getting there.

    Events carry delta times: the first is relative to the channel's last
    emitted event, the rest are zero.
    """
    events: List[MidiEvent] = []

    # Instrument selection precedes note logic and may happen mid-note
    if inputs.program != state.last_program:
        events.append(make_program_change(tick, channel, inputs.program))
        state = replace(state, last_program=inputs.program)

    if state.is_sounding and not inputs.eligible:
        events.append(make_note_off(tick, channel, state.last_note))
        state = replace(state, is_sounding=False, base_frequency=0.0)
    elif not state.is_sounding and inputs.eligible:
        state = _start_note(state, inputs, channel, tick, settings, events)
    elif state.is_sounding:
        state = _track_sounding(state, inputs, channel, tick, settings, events)

    if events:
        assign_deltas(events, state.last_event_time)
        state = replace(state, last_event_time=tick)
    return state, events


def close_note(state: ChannelState, channel: int, tick: int) -> Tuple[ChannelState, List[MidiEvent]]:
    """End-of-input: turn off a note left sounding."""
    if not state.is_sounding:
        return state, []
    events = [make_note_off(tick, channel, state.last_note)]
    assign_deltas(events, state.last_event_time)
    return replace(state, is_sounding=False, base_frequency=0.0, last_event_time=tick), events


class ChannelStateMachine:
    """Drives one channel's transitions and feeds the usage tracker."""

    def __init__(self, channel: int, registry, usage, settings: ConversionSettings,
                 source_label: str = "", initial_program: Optional[int] = None):
        self.channel = channel
        self.registry = registry
        self.usage = usage
        self.settings = settings
        self.source_label = source_label
        self.state = ChannelState(last_program=initial_program)

    def evaluate(self, chip: ChipState, tick: int) -> List[MidiEvent]:
        inputs = read_inputs(chip, self.channel, self.registry, self.settings, self.source_label)
        self.state, events = transition(self.state, inputs, self.channel, tick, self.settings)
        if self.usage is not None:
            for event in events:
                if event.type == MidiEventType.NOTE_ON:
                    self.usage.record(self.channel, inputs.fingerprint)
        return events

    def finalize(self, tick: int) -> List[MidiEvent]:
        self.state, events = close_note(self.state, self.channel, tick)
        return events
