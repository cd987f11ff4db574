"""
WonderSwan emulation engine: turns register writes and time advances into
per-channel MIDI event tracks.
"""

from typing import List, Optional

from chip_base import ConversionSettings, SoundChip
from channel_logic import ChannelStateMachine
from midi_events import MidiSequence, MidiTrackEvents, make_tempo, assign_deltas
from ws_chip import ChipState, SweepProcessor, PcmDmaProcessor, NUM_CHANNELS, IO_PORTS


class WonderSwanEngine(SoundChip):
    """Register-driven state machine for the four WonderSwan sound channels.

    Register writes only update chip state; events are produced when time
    advances. Each advance runs the clocked processes (sound DMA, sweep),
    then evaluates all channels at the current tick, then commits the
    elapsed samples.
    """

    def __init__(self, registry, usage=None, settings: Optional[ConversionSettings] = None,
                 source_label: str = ""):
        self.settings = settings or ConversionSettings()
        self.registry = registry
        self.usage = usage
        self.source_label = source_label

        self.chip = ChipState(sample_rate=self.settings.sample_rate)
        self.sweep = SweepProcessor(self.chip)
        self.dma = PcmDmaProcessor(self.chip)

        self.channels: List[ChannelStateMachine] = [
            ChannelStateMachine(ch, registry, usage, self.settings, source_label,
                                initial_program=self.settings.default_program)
            for ch in range(NUM_CHANNELS)
        ]
        self.tracks: List[MidiTrackEvents] = [
            MidiTrackEvents(name=f"Channel {ch + 1}", channel=ch) for ch in range(NUM_CHANNELS)
        ]

        self.sample_time = 0
        self.finalized = False

    @property
    def current_tick(self) -> int:
        return self.settings.samples_to_ticks(self.sample_time)

    def write_register(self, address: int, value: int):
        if not 0 <= address < IO_PORTS:
            return
        self.chip.write(address, value)

    def write_wave_ram(self, address: int, value: int):
        self.chip.write_ram(address, value)

    def advance(self, samples: int):
        if samples < 0:
            return
        self.dma.advance(samples)
        self.sweep.advance(samples)

        tick = self.current_tick
        for machine, track in zip(self.channels, self.tracks):
            track.extend(machine.evaluate(self.chip, tick))

        self.sample_time += samples

    def finalize(self):
        if self.finalized:
            return
        tick = self.current_tick
        for machine, track in zip(self.channels, self.tracks):
            track.extend(machine.finalize(tick))
        self.finalized = True

    def build_sequence(self, title: str) -> MidiSequence:
        """Package the tracks with a tempo track for output."""
        sequence = MidiSequence(title=title, ticks_per_quarter=self.settings.ticks_per_quarter)
        tempo_events = [make_tempo(0, self.settings.microseconds_per_quarter)]
        assign_deltas(tempo_events, 0)
        sequence.tempo_track.extend(tempo_events)
        for track in self.tracks:
            sequence.add_track(track)
        return sequence
