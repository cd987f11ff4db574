#!/usr/bin/env python3
"""Scenario tests driving the engine with synthetic register writes."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from chip_base import ConversionSettings, PITCH_BEND_CENTER
from engine import WonderSwanEngine
from instruments import InstrumentStore, InstrumentRegistry
from midi_events import MidiEventType, CC_PAN, CC_EXPRESSION
from usage import UsageTracker
from ws_chip import REG_NOISE_CTRL

FRAME = 735
TICKS_PER_FRAME = 16

# 96000 / (2048 - 1830) = 440.4 Hz
A4_PERIOD = 1830


@pytest.fixture
def engine(tmp_path):
    registry = InstrumentRegistry(InstrumentStore(tmp_path / "instruments.yaml"))
    registry.load()
    usage = UsageTracker("test.vgm")
    registry.usage = usage
    eng = WonderSwanEngine(registry, usage, ConversionSettings(), source_label="test.vgm")
    # Square wave in every channel's wave slot
    for address in range(64):
        eng.write_wave_ram(address, 0xFF if address % 16 < 8 else 0x00)
    return eng


def set_period(eng, channel, period):
    eng.write_register(0x80 + channel * 2, period & 0xFF)
    eng.write_register(0x81 + channel * 2, (period >> 8) & 0x07)


def events_of(eng, channel, event_type):
    return eng.tracks[channel].get_events_of_type(event_type)


def test_never_enabled_channels_are_empty(engine):
    set_period(engine, 0, A4_PERIOD)
    engine.write_register(0x88, 0xFF)
    engine.write_register(0x90, 0x01)
    for _ in range(10):
        engine.advance(FRAME)
    engine.finalize()

    for channel in (1, 2, 3):
        assert len(engine.tracks[channel]) == 0


def test_hard_left_note_at_tick_zero(engine):
    set_period(engine, 0, A4_PERIOD)
    engine.write_register(0x88, 0xF0)
    engine.write_register(0x90, 0x01)
    engine.advance(FRAME)

    note_ons = events_of(engine, 0, MidiEventType.NOTE_ON)
    assert len(note_ons) == 1
    assert note_ons[0].time == 0
    assert note_ons[0].note == 69

    controllers = {e.controller: e.value for e in events_of(engine, 0, MidiEventType.CONTROLLER)}
    assert controllers[CC_PAN] == 0
    assert controllers[CC_EXPRESSION] == 127
    # Square wave is the built-in default program; no change needed
    assert events_of(engine, 0, MidiEventType.PROGRAM_CHANGE) == []


def test_zero_volume_produces_nothing(engine):
    set_period(engine, 0, A4_PERIOD)
    engine.write_register(0x88, 0x00)
    engine.write_register(0x90, 0x01)
    for _ in range(5):
        engine.advance(FRAME)
    engine.finalize()
    assert len(engine.tracks[0]) == 0


def test_silent_period_produces_nothing(engine):
    set_period(engine, 0, 0x7FF)
    engine.write_register(0x88, 0xFF)
    engine.write_register(0x90, 0x01)
    for _ in range(5):
        engine.advance(FRAME)
    assert events_of(engine, 0, MidiEventType.NOTE_ON) == []


def test_note_off_when_volume_drops(engine):
    set_period(engine, 0, A4_PERIOD)
    engine.write_register(0x88, 0xFF)
    engine.write_register(0x90, 0x01)
    engine.advance(FRAME)
    engine.write_register(0x88, 0x00)
    engine.advance(FRAME)

    note_offs = events_of(engine, 0, MidiEventType.NOTE_OFF)
    assert len(note_offs) == 1
    assert note_offs[0].time == TICKS_PER_FRAME
    assert note_offs[0].delta == TICKS_PER_FRAME


def test_finalize_closes_open_note_once(engine):
    set_period(engine, 0, A4_PERIOD)
    engine.write_register(0x88, 0xFF)
    engine.write_register(0x90, 0x01)
    for _ in range(3):
        engine.advance(FRAME)
    engine.finalize()
    engine.finalize()

    note_offs = events_of(engine, 0, MidiEventType.NOTE_OFF)
    assert len(note_offs) == 1
    assert note_offs[0].time == 3 * TICKS_PER_FRAME


def test_sweep_bends_then_retriggers(engine):
    set_period(engine, 2, A4_PERIOD)
    engine.write_register(0x8A, 0xFF)
    engine.write_register(0x8C, 0x01)
    engine.write_register(0x8D, 0x00)
    engine.write_register(0x90, 0x44)

    for _ in range(40):
        engine.advance(117)

    events = engine.tracks[2].events
    bends = [e for e in events if e.type == MidiEventType.PITCH_BEND and e.value != PITCH_BEND_CENTER]
    assert bends
    assert all(b.value > PITCH_BEND_CENTER for b in bends)

    note_ons = events_of(engine, 2, MidiEventType.NOTE_ON)
    note_offs = events_of(engine, 2, MidiEventType.NOTE_OFF)
    assert len(note_ons) >= 2
    assert len(note_offs) >= 1
    assert note_ons[1].note > note_ons[0].note
    # The first bend comes before the retrigger
    assert events.index(bends[0]) < events.index(note_offs[0])


def test_pcm_channel_uses_pcm_program(engine):
    engine.write_register(0x89, 0x05)
    engine.write_register(0x94, 0x0C)
    engine.write_register(0x90, 0x22)
    engine.advance(FRAME)

    programs = events_of(engine, 1, MidiEventType.PROGRAM_CHANGE)
    assert [p.value for p in programs] == [119]
    note_ons = events_of(engine, 1, MidiEventType.NOTE_ON)
    assert [n.note for n in note_ons] == [65]
    assert engine.usage.count(1, "PCM_SOUND") == 1


def test_noise_channel_uses_noise_program(engine):
    set_period(engine, 3, A4_PERIOD)
    engine.write_register(0x8B, 0xFF)
    engine.write_register(0x8E, 0x03)
    engine.write_register(0x90, 0x88)
    engine.advance(FRAME)

    programs = events_of(engine, 3, MidiEventType.PROGRAM_CHANGE)
    assert [p.value for p in programs] == [127]
    assert len(events_of(engine, 3, MidiEventType.NOTE_ON)) == 1
    assert engine.chip.registers[REG_NOISE_CTRL] == 0x03


def test_new_waveform_registers_instrument(engine):
    for address in range(16):
        engine.write_wave_ram(address, 0x00)
    set_period(engine, 0, A4_PERIOD)
    engine.write_register(0x88, 0xFF)
    engine.write_register(0x90, 0x01)
    engine.advance(FRAME)

    programs = events_of(engine, 0, MidiEventType.PROGRAM_CHANGE)
    assert [p.value for p in programs] == [82]
    assert [e.name for e in engine.usage.new_instruments] == ["CustomWave_1"]
    assert engine.usage.count(0, "00" * 32) == 1


def test_event_times_are_monotonic(engine):
    set_period(engine, 0, A4_PERIOD)
    engine.write_register(0x90, 0x01)
    for step in range(20):
        engine.write_register(0x88, 0xFF if step % 3 else 0x00)
        set_period(engine, 0, A4_PERIOD + step * 4)
        engine.advance(FRAME)
    engine.finalize()

    last = 0
    for event in engine.tracks[0].events:
        assert event.time >= last
        assert event.delta == event.time - last
        last = event.time


def test_out_of_range_port_ignored(engine):
    engine.write_register(0x1234, 0xFF)
    engine.advance(FRAME)
    assert all(len(track) == 0 for track in engine.tracks)


def test_build_sequence(engine):
    engine.advance(FRAME)
    engine.finalize()
    sequence = engine.build_sequence("song")
    assert len(sequence) == 4
    tempo = sequence.tempo_track.events
    assert len(tempo) == 1
    assert tempo[0].value == 500000
