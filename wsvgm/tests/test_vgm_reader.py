#!/usr/bin/env python3
"""Tests for VGM header parsing and command dispatch."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import gzip
import struct
import pytest

from chip_base import SoundChip
from vgm_reader import VgmReader, VgmFormatError, parse_header, command_length


def build_vgm(commands: bytes, loop_at=None) -> bytes:
    """Minimal version 1.71 capture with the command stream at 0x40."""
    header = bytearray(0x40)
    header[0:4] = b'Vgm '
    struct.pack_into('<I', header, 0x04, 0x40 + len(commands) - 0x04)
    struct.pack_into('<I', header, 0x08, 0x171)
    if loop_at is not None:
        struct.pack_into('<I', header, 0x1C, 0x40 + loop_at - 0x1C)
    struct.pack_into('<I', header, 0x34, 0x40 - 0x34)
    return bytes(header) + commands


class RecordingChip(SoundChip):
    """Chip stand-in that records every call."""

    def __init__(self):
        self.calls = []

    def write_register(self, address, value):
        self.calls.append(('reg', address, value))

    def write_wave_ram(self, address, value):
        self.calls.append(('ram', address, value))

    def advance(self, samples):
        self.calls.append(('wait', samples))

    def finalize(self):
        self.calls.append(('finalize',))


def test_header_fields():
    data = build_vgm(b'\x66', loop_at=0)
    header = parse_header(data)
    assert header.data_offset == 0x40
    assert header.loop_offset == 0x40
    assert header.version_string == "1.71"
    assert header.eof_offset == len(data)


def test_bad_magic():
    data = b'XXXX' + build_vgm(b'\x66')[4:]
    with pytest.raises(VgmFormatError):
        VgmReader(data)


def test_short_header():
    with pytest.raises(VgmFormatError):
        VgmReader(b'Vgm ' + bytes(20))


def test_data_offset_beyond_file():
    data = bytearray(build_vgm(b'\x66'))
    struct.pack_into('<I', data, 0x34, 0x1000)
    with pytest.raises(VgmFormatError):
        parse_header(bytes(data))


def test_command_lengths():
    assert command_length(0x61) == 3
    assert command_length(0x62) == 1
    assert command_length(0x7F) == 1
    assert command_length(0xBC) == 3
    assert command_length(0xC6) == 4
    assert command_length(0xE0) == 5
    assert command_length(0x51) == 3


def test_dispatches_writes_and_waits():
    commands = (
        b'\xBC\x10\x55'          # port 0x90
        b'\xC6\x01\x23\x44'      # wave RAM 0x0123
        b'\x61\x10\x00'          # wait 16
        b'\x62'                  # wait 735
        b'\x63'                  # wait 882
        b'\x70'                  # wait 1
        b'\x83'                  # wait 3
        b'\x51\x00\x00'          # other chip, skipped
        b'\x66'
    )
    chip = RecordingChip()
    stats = VgmReader(build_vgm(commands)).play(chip)

    assert chip.calls == [
        ('reg', 0x90, 0x55),
        ('ram', 0x0123, 0x44),
        ('wait', 16),
        ('wait', 735),
        ('wait', 882),
        ('wait', 1),
        ('wait', 3),
        ('finalize',),
    ]
    assert stats['samples'] == 16 + 735 + 882 + 1 + 3
    assert not stats['truncated']


def test_loop_section_replayed():
    chip = RecordingChip()
    reader = VgmReader(build_vgm(b'\x62\x66', loop_at=0))
    stats = reader.play(chip, loops=2)

    assert [c for c in chip.calls if c[0] == 'wait'] == [('wait', 735)] * 3
    assert stats['loops_played'] == 2
    assert chip.calls[-1] == ('finalize',)


def test_no_loops_plays_once():
    chip = RecordingChip()
    stats = VgmReader(build_vgm(b'\x62\x66', loop_at=0)).play(chip, loops=0)
    assert stats['samples'] == 735
    assert stats['loops_played'] == 0


def test_truncated_command_stops_quietly(capsys):
    chip = RecordingChip()
    stats = VgmReader(build_vgm(b'\x62\x61\x10')).play(chip)

    assert chip.calls == [('wait', 735), ('finalize',)]
    assert stats['truncated']
    assert capsys.readouterr().err == ""


def test_oversized_data_block_marks_truncated():
    block = b'\x67\x66\x00' + struct.pack('<I', 100) + b'\x01\x02'
    chip = RecordingChip()
    stats = VgmReader(build_vgm(b'\x62' + block)).play(chip)

    assert chip.calls == [('wait', 735), ('finalize',)]
    assert stats['truncated']
    assert stats['commands'] == 1


def test_wonderswan_clock_read_from_extended_header():
    header = bytearray(0x100)
    header[0:4] = b'Vgm '
    struct.pack_into('<I', header, 0x04, 0x100 + 1 - 0x04)
    struct.pack_into('<I', header, 0x08, 0x171)
    struct.pack_into('<I', header, 0x34, 0x100 - 0x34)
    struct.pack_into('<I', header, 0xC0, 3072000)
    parsed = parse_header(bytes(header) + b'\x66')
    assert parsed.data_offset == 0x100
    assert parsed.wonderswan_clock == 3072000

    # Short header: the clock field overlaps command data and is ignored
    assert parse_header(build_vgm(b'\x66' * 0x100)).wonderswan_clock == 0


def test_missing_end_command():
    chip = RecordingChip()
    stats = VgmReader(build_vgm(b'\x62\x62')).play(chip)
    assert stats['samples'] == 1470
    assert chip.calls[-1] == ('finalize',)


def test_data_block_skipped():
    commands = b'\x67\x66\x00' + struct.pack('<I', 2) + b'\xAA\xBB' + b'\x62\x66'
    chip = RecordingChip()
    VgmReader(build_vgm(commands)).play(chip)
    assert chip.calls == [('wait', 735), ('finalize',)]


def test_compressed_capture(tmp_path):
    path = tmp_path / "song.vgz"
    path.write_bytes(gzip.compress(build_vgm(b'\x62\x66')))

    reader = VgmReader.from_file(path)
    assert reader.source_name == "song.vgz"
    chip = RecordingChip()
    assert reader.play(chip)['samples'] == 735
