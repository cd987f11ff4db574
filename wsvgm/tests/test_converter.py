#!/usr/bin/env python3
"""End-to-end conversion tests through the converter and command line."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import struct
import pytest
import yaml

from chip_base import ConversionSettings
from converter import VgmConverter, load_config
from vgm_reader import VgmFormatError
import vgm2mid


def build_vgm(commands: bytes) -> bytes:
    header = bytearray(0x40)
    header[0:4] = b'Vgm '
    struct.pack_into('<I', header, 0x04, 0x40 + len(commands) - 0x04)
    struct.pack_into('<I', header, 0x08, 0x171)
    struct.pack_into('<I', header, 0x34, 0x40 - 0x34)
    return bytes(header) + commands


def port(address, value):
    return bytes([0xBC, address - 0x80, value])


def square_note_capture() -> bytes:
    commands = b''
    for address in range(16):
        commands += bytes([0xC6, 0x00, address, 0xFF if address < 8 else 0x00])
    # Channel 1 period 0x726, full volume, enabled
    commands += port(0x80, 0x26) + port(0x81, 0x07) + port(0x88, 0xFF) + port(0x90, 0x01)
    commands += b'\x62' * 10
    commands += port(0x88, 0x00)
    commands += b'\x62\x66'
    return build_vgm(commands)


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_load_config(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({'loops': 1, 'tempo_bpm': 150, 'unknown': 3}))
    assert load_config(str(path))['loops'] == 1
    assert load_config(None) == {}

    converter = VgmConverter(str(path), loops=0, instrument_file=str(tmp_path / "i.yaml"))
    assert converter.settings.loops == 0
    assert converter.settings.tempo_bpm == 150


def test_convert_file(workdir, capsys):
    source = workdir / "song.vgm"
    source.write_bytes(square_note_capture())

    converter = VgmConverter(dump_text=True)
    stats = converter.convert_file(source, workdir / "song.mid")

    assert stats['notes'] == 1
    assert stats['new_instruments'] == 0
    assert (workdir / "song.mid").read_bytes()[:4] == b'MThd'
    assert "NOTE_ON" in (workdir / "song.txt").read_text()
    assert (workdir / "instruments.yaml").exists()
    log = (workdir / "conversion_log.txt").read_text(encoding='utf-8')
    assert "Source File: song.vgm" in log
    assert converter.registry.usage is None
    assert "  VGM 1.71\n" in capsys.readouterr().out


def test_convert_file_default_output_path(workdir):
    source = workdir / "song.vgm"
    source.write_bytes(square_note_capture())
    VgmConverter(output_dir=str(workdir / "out")).convert_file(source)
    assert (workdir / "out" / "song.mid").exists()


def test_convert_bad_capture_raises(workdir):
    source = workdir / "bad.vgm"
    source.write_bytes(b'not a capture')
    with pytest.raises(VgmFormatError):
        VgmConverter().convert_file(source, workdir / "bad.mid")


def test_batch_continues_past_failures(workdir, capsys):
    captures = workdir / "captures"
    captures.mkdir()
    (captures / "a.vgm").write_bytes(square_note_capture())
    (captures / "b.vgm").write_bytes(b'garbage')
    (captures / "notes.txt").write_text("ignored")

    results = VgmConverter().convert_batch(captures)

    assert results == {'converted': 1, 'failed': 1}
    assert (captures / "a.mid").exists()
    assert "ERROR: b.vgm" in capsys.readouterr().err


def test_sort_instruments(workdir):
    converter = VgmConverter()
    clusters = converter.sort_instruments()
    assert sum(len(c) for c in clusters) == len(converter.registry)


def test_cli_usage_exits(workdir):
    with pytest.raises(SystemExit) as exc:
        vgm2mid.main([])
    assert exc.value.code == 1


def test_cli_missing_input_exits(workdir):
    with pytest.raises(SystemExit) as exc:
        vgm2mid.main([str(workdir / "missing.vgm"), str(workdir / "out.mid")])
    assert exc.value.code == 1


def test_cli_converts_with_options(workdir):
    source = workdir / "song.vgm"
    source.write_bytes(square_note_capture())
    vgm2mid.main(['-l', '1', '--instruments', 'mine.yaml', '--debug-events',
                  str(source), str(workdir / "song.mid")])

    assert (workdir / "song.mid").exists()
    assert (workdir / "song.events").exists()
    assert (workdir / "mine.yaml").exists()


def test_example_settings_match_defaults():
    path = os.path.join(os.path.dirname(__file__), '..', 'settings.example.yaml')
    settings = ConversionSettings.from_config(load_config(path))
    assert settings == ConversionSettings()
