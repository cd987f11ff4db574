"""
VGM capture decoding.

Parses the VGM header and walks the command stream, dispatching time
advances and WonderSwan port / wave RAM writes to a SoundChip.
"""

import gzip
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

from chip_base import SoundChip

VGM_MAGIC = b'Vgm '
GZIP_MAGIC = b'\x1f\x8b'
MIN_HEADER_SIZE = 0x40
WONDERSWAN_CLOCK_OFFSET = 0xC0

# Commands
CMD_WAIT = 0x61
CMD_WAIT_NTSC = 0x62
CMD_WAIT_PAL = 0x63
CMD_END = 0x66
CMD_DATA_BLOCK = 0x67
CMD_WS_PORT_WRITE = 0xBC
CMD_WS_RAM_WRITE = 0xC6

WAIT_NTSC_SAMPLES = 735
WAIT_PAL_SAMPLES = 882

WS_PORT_BASE = 0x80

# Fixed-length commands with sizes that don't follow the range rules below
_SPECIAL_LENGTHS = {
    0x4F: 2, 0x50: 2,
    0x61: 3, 0x62: 1, 0x63: 1, 0x66: 1,
    0x68: 12,
    0x90: 5, 0x91: 5, 0x92: 6, 0x93: 11, 0x94: 2, 0x95: 5,
}


class VgmFormatError(ValueError):
    """The capture header is missing, truncated or inconsistent."""
    pass


def command_length(cmd: int) -> int:
    """Total length in bytes (including the command byte) of a fixed-size VGM command."""
    if cmd in _SPECIAL_LENGTHS:
        return _SPECIAL_LENGTHS[cmd]
    if 0x30 <= cmd <= 0x3F:
        return 2
    if 0x40 <= cmd <= 0x5F:
        return 3
    if 0xA0 <= cmd <= 0xBF:
        return 3
    if 0xC0 <= cmd <= 0xDF:
        return 4
    if 0xE0 <= cmd <= 0xFF:
        return 5
    return 1


@dataclass
class VgmHeader:
    """Fields of the VGM header the converter uses."""
    version: int
    eof_offset: int
    total_samples: int
    loop_offset: int  # Absolute file offset, 0 = no loop
    loop_samples: int
    rate: int
    data_offset: int  # Absolute file offset of the command stream
    wonderswan_clock: int = 0

    @property
    def version_string(self) -> str:
        return f"{(self.version >> 8) & 0xFF:x}.{self.version & 0xFF:02x}"


def parse_header(data: bytes) -> VgmHeader:
    """Parse and validate a VGM header.

    Raises:
        VgmFormatError: if the signature is wrong or the header is truncated
    """
    if len(data) < MIN_HEADER_SIZE:
        raise VgmFormatError(f"Invalid VGM file: header too small ({len(data)} bytes)")
    if data[:4] != VGM_MAGIC:
        raise VgmFormatError("Invalid VGM file: magic number mismatch")

    eof_rel, version = struct.unpack_from('<II', data, 0x04)
    total_samples, loop_rel, loop_samples, rate = struct.unpack_from('<IIII', data, 0x18)
    data_rel = struct.unpack_from('<I', data, 0x34)[0]

    data_offset = 0x40 if data_rel == 0 else 0x34 + data_rel
    if data_offset > len(data):
        raise VgmFormatError(f"Invalid VGM file: data offset 0x{data_offset:X} beyond end of file")

    wonderswan_clock = 0
    if data_offset >= WONDERSWAN_CLOCK_OFFSET + 4 and len(data) >= WONDERSWAN_CLOCK_OFFSET + 4:
        wonderswan_clock = struct.unpack_from('<I', data, WONDERSWAN_CLOCK_OFFSET)[0]

    return VgmHeader(
        version=version,
        eof_offset=0x04 + eof_rel,
        total_samples=total_samples,
        loop_offset=0x1C + loop_rel if loop_rel != 0 else 0,
        loop_samples=loop_samples,
        rate=rate,
        data_offset=data_offset,
        wonderswan_clock=wonderswan_clock,
    )


def load_vgm_bytes(path) -> bytes:
    """Read a .vgm or gzip-compressed .vgz file."""
    with open(path, 'rb') as f:
        data = f.read()
    if data[:2] == GZIP_MAGIC:
        data = gzip.decompress(data)
    return data


class VgmReader:
    """Walks a VGM command stream and drives a SoundChip."""

    def __init__(self, data: bytes, source_name: str = ""):
        self.data = data
        self.source_name = source_name
        self.header = parse_header(data)

    @classmethod
    def from_file(cls, path) -> 'VgmReader':
        return cls(load_vgm_bytes(path), source_name=Path(path).name)

    def _loop_target_valid(self) -> bool:
        loop = self.header.loop_offset
        return loop != 0 and self.header.data_offset <= loop < len(self.data)

    def play(self, chip: SoundChip, loops: int = 2) -> Dict:
        """Dispatch every command to the chip, then finalize it.

        The loop section is replayed until `loops` loops have been played.
        A command truncated by the end of data stops decoding.

        Returns:
            Dict with 'commands', 'samples', 'loops_played' and 'truncated'
        """
        data = self.data
        end = len(data)
        pos = self.header.data_offset
        can_loop = self._loop_target_valid()

        stats = {'commands': 0, 'samples': 0, 'loops_played': 0, 'truncated': False}

        while pos < end:
            cmd = data[pos]

            if cmd == CMD_END:
                if can_loop and stats['loops_played'] < loops:
                    stats['loops_played'] += 1
                    pos = self.header.loop_offset
                    continue
                break

            if cmd == CMD_DATA_BLOCK:
                # 0x67 0x66 tt ssssssss <data>
                if pos + 7 > end:
                    stats['truncated'] = True
                    break
                block_size = struct.unpack_from('<I', data, pos + 3)[0]
                if pos + 7 + block_size > end:
                    stats['truncated'] = True
                    break
                pos += 7 + block_size
                stats['commands'] += 1
                continue

            length = command_length(cmd)
            if pos + length > end:
                stats['truncated'] = True
                break

            if cmd == CMD_WAIT:
                samples = struct.unpack_from('<H', data, pos + 1)[0]
                chip.advance(samples)
                stats['samples'] += samples
            elif cmd == CMD_WAIT_NTSC:
                chip.advance(WAIT_NTSC_SAMPLES)
                stats['samples'] += WAIT_NTSC_SAMPLES
            elif cmd == CMD_WAIT_PAL:
                chip.advance(WAIT_PAL_SAMPLES)
                stats['samples'] += WAIT_PAL_SAMPLES
            elif 0x70 <= cmd <= 0x7F:
                samples = (cmd & 0x0F) + 1
                chip.advance(samples)
                stats['samples'] += samples
            elif 0x80 <= cmd <= 0x8F:
                # YM2612 DAC write + wait n; only the wait matters here
                samples = cmd & 0x0F
                chip.advance(samples)
                stats['samples'] += samples
            elif cmd == CMD_WS_PORT_WRITE:
                port = (WS_PORT_BASE + data[pos + 1]) & 0xFF
                chip.write_register(port, data[pos + 2])
            elif cmd == CMD_WS_RAM_WRITE:
                address = (data[pos + 1] << 8) | data[pos + 2]
                chip.write_wave_ram(address, data[pos + 3])

            stats['commands'] += 1
            pos += length

        chip.finalize()
        return stats
