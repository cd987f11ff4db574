"""
WonderSwan sound unit register model.

ChipState holds the raw I/O port bank and wave RAM, and keeps a set of
derived per-channel fields in step with every register write. The two
clocked processes of the chip (the channel 3 frequency sweep and sound DMA)
live in SweepProcessor and PcmDmaProcessor and mutate ChipState as time
advances.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

from chip_base import MASTER_CLOCK, SILENT_PERIOD
from waveforms import Waveform, unpack_waveform

NUM_CHANNELS = 4
IO_PORTS = 0x100
WAVE_RAM_SIZE = 0x4000
WAVE_RAM_MASK = WAVE_RAM_SIZE - 1

# I/O ports
REG_PERIOD_BASE = 0x80      # 0x80-0x87: low/high period byte pairs
REG_VOLUME_BASE = 0x88      # 0x88-0x8B: left/right volume nibbles
REG_PCM_SAMPLE = 0x89       # channel 2 volume doubles as the PCM sample
REG_SWEEP_STEP = 0x8C
REG_SWEEP_TIME = 0x8D
REG_NOISE_CTRL = 0x8E      # stored only; noise mode is read from 0x90
REG_WAVE_BASE = 0x8F
REG_CHANNEL_CTRL = 0x90
REG_OUTPUT_CTRL = 0x91
REG_PCM_VOLUME = 0x94
REG_DMA_SOURCE = 0x4A       # 0x4A-0x4C
REG_DMA_COUNT = 0x4E        # 0x4E-0x4F
REG_DMA_CTRL = 0x52

# Channel control bits (port 0x90)
CTRL_PCM_MODE = 0x20
CTRL_SWEEP = 0x40
CTRL_NOISE_MODE = 0x80

DMA_START = 0x80
DMA_CYCLES = (256, 192, 154, 128)

PCM_CHANNEL = 1
SWEEP_CHANNEL = 2
NOISE_CHANNEL = 3

RAW_PERIOD_SILENT = 0x7FF


# --- Pure register decoders ---

def decode_period(low: int, high: int) -> int:
    """11-bit period from a register pair; 0x7FF is aliased to the silent value."""
    period = ((high & 0x07) << 8) | low
    return SILENT_PERIOD if period == RAW_PERIOD_SILENT else period


def decode_volume(value: int) -> Tuple[int, int]:
    """(left, right) 4-bit volumes from a volume register."""
    return (value >> 4) & 0x0F, value & 0x0F


def decode_pcm_volume(value: int) -> Tuple[int, int]:
    """(left, right) PCM volumes, scaled from 2 bits onto the 0-15 range."""
    return ((value & 0x0C) >> 2) * 5, (value & 0x03) * 5


def decode_enables(value: int) -> List[bool]:
    return [(value & (1 << ch)) != 0 for ch in range(NUM_CHANNELS)]


def decode_sweep_interval(value: int, sample_rate: int) -> int:
    """Sweep interval in output samples: 32 * (value + 1) horizontal blanks."""
    hblank_rate = MASTER_CLOCK / 256.0
    seconds = (32.0 * (value + 1.0)) / hblank_rate
    return int(seconds * sample_rate)


def decode_dma_period(value: int, sample_rate: int) -> int:
    """Samples between DMA byte transfers for a control register value."""
    period = int((DMA_CYCLES[value & 0x03] / MASTER_CLOCK) * sample_rate)
    return max(1, period)


def to_signed_byte(value: int) -> int:
    return value - 0x100 if value & 0x80 else value


@dataclass
class SweepState:
    """Channel 3 frequency sweep parameters."""
    step: int = 0
    interval: int = 0   # Samples between sweep steps
    countdown: int = 0


@dataclass
class DmaState:
    """Sound DMA transfer in progress."""
    source: int = 0
    count: int = 0
    countdown: int = 0
    period: int = 0     # Samples between byte transfers, 0 = stopped

    @property
    def active(self) -> bool:
        return self.period > 0 and self.count > 0


class ChipState:
    """Register bank, wave RAM and the per-channel quantities derived from them."""

    def __init__(self, sample_rate: int = 44100):
        self.sample_rate = sample_rate
        self.registers = bytearray(IO_PORTS)
        self.wave_ram = bytearray(WAVE_RAM_SIZE)

        self.periods = [0] * NUM_CHANNELS
        self.volumes_left = [0] * NUM_CHANNELS
        self.volumes_right = [0] * NUM_CHANNELS
        self.enabled = [False] * NUM_CHANNELS

        self.pcm_volume_left = 0
        self.pcm_volume_right = 0

        self.sweep = SweepState()
        self.dma = DmaState()

    def write(self, address: int, value: int):
        """Store a port value and re-derive whatever depends on it.

        Addresses outside the port range are ignored.
        """
        if not 0 <= address < IO_PORTS:
            return
        value &= 0xFF
        self.registers[address] = value
        decoder = _DECODERS.get(address)
        if decoder is not None:
            decoder(self, address, value)

    def write_ram(self, address: int, value: int):
        self.wave_ram[address & WAVE_RAM_MASK] = value & 0xFF

    @property
    def pcm_mode(self) -> bool:
        return (self.registers[REG_CHANNEL_CTRL] & CTRL_PCM_MODE) != 0

    @property
    def noise_mode(self) -> bool:
        return (self.registers[REG_CHANNEL_CTRL] & CTRL_NOISE_MODE) != 0

    @property
    def sweep_enabled(self) -> bool:
        return (self.registers[REG_CHANNEL_CTRL] & CTRL_SWEEP) != 0

    @property
    def wave_base(self) -> int:
        return self.registers[REG_WAVE_BASE] << 6

    def waveform(self, channel: int) -> Waveform:
        """The channel's current 32-sample wave-table snapshot."""
        return unpack_waveform(self.wave_ram, self.wave_base + channel * 16)

    def raw_period(self, channel: int) -> int:
        """Undecoded 11-bit period straight from the registers."""
        reg = REG_PERIOD_BASE + channel * 2
        return ((self.registers[reg + 1] & 0x07) << 8) | self.registers[reg]

    def set_raw_period(self, channel: int, period: int):
        """Write an 11-bit period back through the register pair."""
        reg = REG_PERIOD_BASE + channel * 2
        self.write(reg, period & 0xFF)
        self.write(reg + 1, (self.registers[reg + 1] & 0xF8) | ((period >> 8) & 0x07))


# --- Derivation table keyed by port ---

def _update_period(chip: ChipState, address: int, value: int):
    channel = (address - REG_PERIOD_BASE) // 2
    reg = REG_PERIOD_BASE + channel * 2
    chip.periods[channel] = decode_period(chip.registers[reg], chip.registers[reg + 1])


def _update_volume(chip: ChipState, address: int, value: int):
    channel = address - REG_VOLUME_BASE
    chip.volumes_left[channel], chip.volumes_right[channel] = decode_volume(value)


def _update_sweep_step(chip: ChipState, address: int, value: int):
    chip.sweep.step = to_signed_byte(value)


def _update_sweep_time(chip: ChipState, address: int, value: int):
    chip.sweep.interval = decode_sweep_interval(value, chip.sample_rate)
    chip.sweep.countdown = chip.sweep.interval


def _update_channel_ctrl(chip: ChipState, address: int, value: int):
    chip.enabled = decode_enables(value)


def _update_output_ctrl(chip: ChipState, address: int, value: int):
    chip.registers[REG_OUTPUT_CTRL] |= 0x80


def _update_pcm_volume(chip: ChipState, address: int, value: int):
    chip.pcm_volume_left, chip.pcm_volume_right = decode_pcm_volume(value)


def _update_dma_source(chip: ChipState, address: int, value: int):
    regs = chip.registers
    chip.dma.source = (regs[REG_DMA_SOURCE + 2] << 16) | (regs[REG_DMA_SOURCE + 1] << 8) | regs[REG_DMA_SOURCE]


def _update_dma_count(chip: ChipState, address: int, value: int):
    regs = chip.registers
    chip.dma.count = (regs[REG_DMA_COUNT + 1] << 8) | regs[REG_DMA_COUNT]


def _update_dma_ctrl(chip: ChipState, address: int, value: int):
    if value & DMA_START:
        chip.dma.period = decode_dma_period(value, chip.sample_rate)
        chip.dma.countdown = chip.dma.period
    else:
        chip.dma.period = 0


_DECODERS: Dict[int, Callable[[ChipState, int, int], None]] = {
    REG_SWEEP_STEP: _update_sweep_step,
    REG_SWEEP_TIME: _update_sweep_time,
    REG_CHANNEL_CTRL: _update_channel_ctrl,
    REG_OUTPUT_CTRL: _update_output_ctrl,
    REG_PCM_VOLUME: _update_pcm_volume,
    REG_DMA_CTRL: _update_dma_ctrl,
}
for _ch in range(NUM_CHANNELS):
    _DECODERS[REG_PERIOD_BASE + _ch * 2] = _update_period
    _DECODERS[REG_PERIOD_BASE + _ch * 2 + 1] = _update_period
    _DECODERS[REG_VOLUME_BASE + _ch] = _update_volume
for _offset in range(3):
    _DECODERS[REG_DMA_SOURCE + _offset] = _update_dma_source
for _offset in range(2):
    _DECODERS[REG_DMA_COUNT + _offset] = _update_dma_count


class SweepProcessor:
    """Steps channel 3's period every sweep interval while the sweep is enabled."""

    def __init__(self, chip: ChipState, channel: int = SWEEP_CHANNEL):
        self.chip = chip
        self.channel = channel

    def advance(self, samples: int):
        sweep = self.chip.sweep
        if sweep.step == 0 or not self.chip.sweep_enabled:
            return

        sweep.countdown -= samples
        # A long wait can span several sweep ticks
        while sweep.countdown <= 0:
            if sweep.interval <= 0:
                break
            sweep.countdown += sweep.interval
            period = (self.chip.raw_period(self.channel) + sweep.step) & 0x7FF
            self.chip.set_raw_period(self.channel, period)


class PcmDmaProcessor:
    """Streams bytes from wave RAM into the PCM sample register."""

    def __init__(self, chip: ChipState):
        self.chip = chip

    def advance(self, samples: int):
        dma = self.chip.dma
        if not dma.active:
            return

        dma.countdown -= samples
        while dma.countdown <= 0:
            self.chip.write(REG_PCM_SAMPLE, self.chip.wave_ram[dma.source & WAVE_RAM_MASK])
            dma.source += 1
            dma.count -= 1
            if dma.count == 0:
                dma.period = 0
                self.chip.registers[REG_DMA_CTRL] &= ~DMA_START & 0xFF
                break
            dma.countdown += dma.period
