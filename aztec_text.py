"""Aztec character-mode decoding.

Maps codeword values back to decoded symbols following the five-mode
state machine (UPPER/LOWER/MIXED/PUNCT/DIGIT) with shifts, latches,
binary runs and FLG(n). Every decoded symbol keeps the exact bit range
it consumed so it can be traced back to modules on the grid.
"""

from collections import namedtuple
from dataclasses import dataclass, asdict
from enum import Enum
from typing import List, Optional, Tuple


class Mode(Enum):
    UPPER = 'UPPER'
    LOWER = 'LOWER'
    MIXED = 'MIXED'
    PUNCT = 'PUNCT'
    DIGIT = 'DIGIT'


# ============================================================================
# MODE TABLES
# ============================================================================

# kind: 'char' | 'shift' | 'latch' | 'binary-shift' | 'flg'
TableEntry = namedtuple('TableEntry', ['kind', 'value', 'mode'])


def _chars(text):
    return [TableEntry('char', c, None) for c in text]


def _shift(mode):
    return TableEntry('shift', None, mode)


def _latch(mode):
    return TableEntry('latch', None, mode)


BINARY_SHIFT = TableEntry('binary-shift', None, None)
FLG_N = TableEntry('flg', None, None)

UPPER_TABLE = tuple(
    [_shift(Mode.PUNCT)] + _chars(' ABCDEFGHIJKLMNOPQRSTUVWXYZ') +
    [_latch(Mode.LOWER), _latch(Mode.MIXED), _latch(Mode.DIGIT), BINARY_SHIFT])

LOWER_TABLE = tuple(
    [_shift(Mode.PUNCT)] + _chars(' abcdefghijklmnopqrstuvwxyz') +
    [_shift(Mode.UPPER), _latch(Mode.MIXED), _latch(Mode.DIGIT), BINARY_SHIFT])

MIXED_TABLE = tuple(
    [_shift(Mode.PUNCT)] +
    _chars(' \x01\x02\x03\x04\x05\x06\x07\x08\t\n\x0b\x0c\r\x1b\x1c\x1d\x1e\x1f@\\^_`|~\x7f') +
    [_latch(Mode.LOWER), _latch(Mode.UPPER), _latch(Mode.PUNCT), BINARY_SHIFT])

PUNCT_TABLE = tuple(
    [FLG_N] +
    [TableEntry('char', s, None) for s in ('\r', '\r\n', '. ', ', ', ': ')] +
    _chars('!"#$%&\'()*+,-./:;<=>?[]{}') +
    [_latch(Mode.UPPER)])

DIGIT_TABLE = tuple(
    [_shift(Mode.PUNCT)] + _chars(' 0123456789,.') +
    [_latch(Mode.UPPER), _shift(Mode.UPPER)])

MODE_TABLES = {
    Mode.UPPER: UPPER_TABLE,
    Mode.LOWER: LOWER_TABLE,
    Mode.MIXED: MIXED_TABLE,
    Mode.PUNCT: PUNCT_TABLE,
    Mode.DIGIT: DIGIT_TABLE,
}

MODE_BITS = {
    Mode.UPPER: 5,
    Mode.LOWER: 5,
    Mode.MIXED: 5,
    Mode.PUNCT: 5,
    Mode.DIGIT: 4,
}


# ============================================================================
# DECODED SYMBOLS
# ============================================================================

@dataclass(frozen=True)
class Symbol:
    """Common fields: decode order, raw value, width and [start_bit, end_bit)."""
    index: int
    raw_value: int
    bit_size: int
    start_bit: int
    end_bit: int

    kind = 'symbol'

    def to_dict(self):
        d = asdict(self)
        d['kind'] = self.kind
        for key, value in d.items():
            if isinstance(value, Mode):
                d[key] = value.value
        return d


@dataclass(frozen=True)
class Character(Symbol):
    text: str
    char_position: int
    mode: Mode
    undecodable: bool = False

    kind = 'character'


@dataclass(frozen=True)
class Shift(Symbol):
    from_mode: Mode
    to_mode: Mode

    kind = 'shift'


@dataclass(frozen=True)
class Latch(Symbol):
    from_mode: Mode
    to_mode: Mode

    kind = 'latch'


@dataclass(frozen=True)
class BinaryShift(Symbol):
    byte_count: int

    kind = 'binary-shift'


@dataclass(frozen=True)
class BinaryByte(Symbol):
    text: str
    char_position: int

    kind = 'binary-byte'


@dataclass(frozen=True)
class Flg(Symbol):
    flag_value: int
    eci_digits: Tuple[int, ...] = ()

    kind = 'flg'


@dataclass(frozen=True)
class Ecc(Symbol):
    kind = 'ecc'


# ============================================================================
# CODEWORD VALUES
# ============================================================================

def extract_codeword_values(grid, codeword_modules, codeword_size, total_codewords):
    """Read each codeword's modules MSB-first. Missing or out-of-bounds modules read as 0."""
    height = len(grid)
    values = []
    for i in range(total_codewords):
        value = 0
        for bit, (x, y) in enumerate(codeword_modules.get(i, [])[:codeword_size]):
            if 0 <= y < height and 0 <= x < len(grid[y]) and grid[y][x]:
                value |= 1 << (codeword_size - 1 - bit)
        values.append(value)
    return values


class BitStream:
    """Reads variable-width fields from a sequence of fixed-width codewords.

    Reads past the end yield zero bits; the offset still advances so that
    callers see how many bits a field would have needed.
    """

    def __init__(self, values, codeword_size):
        mask = (1 << codeword_size) - 1
        self.bits = [(v & mask) >> (codeword_size - 1 - i) & 1
                     for v in values for i in range(codeword_size)]
        self.offset = 0

    @property
    def remaining(self):
        return max(0, len(self.bits) - self.offset)

    def read(self, n):
        value = 0
        for i in range(self.offset, self.offset + n):
            value = (value << 1) | (self.bits[i] if i < len(self.bits) else 0)
        self.offset += n
        return value


# ============================================================================
# DECODER
# ============================================================================

def decode_codewords(codeword_values, codeword_size, num_data_codewords) -> List[Symbol]:
    """Decode codeword values into symbol records.

    Only the first ``num_data_codewords`` codewords are interpreted; every
    codeword after that is emitted as an Ecc record. Bit offsets are relative
    to the start of the codeword stream.
    """
    num_data_codewords = max(0, min(num_data_codewords, len(codeword_values)))
    stream = BitStream(codeword_values[:num_data_codewords], codeword_size)
    limit = num_data_codewords * codeword_size

    results = []
    char_position = 0
    mode = Mode.UPPER
    shift_mode = None

    def add(cls, **fields):
        results.append(cls(index=len(results), **fields))

    while stream.offset < limit:
        active = shift_mode or mode
        table = MODE_TABLES[active]
        width = MODE_BITS[active]
        start = stream.offset
        if start + width > limit:
            break

        value = stream.read(width)
        common = dict(raw_value=value, bit_size=width, start_bit=start)
        entry = table[value] if value < len(table) else None

        if entry is None:
            add(Character, end_bit=stream.offset, text='?', char_position=char_position,
                mode=active, undecodable=True, **common)
            char_position += 1
            shift_mode = None

        elif entry.kind == 'char':
            add(Character, end_bit=stream.offset, text=entry.value,
                char_position=char_position, mode=active, **common)
            char_position += len(entry.value)
            shift_mode = None

        elif entry.kind == 'shift':
            add(Shift, end_bit=stream.offset, from_mode=active, to_mode=entry.mode, **common)
            shift_mode = entry.mode

        elif entry.kind == 'latch':
            add(Latch, end_bit=stream.offset, from_mode=active, to_mode=entry.mode, **common)
            mode = entry.mode
            shift_mode = None

        elif entry.kind == 'binary-shift':
            # a length field cut off by the data boundary is padding
            if stream.offset + 5 > limit:
                break
            byte_count = stream.read(5)
            if byte_count == 0:
                if stream.offset + 11 > limit:
                    break
                byte_count = stream.read(11) + 31
            add(BinaryShift, end_bit=stream.offset, byte_count=byte_count, **common)
            for _ in range(byte_count):
                if stream.offset + 8 > limit:
                    break
                byte_start = stream.offset
                byte = stream.read(8)
                add(BinaryByte, raw_value=byte, bit_size=8, start_bit=byte_start,
                    end_bit=stream.offset, text=chr(byte), char_position=char_position)
                char_position += 1
            shift_mode = None

        else:
            # FLG(n): 0 = FNC1, 1-6 = ECI with n digits, 7 = reserved
            if stream.offset + 3 > limit:
                break
            flag = stream.read(3)
            digits = ()
            if 1 <= flag <= 6:
                if stream.offset + 4 * flag > limit:
                    break
                digits = tuple(stream.read(4) for _ in range(flag))
            add(Flg, end_bit=stream.offset, flag_value=flag, eci_digits=digits, **common)
            shift_mode = None

    for i in range(num_data_codewords, len(codeword_values)):
        add(Ecc, raw_value=codeword_values[i], bit_size=codeword_size,
            start_bit=i * codeword_size, end_bit=(i + 1) * codeword_size)

    return results


def decoded_text(symbols):
    """Concatenate the text of character and binary-byte symbols."""
    return ''.join(s.text for s in symbols if isinstance(s, (Character, BinaryByte)))


# ============================================================================
# BIT-TO-MODULE MAPPING
# ============================================================================

def modules_for_bit_range(start_bit, end_bit, data_bit_positions) -> List[Tuple[int, int]]:
    """Module coordinates (x, y) holding bits [start_bit, end_bit) of the data stream."""
    return list(data_bit_positions[max(0, start_bit):max(0, min(end_bit, len(data_bit_positions)))])


def find_symbol_at_bit(bit_offset, symbols) -> Optional[Symbol]:
    return next((s for s in symbols if s.start_bit <= bit_offset < s.end_bit), None)


# ============================================================================
# DISPLAY HELPERS
# ============================================================================

def format_hex(value, bit_size):
    return '0x' + format(value, 'X').zfill((bit_size + 3) // 4)


def format_binary(value, bit_size):
    return format(value, 'b').zfill(bit_size)


def display_char(s):
    """Make control characters visible."""
    out = []
    for c in s:
        if c == '\r':
            out.append('\\r')
        elif c == '\n':
            out.append('\\n')
        elif c == '\t':
            out.append('\\t')
        elif ord(c) < 0x20 or ord(c) == 0x7f:
            out.append(f'\\x{ord(c):02x}')
        else:
            out.append(c)
    return ''.join(out)


def describe_symbol(symbol):
    if isinstance(symbol, Character):
        if symbol.text == '':
            return 'Empty'
        return f'"{display_char(symbol.text)}" ({symbol.mode.value})'
    if isinstance(symbol, Shift):
        return f'Shift {symbol.from_mode.value} → {symbol.to_mode.value}'
    if isinstance(symbol, Latch):
        return f'Latch {symbol.from_mode.value} → {symbol.to_mode.value}'
    if isinstance(symbol, Ecc):
        return 'Reed-Solomon parity'
    if isinstance(symbol, BinaryShift):
        return f'Binary shift ({symbol.byte_count} bytes)'
    if isinstance(symbol, BinaryByte):
        return f'Binary byte: "{display_char(symbol.text)}"'
    if isinstance(symbol, Flg):
        if symbol.flag_value == 0:
            return 'FNC1'
        if symbol.flag_value == 7:
            return 'FLG(reserved)'
        return f'ECI ({symbol.flag_value} digits)'
    return symbol.kind
