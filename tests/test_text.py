import pytest

import aztec_text
from aztec_text import (BinaryByte, BinaryShift, BitStream, Character, Ecc, Flg, Latch, Mode, Shift,
                        UPPER_TABLE, decode_codewords, decoded_text, describe_symbol,
                        extract_codeword_values, find_symbol_at_bit, format_binary, format_hex,
                        modules_for_bit_range)


def test_mode_tables():
    for mode, table in aztec_text.MODE_TABLES.items():
        assert len(table) == 1 << aztec_text.MODE_BITS[mode]
    assert UPPER_TABLE[2].value == 'A'
    assert aztec_text.PUNCT_TABLE[6].value == '!'
    assert aztec_text.DIGIT_TABLE[2].value == '0'


def test_single_upper_character():
    symbols = decode_codewords([2], 5, 1)
    assert len(symbols) == 1
    s = symbols[0]
    assert isinstance(s, Character)
    assert (s.text, s.mode, s.start_bit, s.end_bit, s.raw_value, s.index) == ('A', Mode.UPPER, 0, 5, 2, 0)


def test_latch_to_lower():
    latch, char = decode_codewords([28, 2], 5, 2)
    assert isinstance(latch, Latch)
    assert (latch.from_mode, latch.to_mode, latch.start_bit, latch.end_bit) == (Mode.UPPER, Mode.LOWER, 0, 5)
    assert (char.text, char.mode, char.start_bit, char.end_bit) == ('a', Mode.LOWER, 5, 10)


def test_shift_applies_to_one_symbol():
    shift, bang, a = decode_codewords([0, 6, 2], 5, 3)
    assert isinstance(shift, Shift)
    assert (shift.from_mode, shift.to_mode, shift.start_bit, shift.end_bit) == (Mode.UPPER, Mode.PUNCT, 0, 5)
    assert (bang.text, bang.mode, bang.start_bit, bang.end_bit) == ('!', Mode.PUNCT, 5, 10)
    assert (a.text, a.mode, a.start_bit, a.end_bit) == ('A', Mode.UPPER, 10, 15)


def test_upper_shift_from_lower():
    # L/L, U/S, 'B', 'b'
    symbols = decode_codewords([28, 28, 3, 3], 5, 4)
    assert [type(s) for s in symbols] == [Latch, Shift, Character, Character]
    assert (symbols[1].from_mode, symbols[1].to_mode) == (Mode.LOWER, Mode.UPPER)
    assert decoded_text(symbols) == 'Bb'


def test_latch_read_under_shift_records_shifted_table():
    # L/L, P/S, U/L (from the punctuation table), 'A'
    latch, shift, upper, a = decode_codewords([28, 0, 31, 2], 5, 4)
    assert (shift.from_mode, shift.to_mode) == (Mode.LOWER, Mode.PUNCT)
    assert isinstance(upper, Latch)
    assert (upper.from_mode, upper.to_mode) == (Mode.PUNCT, Mode.UPPER)
    assert (a.text, a.mode) == ('A', Mode.UPPER)

    # L/L, U/S, P/S read from the upper table, '!', 'a'
    symbols = decode_codewords([28, 28, 0, 6, 2], 5, 5)
    assert (symbols[2].from_mode, symbols[2].to_mode) == (Mode.UPPER, Mode.PUNCT)
    assert decoded_text(symbols) == '!a'


def test_ecc_boundary_five_bit_codewords():
    symbols = decode_codewords([2, 3, 0xA3, 0xB4], 5, 2)
    chars = [s for s in symbols if isinstance(s, Character)]
    ecc = [s for s in symbols if isinstance(s, Ecc)]
    assert len(symbols) == 4
    assert [(s.text, s.start_bit, s.end_bit) for s in chars] == [('A', 0, 5), ('B', 5, 10)]
    assert [(s.raw_value, s.start_bit, s.end_bit) for s in ecc] == [(0xA3, 10, 15), (0xB4, 15, 20)]


def test_ecc_boundary():
    symbols = decode_codewords([2, 3, 0xA3, 0xB4], 8, 2)
    data = [s for s in symbols if not isinstance(s, Ecc)]
    ecc = [s for s in symbols if isinstance(s, Ecc)]
    assert all(s.end_bit <= 16 for s in data)
    assert [(s.raw_value, s.start_bit, s.end_bit, s.bit_size) for s in ecc] == [
        (0xA3, 16, 24, 8), (0xB4, 24, 32, 8)]
    assert [s.index for s in symbols] == list(range(len(symbols)))


def test_codeword_bits_are_masked():
    assert decode_codewords([0b100010], 5, 1)[0].text == 'A'
    assert BitStream([0b1100010], 5).read(5) == 2


def test_symbols_span_codeword_boundaries(aztec):
    # 5-bit symbols packed into 8-bit codewords
    values = aztec.pack([(c, 5) for c in range(2, 14)], 8)
    symbols = decode_codewords(values, 8, len(values))
    chars = [s for s in symbols if isinstance(s, Character)]
    assert decoded_text(chars) == 'ABCDEFGHIJKL'
    assert any(s.start_bit // 8 != (s.end_bit - 1) // 8 for s in chars)


def test_digit_mode(aztec):
    # D/L, '1', '2', U/L, 'A'
    fields = [(30, 5), (3, 4), (4, 4), (14, 4), (2, 5)]
    symbols = decode_codewords(aztec.pack(fields, 6), 6, 4)
    assert decoded_text(symbols) == '12A'
    one, two = symbols[1], symbols[2]
    assert (one.mode, one.bit_size, one.start_bit, one.end_bit) == (Mode.DIGIT, 4, 5, 9)
    assert (two.start_bit, two.end_bit) == (9, 13)
    assert isinstance(symbols[3], Latch) and symbols[3].to_mode == Mode.UPPER


def test_binary_shift_short(aztec):
    fields = [(31, 5), (3, 5), (0x41, 8), (0x42, 8), (0x43, 8), (4, 5)]
    values = aztec.pack(fields, 8)
    symbols = decode_codewords(values, 8, len(values))
    bs = symbols[0]
    assert isinstance(bs, BinaryShift)
    assert (bs.byte_count, bs.start_bit, bs.end_bit) == (3, 0, 10)
    bytes_ = symbols[1:4]
    assert all(isinstance(b, BinaryByte) for b in bytes_)
    assert [(b.text, b.start_bit, b.end_bit) for b in bytes_] == [('A', 10, 18), ('B', 18, 26), ('C', 26, 34)]
    # back in the mode that was active before the shift
    assert (symbols[4].text, symbols[4].mode) == ('C', Mode.UPPER)
    assert decoded_text(symbols).startswith('ABCC')


def test_binary_shift_long_count(aztec):
    fields = [(31, 5), (0, 5), (1, 11)] + [(0x41, 8)] * 32
    values = aztec.pack(fields, 8)
    symbols = decode_codewords(values, 8, len(values))
    bs = symbols[0]
    assert isinstance(bs, BinaryShift)
    assert (bs.byte_count, bs.end_bit) == (32, 21)
    payload = [s for s in symbols if isinstance(s, BinaryByte)]
    assert len(payload) == 32
    assert ''.join(b.text for b in payload) == 'A' * 32
    assert payload[-1].end_bit == 21 + 32 * 8


def test_binary_bytes_stop_at_data_boundary(aztec):
    values = aztec.pack([(31, 5), (10, 5), (0x41, 8), (0x42, 8)], 8)
    symbols = decode_codewords(values + [0xEE], 8, len(values))
    payload = [s for s in symbols if isinstance(s, BinaryByte)]
    assert len(payload) == 2
    assert symbols[0].byte_count == 10
    assert all(s.end_bit <= len(values) * 8 for s in payload)
    assert isinstance(symbols[-1], Ecc) and symbols[-1].raw_value == 0xEE


@pytest.mark.parametrize("values, size, n_data", [
    ([31, 7, 9], 5, 1),          # B/S with no room for its length
    ([31, 0, 0, 0], 5, 3),       # B/S long form cut off in the 11-bit extension
    ([0, 0, 21], 5, 2),          # P/S FLG with no room for the flag value
])
def test_trailing_escape_does_not_reach_ecc(values, size, n_data):
    symbols = decode_codewords(values, size, n_data)
    limit = n_data * size
    data = [s for s in symbols if not isinstance(s, Ecc)]
    assert not any(isinstance(s, (BinaryShift, Flg)) for s in data)
    assert all(s.end_bit <= limit for s in data)
    ecc = [s for s in symbols if isinstance(s, Ecc)]
    assert len(ecc) == len(values) - n_data
    for s in ecc:
        assert find_symbol_at_bit(s.start_bit, symbols) is s


def test_eci_digits_cut_off_by_data_boundary(aztec):
    # P/S, FLG(6) with only one digit before the end of the data
    values = aztec.pack([(0, 5), (0, 5), (6, 3), (3, 4)], 8)
    symbols = decode_codewords(values, 8, len(values))
    assert [type(s) for s in symbols] == [Shift]


def test_ones_padded_last_codeword(aztec):
    # A B C D E, then the last 6-bit codeword filled with 1-bits
    values = aztec.pack([(2, 5), (3, 5), (4, 5), (5, 5), (6, 5), (31, 5)], 6)
    assert values[-1] == 0b011111
    symbols = decode_codewords(values + [0b101010] * 12, 6, len(values))
    assert decoded_text(symbols) == 'ABCDE'
    data = [s for s in symbols if not isinstance(s, Ecc)]
    assert len(data) == 5 and data[-1].end_bit == 25
    assert isinstance(find_symbol_at_bit(30, symbols), Ecc)


def test_flg_eci(aztec):
    # P/S, FLG(2) with digits 3 and 7, then 'B'
    fields = [(0, 5), (0, 5), (2, 3), (3, 4), (7, 4), (3, 5)]
    symbols = decode_codewords(aztec.pack(fields, 8), 8, 4)
    shift, flg, b = symbols[:3]
    assert isinstance(shift, Shift) and shift.to_mode == Mode.PUNCT
    assert isinstance(flg, Flg)
    assert (flg.flag_value, flg.eci_digits, flg.start_bit, flg.end_bit) == (2, (3, 7), 5, 21)
    assert (b.text, b.mode, b.start_bit, b.end_bit) == ('B', Mode.UPPER, 21, 26)
    assert describe_symbol(flg) == 'ECI (2 digits)'


def test_flg_fnc1(aztec):
    symbols = decode_codewords(aztec.pack([(0, 5), (0, 5), (0, 3), (2, 5)], 6), 6, 3)
    assert symbols[1].flag_value == 0 and symbols[1].eci_digits == ()
    assert describe_symbol(symbols[1]) == 'FNC1'
    assert symbols[2].text == 'A'


def test_undecodable_value(monkeypatch):
    monkeypatch.setitem(aztec_text.MODE_TABLES, Mode.UPPER, UPPER_TABLE[:10])
    symbols = decode_codewords([20, 2], 5, 2)
    assert symbols[0].text == '?' and symbols[0].undecodable
    assert (symbols[0].start_bit, symbols[0].end_bit) == (0, 5)
    assert symbols[1].text == 'A' and not symbols[1].undecodable
    assert symbols[1].char_position == 1


def test_stops_when_symbol_does_not_fit():
    # 6 bits: one 5-bit symbol, 1 bit left over
    symbols = decode_codewords([0b000101], 6, 1)
    assert len(symbols) == 1
    assert symbols[0].end_bit == 5


def test_no_data_codewords():
    symbols = decode_codewords([1, 2, 3], 6, 0)
    assert all(isinstance(s, Ecc) for s in symbols)
    assert [s.start_bit for s in symbols] == [0, 6, 12]


def test_multi_character_punct_advances_position():
    # P/S ". " then 'A'
    symbols = decode_codewords([0, 3, 2], 5, 3)
    assert symbols[1].text == '. '
    assert symbols[2].char_position == 2


def test_extract_codeword_values():
    grid = [[True, False, True],
            [False, True, False]]
    modules = {0: [(0, 0), (1, 0), (2, 0)], 1: [(1, 1), (5, 5), (0, 1)]}
    assert extract_codeword_values(grid, modules, 3, 3) == [0b101, 0b100, 0]


def test_bit_lookup():
    symbols = decode_codewords([0, 6, 2], 5, 3)
    assert find_symbol_at_bit(7, symbols) is symbols[1]
    assert find_symbol_at_bit(15, symbols) is None
    positions = [(i, 0) for i in range(20)]
    assert modules_for_bit_range(5, 10, positions) == [(5, 0), (6, 0), (7, 0), (8, 0), (9, 0)]
    assert modules_for_bit_range(18, 25, positions) == [(18, 0), (19, 0)]


def test_display_helpers():
    assert format_hex(0xA3, 8) == '0xA3'
    assert format_hex(5, 6) == '0x05'
    assert format_hex(0x3F, 10) == '0x03F'
    assert format_binary(5, 6) == '000101'
    shift, bang, a = decode_codewords([0, 6, 2], 5, 3)
    assert describe_symbol(a) == '"A" (UPPER)'
    assert describe_symbol(shift) == 'Shift UPPER → PUNCT'
    cr = decode_codewords([0, 1], 5, 2)[1]
    assert describe_symbol(cr) == '"\\r" (PUNCT)'
    ecc = decode_codewords([1, 2], 5, 1)[-1]
    assert describe_symbol(ecc) == 'Reed-Solomon parity'


def test_symbol_to_dict():
    d = decode_codewords([28, 2], 5, 2)[1].to_dict()
    assert d == {'index': 1, 'raw_value': 2, 'bit_size': 5, 'start_bit': 5, 'end_bit': 10,
                 'text': 'a', 'char_position': 0, 'mode': 'LOWER', 'undecodable': False,
                 'kind': 'character'}
