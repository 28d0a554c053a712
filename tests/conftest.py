from types import SimpleNamespace

import cv2
import numpy as np
import pytest

from aztec_structure import (alignment_positions, bit_positions, codeword_size, matrix_size,
                             mode_message_positions, total_bits)


def pack(fields, cw_size):
    """Concatenate (value, width) fields MSB-first into cw_size-bit codewords, zero-filling the last."""
    bits = []
    for value, width in fields:
        bits.extend((value >> (width - 1 - i)) & 1 for i in range(width))
    bits += [0] * (-len(bits) % cw_size)
    return [int(''.join(map(str, bits[i:i + cw_size])), 2) for i in range(0, len(bits), cw_size)]


def draw_bullseye(grid, compact):
    size = grid.shape[0]
    center = size // 2
    radius = 4 if compact else 6
    for y in range(center - radius, center + radius + 1):
        for x in range(center - radius, center + radius + 1):
            grid[y, x] = max(abs(x - center), abs(y - center)) % 2 == 0


def draw_reference_grid(grid):
    size = grid.shape[0]
    center = size // 2
    for p in alignment_positions(size, False):
        for k in range(size):
            if (k - center) % 2 == 0:
                grid[p, k] = True
                grid[k, p] = True


def build_symbol(layers, compact, data, ecc_fill=0):
    """Module grid (grid[y, x], True = dark) of a synthetic symbol.

    ``data`` is the list of data codewords; the remaining codewords are
    filled with ``ecc_fill``. Padding bits and mode-message check bits are 0.
    """
    size = matrix_size(layers, compact)
    cw = codeword_size(layers)
    n_bits = total_bits(layers, compact)
    total = n_bits // cw
    codewords = list(data) + [ecc_fill] * (total - len(data))

    grid = np.zeros((size, size), dtype=bool)
    if not compact:
        draw_reference_grid(grid)
    draw_bullseye(grid, compact)

    center = size // 2
    ring = 5 if compact else 7
    for sx, sy in ((-1, -1), (1, -1), (1, 1), (-1, 1)):
        cx, cy = center + sx * ring, center + sy * ring
        for x, y in ((cx, cy), (cx - sx, cy), (cx, cy - sy)):
            grid[y, x] = True

    if compact:
        value, width, ring_bits = ((layers - 1) << 6) | (len(data) - 1), 8, 28
    else:
        value, width, ring_bits = ((layers - 1) << 11) | (len(data) - 1), 16, 40
    mode_bits = [(value >> (width - 1 - i)) & 1 for i in range(width)] + [0] * (ring_bits - width)
    for bit, (x, y) in zip(mode_bits, mode_message_positions(size, compact)):
        grid[y, x] = bool(bit)

    bits = [0] * (n_bits % cw)
    for v in codewords:
        bits.extend((v >> (cw - 1 - i)) & 1 for i in range(cw))
    for bit, (x, y) in zip(bits, bit_positions(layers, compact)):
        grid[y, x] = bool(bit)
    return grid


def build_size_probe(size, compact):
    """Bullseye plus dark corners and edge midpoints: the minimum size inference needs."""
    grid = np.zeros((size, size), dtype=bool)
    if not compact:
        draw_reference_grid(grid)
    draw_bullseye(grid, compact)
    last, mid = size - 1, size // 2
    for x, y in ((0, 0), (last, 0), (0, last), (last, last),
                 (mid, 0), (0, mid), (last, mid), (mid, last)):
        grid[y, x] = True
    return grid


def render(grid, module=10, quiet=0):
    """BGR image of a module grid, ``module`` pixels per module and a white quiet zone."""
    img = np.where(grid, 0, 255).astype(np.uint8)
    img = np.kron(img, np.ones((module, module), dtype=np.uint8))
    img = np.pad(img, quiet * module, constant_values=255)
    return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)


def corners_of(grid, module=10, quiet=0):
    lo = quiet * module
    hi = lo + grid.shape[0] * module - 1
    return np.array([[lo, lo], [hi, lo], [hi, hi], [lo, hi]], dtype=np.float32)


# L/L h e l l o
HELLO_FIELDS = [(28, 5), (9, 5), (6, 5), (13, 5), (13, 5), (16, 5)]


@pytest.fixture
def aztec():
    return SimpleNamespace(pack=pack, build=build_symbol, size_probe=build_size_probe,
                           render=render, corners=corners_of)


@pytest.fixture
def hello_symbol():
    """Compact 1-layer symbol encoding 'hello' in 5 data codewords."""
    return build_symbol(1, True, pack(HELLO_FIELDS, 6), ecc_fill=0b101101)


@pytest.fixture
def fake_locator(monkeypatch):
    """Replace zxing-cpp localization with fixed corners and grid size."""
    import aztec_decode

    def install(corners, grid_size=None, text='hello'):
        def locate(image):
            return {'corners': np.asarray(corners, dtype=np.float32), 'text': text,
                    'grid_size': grid_size}
        monkeypatch.setattr(aztec_decode, 'locate_aztec', locate)
    return install
