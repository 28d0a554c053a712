"""Aztec symbol structure: spiral bit order, mode message and module classification."""

from dataclasses import dataclass, field, asdict
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from aztec_text import extract_codeword_values

MODULE_TYPES = ('finder', 'orientation', 'mode', 'data', 'ecc', 'alignment', 'padding')

MODULE_NAMES = {
    'finder': 'Finder Pattern',
    'orientation': 'Orientation',
    'mode': 'Mode Message',
    'data': 'Data Codewords',
    'ecc': 'ECC Codewords',
    'alignment': 'Reference Grid',
    'padding': 'Padding Bits',
}

# Codeword width by layer count (index 0 is the 4-bit mode message word)
WORD_SIZE = [4, 6, 6, 8, 8, 8, 8, 8, 8] + [10] * 14 + [12] * 10

DATA_FALLBACK_RATIO = 0.75


class AztecError(ValueError):
    pass


class UnrecognizedGridSize(AztecError):
    pass


# ============================================================================
# SIZE ARITHMETIC
# ============================================================================

def codeword_size(layers):
    return WORD_SIZE[layers] if layers < len(WORD_SIZE) else 12


def total_bits(layers, compact):
    return ((88 if compact else 112) + 16 * layers) * layers


def base_matrix_size(layers, compact):
    return (11 if compact else 14) + 4 * layers


def matrix_size(layers, compact):
    base = base_matrix_size(layers, compact)
    if compact:
        return base
    return base + 1 + 2 * ((base // 2 - 1) // 15)


COMPACT_SIZES = tuple(matrix_size(layers, True) for layers in range(1, 5))
FULL_SIZES = tuple(matrix_size(layers, False) for layers in range(1, 33))
VALID_SIZES = frozenset(COMPACT_SIZES + FULL_SIZES)


def layers_for_size(size, compact):
    """Layer count for a grid size, or None if the size is not legal for the family."""
    sizes = COMPACT_SIZES if compact else FULL_SIZES
    if size in sizes:
        return sizes.index(size) + 1
    return None


# ============================================================================
# GEOMETRY MAPPER
# ============================================================================

@lru_cache(maxsize=None)
def alignment_map(layers, compact):
    """Base-matrix coordinate -> grid coordinate, skipping reference-grid lines."""
    base = base_matrix_size(layers, compact)
    if compact:
        return tuple(range(base))
    size = matrix_size(layers, compact)
    orig_center = base // 2
    center = size // 2
    mapping = [0] * base
    for i in range(orig_center):
        new_offset = i + i // 15
        mapping[orig_center - i - 1] = center - new_offset - 1
        mapping[orig_center + i] = center + new_offset + 1
    return tuple(mapping)


def alignment_positions(size, compact):
    """Row/column indices carrying reference-grid lines (empty for compact)."""
    if compact:
        return frozenset()
    center = size // 2
    positions = {center}
    offset = 16
    while center - offset >= 0:
        positions.add(center - offset)
        positions.add(center + offset)
        offset += 16
    return frozenset(positions)


@lru_cache(maxsize=None)
def bit_positions(layers, compact) -> Tuple[Tuple[int, int], ...]:
    """(x, y) of every data/ECC bit in reading order.

    Outermost layer first; each layer is read down the left side, right along
    the bottom, up the right side and left along the top, two modules per step
    with the module nearer the symbol edge first.
    """
    base = base_matrix_size(layers, compact)
    amap = alignment_map(layers, compact)
    positions = []
    for layer in range(layers):
        row_size = (layers - layer) * 4 + (9 if compact else 12)
        low = layer * 2
        high = base - 1 - low
        for j in range(row_size):
            for k in range(2):
                positions.append((amap[low + k], amap[low + j]))
        for j in range(row_size):
            for k in range(2):
                positions.append((amap[low + j], amap[high - k]))
        for j in range(row_size):
            for k in range(2):
                positions.append((amap[high - k], amap[high - j]))
        for j in range(row_size):
            for k in range(2):
                positions.append((amap[high - j], amap[low + k]))
    return tuple(positions)


def layer_bit_counts(layers, compact):
    return [8 * ((layers - layer) * 4 + (9 if compact else 12)) for layer in range(layers)]


@lru_cache(maxsize=None)
def mode_message_positions(size, compact) -> Tuple[Tuple[int, int], ...]:
    """(x, y) of the mode message bits: clockwise from the top-left corner of the ring,
    starting two modules in from each corner and skipping reference-grid lines."""
    center = size // 2
    radius = 5 if compact else 7
    skip = alignment_positions(size, compact)
    positions = []
    for dx, dy in ((-1, -1), (1, -1), (1, 1), (-1, 1)):
        step_x, step_y = (-dx, 0) if dx == dy else (0, -dy)
        for i in range(2, 2 * radius - 1):
            x = center + radius * dx + i * step_x
            y = center + radius * dy + i * step_y
            if x in skip or y in skip:
                continue
            positions.append((x, y))
    return tuple(positions)


# ============================================================================
# STRUCTURE TYPES
# ============================================================================

@dataclass(frozen=True)
class ModeMessage:
    layers: int
    data_codewords: int
    raw_bits: Tuple[bool, ...]
    valid: bool

    def to_dict(self):
        return {'layers': self.layers, 'data_codewords': self.data_codewords,
                'raw_bits': [int(b) for b in self.raw_bits], 'valid': self.valid}


@dataclass(frozen=True)
class SymbolGeometry:
    size: int
    is_compact: bool
    layers: int
    codeword_bits: int
    base_matrix_size: int
    total_bits: int
    total_codewords: int
    data_codewords: int
    ecc_codewords: int
    padding_bits: int
    data_split_estimated: bool = False

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class ModuleInfo:
    x: int
    y: int
    dark: bool
    type: str
    layer: Optional[int] = None
    codeword_index: Optional[int] = None
    bit_index: Optional[int] = None

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class AztecStructure:
    geometry: SymbolGeometry
    mode_message: ModeMessage
    modules: Tuple[Tuple[ModuleInfo, ...], ...]
    codeword_modules: Dict[int, List[Tuple[int, int]]]
    codeword_values: Tuple[int, ...]
    padding_modules: Tuple[Tuple[int, int], ...]
    bit_positions: Tuple[Tuple[int, int], ...]
    data_bit_positions: Tuple[Tuple[int, int], ...] = field(repr=False, default=())

    def module(self, x, y):
        return self.modules[y][x]

    def to_dict(self):
        return {
            'geometry': self.geometry.to_dict(),
            'mode_message': self.mode_message.to_dict(),
            'modules': [[m.to_dict() for m in row] for row in self.modules],
            'codeword_modules': {str(i): [list(p) for p in mods]
                                 for i, mods in self.codeword_modules.items()},
            'codeword_values': list(self.codeword_values),
            'data_bit_positions': [list(p) for p in self.data_bit_positions],
        }


# ============================================================================
# STRUCTURAL ANALYSIS
# ============================================================================

def _ring(center, d):
    for k in range(-d, d):
        yield center + k, center - d
        yield center + d, center + k
        yield center - k, center + d
        yield center - d, center - k


def has_full_range_finder(grid, size):
    """True if the rings at distance 5 (light) and 6 (dark) match the full-range finder.

    In compact symbols ring 5 holds the orientation marks and the mode message
    and ring 6 holds data, so the two rings never come close to matching.
    """
    center = size // 2
    if center < 6:
        return False
    matches = total = 0
    for d, expected in ((5, False), (6, True)):
        for x, y in _ring(center, d):
            total += 1
            if bool(grid[y][x]) == expected:
                matches += 1
    return matches / total > 0.9


def is_compact_symbol(size, grid=None):
    """Compact vs full-range from the grid size; 19/23/27 exist in both families."""
    if size in COMPACT_SIZES and size not in FULL_SIZES:
        return True
    if size not in COMPACT_SIZES:
        return False
    if grid is None:
        return True
    return not has_full_range_finder(grid, size)


def read_mode_message(grid, size, compact) -> ModeMessage:
    """Read the mode message ring. No RS correction: the data fields are taken as read."""
    positions = mode_message_positions(size, compact)
    raw_bits = tuple(bool(grid[y][x]) if 0 <= x < size and 0 <= y < size else False
                     for x, y in positions)

    if len(raw_bits) != (28 if compact else 40):
        return ModeMessage(0, 0, raw_bits, False)

    data_bits = 8 if compact else 16
    value = 0
    for bit in raw_bits[:data_bits]:
        value = (value << 1) | int(bit)

    if compact:
        layers = ((value >> 6) & 0x3) + 1
        data_codewords = (value & 0x3F) + 1
    else:
        layers = ((value >> 11) & 0x1F) + 1
        data_codewords = (value & 0x7FF) + 1
    return ModeMessage(layers, data_codewords, raw_bits, True)


def _orientation_positions(center, ring):
    positions = set()
    for sx, sy in ((-1, -1), (1, -1), (1, 1), (-1, 1)):
        cx, cy = center + sx * ring, center + sy * ring
        positions.update({(cx, cy), (cx - sx, cy), (cx, cy - sy)})
    return positions


def _mode_ring_positions(center, ring, span):
    positions = set()
    for d in range(-span, span + 1):
        positions.update({(center + d, center - ring), (center + d, center + ring),
                          (center - ring, center + d), (center + ring, center + d)})
    return positions


def analyze_grid(grid, size=None) -> AztecStructure:
    """Derive geometry, mode message, module classification and codeword values from a grid.

    ``grid`` is indexed ``grid[y][x]`` (True = dark). Raises
    UnrecognizedGridSize if the size has no Aztec layer count.
    """
    size = len(grid) if size is None else size
    compact = is_compact_symbol(size, grid)
    layers = layers_for_size(size, compact)
    if layers is None:
        raise UnrecognizedGridSize(f"{size}x{size} is not a valid Aztec size")

    cw_size = codeword_size(layers)
    n_bits = total_bits(layers, compact)
    total_codewords = n_bits // cw_size
    padding_bits = n_bits % cw_size

    mode_message = read_mode_message(grid, size, compact)
    if mode_message.valid:
        data_codewords = min(mode_message.data_codewords, total_codewords)
    else:
        data_codewords = int(total_codewords * DATA_FALLBACK_RATIO)

    geometry = SymbolGeometry(
        size=size, is_compact=compact, layers=layers, codeword_bits=cw_size,
        base_matrix_size=base_matrix_size(layers, compact), total_bits=n_bits,
        total_codewords=total_codewords, data_codewords=data_codewords,
        ecc_codewords=total_codewords - data_codewords, padding_bits=padding_bits,
        data_split_estimated=not mode_message.valid)

    positions = bit_positions(layers, compact)
    bit_layers = [layer for layer, count in enumerate(layer_bit_counts(layers, compact))
                  for _ in range(count)]

    codeword_map = {}
    codeword_modules = {i: [] for i in range(total_codewords)}
    for bit, (x, y) in enumerate(positions):
        if bit < padding_bits:
            continue
        index, offset = divmod(bit - padding_bits, cw_size)
        codeword_map[(x, y)] = (index, offset, bit_layers[bit])
        codeword_modules[index].append((x, y))
    padding_modules = positions[:padding_bits]
    padding_layers = {p: bit_layers[i] for i, p in enumerate(padding_modules)}

    center = size // 2
    finder_half = 4 if compact else 6
    ring = 5 if compact else 7
    aligned = alignment_positions(size, compact)
    orientation = _orientation_positions(center, ring)
    mode_ring = _mode_ring_positions(center, ring, 3 if compact else 5)

    rows = []
    for y in range(size):
        row = []
        for x in range(size):
            dark = bool(grid[y][x])
            chebyshev = max(abs(x - center), abs(y - center))
            layer = index = offset = None
            if chebyshev <= finder_half:
                kind = 'finder'
            elif x in aligned or y in aligned:
                kind = 'alignment'
            elif (x, y) in orientation:
                kind = 'orientation'
            elif (x, y) in mode_ring:
                kind = 'mode'
            elif (x, y) in codeword_map:
                index, offset, layer = codeword_map[(x, y)]
                kind = 'data' if index < data_codewords else 'ecc'
            else:
                kind = 'padding'
                layer = padding_layers.get((x, y))
            row.append(ModuleInfo(x, y, dark, kind, layer, index, offset))
        rows.append(tuple(row))

    values = extract_codeword_values(grid, codeword_modules, cw_size, total_codewords)

    return AztecStructure(
        geometry=geometry,
        mode_message=mode_message,
        modules=tuple(rows),
        codeword_modules=codeword_modules,
        codeword_values=tuple(values),
        padding_modules=padding_modules,
        bit_positions=positions,
        data_bit_positions=positions[padding_bits:],
    )


# ============================================================================
# CODEWORD OUTLINES
# ============================================================================

def codeword_outline(modules):
    """Boundary segments ((x1, y1), (x2, y2)) of a module group, in module-corner units.

    Returns (segments, (min_x, min_y, max_x, max_y)) or None for an empty group.
    """
    if not modules:
        return None
    cells = set(modules)
    segments = []
    for x, y in modules:
        if (x, y - 1) not in cells:
            segments.append(((x, y), (x + 1, y)))
        if (x, y + 1) not in cells:
            segments.append(((x, y + 1), (x + 1, y + 1)))
        if (x - 1, y) not in cells:
            segments.append(((x, y), (x, y + 1)))
        if (x + 1, y) not in cells:
            segments.append(((x + 1, y), (x + 1, y + 1)))
    xs = [x for x, _ in modules]
    ys = [y for _, y in modules]
    return segments, (min(xs), min(ys), max(xs), max(ys))
