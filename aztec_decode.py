#!/usr/bin/env python3
"""
Aztec Code Structure Decoder
Usage: python3 aztec_decode.py <image_path> [--debug] [--size=N] [--output-size=N]
"""

import cv2
import numpy as np
import os
import sys
from dataclasses import dataclass, field
from typing import Optional, Tuple

import zxingcpp

from aztec_structure import (AztecError, UnrecognizedGridSize, AztecStructure, COMPACT_SIZES,
                             FULL_SIZES, VALID_SIZES, analyze_grid)
from aztec_text import (Symbol, decode_codewords, decoded_text, describe_symbol,
                        find_symbol_at_bit, modules_for_bit_range)

# Global debug output directory (None = disabled)
DEBUG_DIR = None

# Rectified image side length, in pixels
OUTPUT_SIZE = 512

MIN_GRID_SIZE = 15
MAX_GRID_SIZE = 151


class GeometryError(AztecError):
    pass


class LocateError(AztecError):
    pass


def _debug(stage, *args):
    if DEBUG_DIR:
        print(f"[AZTEC DEBUG] {stage}:", *args)


# ============================================================================
# LOCALIZATION
# ============================================================================

def locate_aztec(image):
    """Locate one Aztec symbol with zxing-cpp.

    Returns a dict with the four corners (TL, TR, BR, BL as a 4x2 float32
    array), the text zxing decoded, and the symbol dimension when zxing
    reports one (None otherwise). Only the corners and dimension are used
    downstream; module values are always resampled from the image.
    """
    if image.ndim == 3 and image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    barcodes = zxingcpp.read_barcodes(image, formats=zxingcpp.BarcodeFormat.Aztec)
    if not barcodes:
        raise LocateError("No Aztec barcode found in image")

    barcode = barcodes[0]
    pos = barcode.position
    corners = np.array([[pos.top_left.x, pos.top_left.y],
                        [pos.top_right.x, pos.top_right.y],
                        [pos.bottom_right.x, pos.bottom_right.y],
                        [pos.bottom_left.x, pos.bottom_left.y]], dtype=np.float32)

    grid_size = None
    symbol = getattr(barcode, 'symbol', None)
    if symbol is not None:
        shape = np.asarray(symbol).shape
        if len(shape) >= 2 and shape[0] == shape[1] and shape[0] > 0:
            grid_size = int(shape[0])

    _debug("LOCATE", {'corners': corners.tolist(), 'grid_size': grid_size})
    return {'corners': corners, 'text': barcode.text, 'grid_size': grid_size}


# ============================================================================
# GEOMETRY
# ============================================================================

def normalize_corners(corners):
    """Order corners TL, TR, BR, BL by quadrant around their centroid.

    The localizer reports corners relative to the symbol's own orientation;
    rotated symbols would otherwise be warped upside down or mirrored. If the
    quadrants are ambiguous the given order is kept.
    """
    corners = np.asarray(corners, dtype=np.float64).reshape(4, 2)
    cx, cy = corners.mean(axis=0)
    quadrants = {}
    for x, y in corners:
        quadrants.setdefault((x >= cx, y >= cy), []).append((x, y))
    order = [(False, False), (True, False), (True, True), (False, True)]
    if any(len(quadrants.get(q, [])) != 1 for q in order):
        return corners
    return np.array([quadrants[q][0] for q in order], dtype=np.float64)


def _check_quad(corners):
    if not np.all(np.isfinite(corners)):
        raise GeometryError("corner coordinates are not finite")
    contour = corners.astype(np.float32).reshape(-1, 1, 2)
    area = cv2.contourArea(contour)
    if area < 1.0:
        raise GeometryError(f"degenerate quadrilateral (area {area:.2f})")
    if not cv2.isContourConvex(contour):
        raise GeometryError("corners do not form a convex quadrilateral")


def compute_homography(src, dst):
    """3x3 H mapping dst points onto src points (the inverse warp), with h8 = 1.

    Solves the 8x8 system from the four correspondences
    sx = (h0 dx + h1 dy + h2) / (h6 dx + h7 dy + 1), likewise for sy.
    """
    A = np.zeros((8, 8))
    b = np.zeros(8)
    for i, ((sx, sy), (dx, dy)) in enumerate(zip(src, dst)):
        A[2 * i] = [dx, dy, 1, 0, 0, 0, -dx * sx, -dy * sx]
        A[2 * i + 1] = [0, 0, 0, dx, dy, 1, -dx * sy, -dy * sy]
        b[2 * i], b[2 * i + 1] = sx, sy
    try:
        h = np.linalg.solve(A, b)
    except np.linalg.LinAlgError as e:
        raise GeometryError("perspective transform is not invertible") from e
    if not np.all(np.isfinite(h)):
        raise GeometryError("perspective transform is not invertible")
    return np.append(h, 1.0).reshape(3, 3)


def luminance(image):
    """Per-pixel luminance 0.299R + 0.587G + 0.114B (image in BGR/BGRA or grayscale)."""
    image = np.asarray(image)
    if image.size == 0 or image.ndim not in (2, 3):
        raise GeometryError(f"cannot sample an image of shape {image.shape}")
    if image.ndim == 2:
        return image.astype(np.float32)
    if image.shape[2] < 3:
        return image[..., 0].astype(np.float32)
    b, g, r = (image[..., i].astype(np.float32) for i in range(3))
    return 0.299 * r + 0.587 * g + 0.114 * b


def warp_region(luma, corners, output_size):
    """Rectify the quadrilateral to an output_size square. Out-of-image samples clamp to the border."""
    n = output_size
    dst = np.array([[0, 0], [n - 1, 0], [n - 1, n - 1], [0, n - 1]], dtype=np.float64)
    H = compute_homography(corners, dst)
    warped = cv2.warpPerspective(luma, H, (n, n),
                                 flags=cv2.INTER_NEAREST | cv2.WARP_INVERSE_MAP,
                                 borderMode=cv2.BORDER_REPLICATE)
    return warped, H


# ============================================================================
# THRESHOLD
# ============================================================================

def otsu_threshold(luma):
    """Global black/white cut point maximizing inter-class variance of the luminance histogram.

    When several cut points share the maximum (a perfectly bimodal image),
    the middle of that run is returned. A single-level image gives 128.
    """
    levels = np.clip(np.rint(luma), 0, 255).astype(np.int64).ravel()
    hist = np.bincount(levels, minlength=256).astype(np.float64)
    total = hist.sum()
    w_b = np.cumsum(hist)
    w_f = total - w_b
    sum_b = np.cumsum(hist * np.arange(256))
    valid = (w_b > 0) & (w_f > 0)
    if not valid.any():
        return 128.0

    m_b = np.divide(sum_b, w_b, out=np.zeros(256), where=w_b > 0)
    m_f = np.divide(sum_b[-1] - sum_b, w_f, out=np.zeros(256), where=w_f > 0)
    variance = np.where(valid, w_b * w_f * (m_b - m_f) ** 2, -1.0)
    best = np.flatnonzero(variance == variance.max())
    return float(best[0] + best[-1]) / 2


# ============================================================================
# GRID SIZE
# ============================================================================

def analyze_bullseye(dark):
    """Ring count and module size from the four cardinal rays out of the image center.

    Ring widths after the half-width center module are compared with the first
    full ring; consecutive widths within 2x of it belong to the bullseye.
    """
    n = dark.shape[0]
    center = n // 2
    widths_seen, ring_counts = [], []

    for dx, dy in ((1, 0), (-1, 0), (0, 1), (0, -1)):
        transitions = []
        last = dark[center, center]
        for pos in range(1, n // 3):
            x, y = center + dx * pos, center + dy * pos
            if not (0 <= x < n and 0 <= y < n):
                break
            if dark[y, x] != last:
                transitions.append(pos)
                last = dark[y, x]
                if len(transitions) >= 10:
                    break

        widths = np.diff(transitions)
        if len(widths) < 3:
            continue
        rings = 1
        while rings < len(widths) and 0.5 < widths[rings] / widths[0] < 2.0:
            rings += 1
        widths_seen.extend(widths[:rings].tolist())
        ring_counts.append(rings)

    if not ring_counts:
        return {'ring_count': 4, 'compact': True, 'module_size': n / 50, 'rays': 0}

    module_size = float(np.median(widths_seen))
    compact = float(np.median(ring_counts)) < 5.5
    return {'ring_count': 4 if compact else 7, 'compact': compact,
            'module_size': module_size, 'rays': len(ring_counts),
            'ring_counts': ring_counts}


def find_boundary(dark):
    """First/last dark pixel found scanning lines across the middle 80% from each edge."""
    n = dark.shape[0]
    lines = np.arange(int(n * 0.1), n * 0.9, max(1, n // 20)).astype(int)
    left, right, top, bottom = n, -1, n, -1
    for i in lines:
        cols = np.flatnonzero(dark[i, :])
        if cols.size:
            left, right = min(left, cols[0]), max(right, cols[-1])
        rows = np.flatnonzero(dark[:, i])
        if rows.size:
            top, bottom = min(top, rows[0]), max(bottom, rows[-1])
    if right < 0:
        left, right = 0, n - 1
    if bottom < 0:
        top, bottom = 0, n - 1
    return {'left': int(left), 'right': int(right), 'top': int(top), 'bottom': int(bottom)}


def score_bullseye(dark, size, compact):
    """How many cardinal samples of the bullseye match the alternating pattern for a grid size."""
    n = dark.shape[0]
    module = n / size
    center = size // 2
    score = 0
    for dist in range((4 if compact else 6) + 1):
        expected = dist % 2 == 0
        for dr, dc in ((0, 1), (0, -1), (1, 0), (-1, 0)):
            row, col = center + dr * dist, center + dc * dist
            x = min(n - 1, int((col + 0.5) * module))
            y = min(n - 1, int((row + 0.5) * module))
            if bool(dark[y, x]) == expected:
                score += 1
    return score


def infer_grid_size(dark):
    """Estimate the grid size of a rectified symbol. Fallback only: lossy by nature."""
    bullseye = analyze_bullseye(dark)
    boundary = find_boundary(dark)
    module = bullseye['module_size']
    span = ((boundary['right'] - boundary['left'] + 1) +
            (boundary['bottom'] - boundary['top'] + 1)) / 2
    estimated = int(round(span / module))

    family = COMPACT_SIZES if bullseye['compact'] else FULL_SIZES
    snapped = min(family, key=lambda s: abs(s - estimated))
    i = family.index(snapped)

    best, best_score, scores = snapped, score_bullseye(dark, snapped, bullseye['compact']), []
    scores.append({'size': snapped, 'score': best_score})
    for candidate in family[max(0, i - 1):i] + family[i + 1:i + 2]:
        score = score_bullseye(dark, candidate, bullseye['compact'])
        scores.append({'size': candidate, 'score': score})
        if score > best_score:
            best, best_score = candidate, score

    _debug("SIZE - Bullseye", bullseye)
    _debug("SIZE - Boundary", boundary)
    _debug("SIZE - Estimate", {'span': span, 'estimated': estimated, 'snapped': snapped,
                               'scores': scores, 'chosen': best})
    return best, {'bullseye': bullseye, 'boundary': boundary, 'estimated': estimated,
                  'initial_size': snapped, 'candidate_scores': scores}


def check_grid_size(size, min_size=None, max_size=None):
    min_size = MIN_GRID_SIZE if min_size is None else min_size
    max_size = MAX_GRID_SIZE if max_size is None else max_size
    if size not in VALID_SIZES:
        raise UnrecognizedGridSize(f"{size}x{size} is not a valid Aztec size")
    if not min_size <= size <= max_size:
        raise UnrecognizedGridSize(f"grid size {size} outside accepted range {min_size}-{max_size}")


# ============================================================================
# SAMPLING
# ============================================================================

def sample_grid(luma, size, threshold, edge_margin=0.5):
    """Sample a size x size module grid from a rectified luminance plane.

    Each module is the mean luminance of a square of radius ~1/4 module around
    its center (coordinates clamp to the image), dark when <= threshold. First
    and last rows/columns are sampled slightly inward.
    """
    n = luma.shape[0]
    module = n / size
    r = max(1, int(module // 4))
    margin = np.zeros(size)
    margin[0], margin[-1] = edge_margin, -edge_margin
    centers = np.clip(np.floor((np.arange(size) + 0.5) * module + margin).astype(int), 0, n - 1)

    padded = cv2.copyMakeBorder(luma.astype(np.float32), r, r, r, r, cv2.BORDER_REPLICATE)
    integral = cv2.integral(padded, sdepth=cv2.CV_64F)
    y0, x0 = centers[:, None], centers[None, :]
    y1, x1 = y0 + 2 * r + 1, x0 + 2 * r + 1
    sums = integral[y1, x1] - integral[y0, x1] - integral[y1, x0] + integral[y0, x0]
    means = sums / (2 * r + 1) ** 2
    return means <= threshold, means


@dataclass(frozen=True)
class GridExtraction:
    grid: np.ndarray
    size: int
    threshold: float
    warped: np.ndarray = field(repr=False)
    homography: np.ndarray = field(repr=False)
    debug: dict = field(default_factory=dict, repr=False)

    def to_dict(self):
        return {'size': self.size, 'threshold': self.threshold,
                'grid': self.grid.astype(int).tolist(), 'debug': _jsonable(self.debug)}


def _jsonable(value):
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value


def extract_grid(image, corners, output_size=None, grid_size=None, min_size=None, max_size=None):
    """Rectify the symbol region and sample its module grid.

    ``grid_size`` is authoritative when given; otherwise it is inferred from
    the bullseye and the symbol boundary.
    """
    output_size = OUTPUT_SIZE if output_size is None else int(output_size)
    if output_size < 1:
        raise GeometryError(f"invalid output size {output_size}")
    luma = luminance(image)

    original = np.asarray(corners, dtype=np.float64)
    if original.size != 8:
        raise GeometryError(f"expected 4 corners, got array of shape {original.shape}")
    original = original.reshape(4, 2)
    normalized = normalize_corners(original)
    _debug("STAGE 1 - Corners", {'original': original.tolist(), 'normalized': normalized.tolist()})
    _check_quad(normalized)

    warped, H = warp_region(luma, normalized, output_size)
    threshold = otsu_threshold(warped)
    dark = warped <= threshold
    _debug("STAGE 2 - Warp", {'output_size': output_size, 'threshold': threshold})

    if grid_size is not None:
        size, info = int(grid_size), {'source': 'hint', 'initial_size': int(grid_size)}
    else:
        size, info = infer_grid_size(dark)
        info['source'] = 'inferred'
    check_grid_size(size, min_size, max_size)

    grid, means = sample_grid(warped, size, threshold)
    grid.flags.writeable = False

    center = size // 2
    radius = 6 if size > 27 else 4
    bullseye = [{'distance': d, 'expected_dark': d % 2 == 0,
                 'samples': [bool(grid[center, center + d]), bool(grid[center, center - d]),
                             bool(grid[center + d, center]), bool(grid[center - d, center])]}
                for d in range(min(radius, center) + 1)]
    debug = dict(info, original_corners=original, normalized_corners=normalized,
                 centroid=original.mean(axis=0), final_size=size, bullseye_samples=bullseye)
    _debug("STAGE 3 - Grid", {'size': size, 'source': info['source'],
                              'sample_radius': max(1, int(output_size / size // 4))})

    return GridExtraction(grid, size, threshold, warped, H, debug)


# ============================================================================
# PIPELINE
# ============================================================================

@dataclass(frozen=True)
class AztecDecode:
    corners: np.ndarray
    extraction: GridExtraction
    structure: AztecStructure
    symbols: Tuple[Symbol, ...]
    localizer_text: Optional[str] = None

    @property
    def text(self):
        return decoded_text(self.symbols)

    def find_symbol_at_bit(self, bit_offset):
        return find_symbol_at_bit(bit_offset, self.symbols)

    def modules_for_bit_range(self, start_bit, end_bit):
        return modules_for_bit_range(start_bit, end_bit, self.structure.data_bit_positions)

    def modules_for_symbol(self, symbol):
        return self.modules_for_bit_range(symbol.start_bit, symbol.end_bit)

    def to_dict(self):
        return {
            'corners': np.asarray(self.corners).tolist(),
            'localizer_text': self.localizer_text,
            'text': self.text,
            'extraction': self.extraction.to_dict(),
            'structure': self.structure.to_dict(),
            'symbols': [dict(s.to_dict(), description=describe_symbol(s)) for s in self.symbols],
        }


def decode_image(image, corners=None, grid_size=None, output_size=None, min_size=None, max_size=None):
    """Run the full pipeline on a loaded image.

    Without ``corners`` the symbol is located with zxing-cpp, which also
    supplies the grid size when it reports one.
    """
    localizer_text = None
    if corners is None:
        print("Locating Aztec symbol...")
        located = locate_aztec(image)
        corners, localizer_text = located['corners'], located['text']
        if grid_size is None:
            grid_size = located['grid_size']

    print("Sampling grid...")
    extraction = extract_grid(image, corners, output_size=output_size, grid_size=grid_size,
                              min_size=min_size, max_size=max_size)
    print(f"  Grid: {extraction.size}x{extraction.size} ({extraction.debug['source']}), "
          f"threshold {extraction.threshold:.1f}")

    print("Analyzing structure...")
    structure = analyze_grid(extraction.grid, extraction.size)
    g = structure.geometry
    print(f"  {'Compact' if g.is_compact else 'Full-range'}, {g.layers} layers, "
          f"{g.data_codewords} data + {g.ecc_codewords} ECC codewords ({g.codeword_bits}-bit)")
    if not structure.mode_message.valid:
        print("  Mode message unreadable: data/ECC split estimated at 75%")
    elif structure.mode_message.layers != g.layers:
        _debug("STRUCTURE - Layer mismatch",
               {'mode_message': structure.mode_message.layers, 'grid': g.layers})

    print("Decoding symbols...")
    symbols = tuple(decode_codewords(structure.codeword_values, g.codeword_bits, g.data_codewords))
    result = AztecDecode(np.asarray(corners), extraction, structure, symbols, localizer_text)
    _debug("DECODE", {'symbols': len(symbols), 'text': result.text})

    if DEBUG_DIR:
        from aztec_debug import save_debug_all
        save_debug_all(DEBUG_DIR, image, result)
    return result


def decode_aztec(image_path, **kwargs):
    """Decode the Aztec symbol in an image file."""
    print("Loading image...")
    image = cv2.imread(image_path)
    if image is None:
        raise LocateError(f"Cannot load {image_path}")
    return decode_image(image, **kwargs)


def _flag_value(flags, name):
    for f in flags:
        if f.startswith(f'--{name}='):
            return int(f.split('=', 1)[1])
    return None


def main(argv=None):
    global DEBUG_DIR
    argv = sys.argv[1:] if argv is None else argv
    args = [a for a in argv if not a.startswith('--')]
    flags = [a for a in argv if a.startswith('--')]
    if not args:
        print(__doc__.strip())
        return 2
    path = args[0]

    if '--debug' in flags:
        base = os.path.splitext(os.path.basename(path))[0]
        DEBUG_DIR = os.path.join(os.path.dirname(path) or '.', f"{base}_debug")
        os.makedirs(DEBUG_DIR, exist_ok=True)
        print(f"Debug output -> {DEBUG_DIR}/")

    try:
        result = decode_aztec(path, grid_size=_flag_value(flags, 'size'),
                              output_size=_flag_value(flags, 'output-size'))
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    for s in result.symbols:
        print(f"  #{s.index:<4} [{s.start_bit:>5}, {s.end_bit:>5})  {describe_symbol(s)}")
    print(result.text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
