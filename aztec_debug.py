"""Aztec decode debug visualization - saves intermediate results to disk."""

import cv2
import numpy as np
import os

from aztec_structure import MODULE_NAMES, codeword_outline
from aztec_text import describe_symbol, format_binary, format_hex

# BGR, by module type
COLORS = {
    'finder': (0, 107, 255),      # orange
    'orientation': (0, 0, 255),   # red
    'mode': (0, 255, 0),          # green
    'data': (0, 204, 255),        # amber
    'ecc': (255, 0, 180),         # violet
    'alignment': (255, 200, 0),   # cyan
    'padding': (102, 102, 102),   # gray
}


def _save_img(debug_dir, name, data):
    """Save image to debug_dir."""
    cv2.imwrite(os.path.join(debug_dir, name), data)


def _draw_colored_matrix(structure, scale=20):
    """Draw the sampled grid colored by module type, with codeword outlines and the reading path."""
    size = structure.geometry.size
    vis = np.zeros((size * scale, size * scale, 3), dtype=np.uint8)
    for row in structure.modules:
        for m in row:
            y0, y1 = m.y * scale, (m.y + 1) * scale
            x0, x1 = m.x * scale, (m.x + 1) * scale
            color = COLORS[m.type]
            if m.dark:
                vis[y0:y1, x0:x1] = color
            else:
                vis[y0:y1, x0:x1] = tuple(min(255, int(v * 0.4 + 255 * 0.6)) for v in color)
            vis[y0, x0:x1] = (60, 60, 60)
            vis[y0:y1, x0] = (60, 60, 60)

    for modules in structure.codeword_modules.values():
        outline = codeword_outline(modules)
        if outline is None:
            continue
        for (x1, y1), (x2, y2) in outline[0]:
            cv2.line(vis, (x1 * scale, y1 * scale), (x2 * scale, y2 * scale), (30, 30, 30), 2)

    # Spiral reading order, outermost layer first
    half = scale // 2
    path = structure.bit_positions
    for i in range(len(path) - 1):
        (x1, y1), (x2, y2) = path[i], path[i + 1]
        t = i / max(len(path) - 1, 1)
        color = (0, int(200 * (1 - t)), int(200 * t))
        cv2.line(vis, (x1 * scale + half, y1 * scale + half), (x2 * scale + half, y2 * scale + half),
                 color, 1, cv2.LINE_AA)

    if path:
        sx, sy = path[0]
        cv2.circle(vis, (sx * scale + half, sy * scale + half), 4, (0, 255, 0), -1)
        ex, ey = path[-1]
        cv2.circle(vis, (ex * scale + half, ey * scale + half), 4, (0, 0, 255), -1)

    return vis


def _info_text(result):
    g = result.structure.geometry
    mm = result.structure.mode_message
    counts = {}
    for row in result.structure.modules:
        for m in row:
            counts[m.type] = counts.get(m.type, 0) + 1

    lines = [
        f"Type: {'Compact' if g.is_compact else 'Full-range'}",
        f"Size: {g.size}x{g.size} ({result.extraction.debug.get('source')})",
        f"Layers: {g.layers}",
        f"Codeword size: {g.codeword_bits} bits",
        f"Codewords: {g.data_codewords} data + {g.ecc_codewords} ECC = {g.total_codewords}",
        f"Padding bits: {g.padding_bits}",
        f"Threshold: {result.extraction.threshold:.1f}",
        f"Mode message: {'valid' if mm.valid else 'invalid (data split estimated)'}, "
        f"layers={mm.layers}, data codewords={mm.data_codewords}",
        "",
        "Modules:",
    ]
    lines += [f"  {MODULE_NAMES[t]}: {counts.get(t, 0)}" for t in MODULE_NAMES]

    lines += ["", "Codewords:"]
    for i, value in enumerate(result.structure.codeword_values):
        kind = 'data' if i < g.data_codewords else 'ecc'
        lines.append(f"  {i:4d} {kind:4s} {format_hex(value, g.codeword_bits)} "
                     f"{format_binary(value, g.codeword_bits)}")

    lines += ["", "Symbols:"]
    for s in result.symbols:
        lines.append(f"  #{s.index:<4} [{s.start_bit:>5}, {s.end_bit:>5}) "
                     f"{format_binary(s.raw_value, s.bit_size):>12}  {describe_symbol(s)}")

    lines += ["", f"Localizer text:\n{result.localizer_text}", f"\nResult:\n{result.text}"]
    return '\n'.join(lines) + '\n'


def save_debug_all(debug_dir, image, result):
    """Save all intermediate results to debug_dir."""
    if not debug_dir:
        return
    os.makedirs(debug_dir, exist_ok=True)

    # 1: symbol boundary on the input image
    vis = image.copy() if len(image.shape) == 3 else cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if vis.shape[2] == 4:
        vis = cv2.cvtColor(vis, cv2.COLOR_BGRA2BGR)
    pts = [(int(x), int(y)) for x, y in result.extraction.debug['normalized_corners']]
    for i in range(4):
        cv2.line(vis, pts[i], pts[(i + 1) % 4], (0, 255, 255), 2)
    for label, (px, py) in zip(['TL', 'TR', 'BR', 'BL'], pts):
        cv2.circle(vis, (px, py), 8, (0, 255, 255), -1)
        cv2.putText(vis, label, (px + 10, py - 10), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 255, 255), 2)
    _save_img(debug_dir, "1_detected.png", vis)

    # 2: rectified luminance + binarized side by side
    warped = np.clip(result.extraction.warped, 0, 255).astype(np.uint8)
    binary = np.where(warped <= result.extraction.threshold, 0, 255).astype(np.uint8)
    _save_img(debug_dir, "2_warped.png", np.hstack([warped, binary]))

    # 3: sampled grid with module classification
    _save_img(debug_dir, "3_matrix.png", _draw_colored_matrix(result.structure))

    # 4: geometry, codewords, symbols
    with open(os.path.join(debug_dir, "4_info.txt"), 'w', encoding='utf-8') as f:
        f.write(_info_text(result))
