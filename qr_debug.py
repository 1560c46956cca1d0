"""QR decode debug visualization - saves intermediate results to disk."""

import logging
import os

import cv2
import numpy as np

import qr_tables as T

logger = logging.getLogger(__name__)


def _save_img(debug_dir, name, data, scale=None):
    """Save image to debug_dir."""
    path = os.path.join(debug_dir, name)
    if data.dtype == bool:
        s = scale or 1
        img = np.where(data, 0, 255).astype(np.uint8)
        img = cv2.resize(img, (img.shape[1]*s, img.shape[0]*s), interpolation=cv2.INTER_NEAREST)
        cv2.imwrite(path, img)
    else:
        cv2.imwrite(path, data)


def module_type_map(version):
    """Classify every module into its functional type. Returns size x size array.
    0=data, 1=finder, 2=separator, 3=timing, 4=alignment, 5=format_info, 6=version_info, 7=dark_module
    """
    size = version.width
    t = np.where(T.function_map(version), 2, 0).astype(np.uint8)

    for (r0, c0) in T.finder_origins(version):
        t[r0:r0+7, c0:c0+7] = 1

    line = 0 if version.micro else 6
    idx = np.arange(8, size if version.micro else size - 8)
    t[line, idx] = 3
    t[idx, line] = 3

    for (ar, ac) in T.alignment_centers(version):
        t[ar-2:ar+3, ac-2:ac+3] = 4

    for copy in T.format_positions(version):
        for r, c in copy:
            t[r, c] = 5

    if not version.micro:
        if version.number >= 7:
            for copy in T.version_positions(version):
                for r, c in copy:
                    t[r, c] = 6
        t[size-8, 8] = 7

    return t


def _draw_colored_matrix(matrix, version):
    """Draw QR matrix with different colors for each functional region."""
    size = matrix.shape[0]
    scale = 20
    tmap = module_type_map(version)

    COLORS = {
        1: (0, 0, 200),     # finder: red
        2: (0, 140, 255),   # separator: orange
        3: (0, 200, 200),   # timing: yellow
        4: (200, 100, 0),   # alignment: blue
        5: (200, 0, 200),   # format info: magenta
        6: (200, 200, 0),   # version info: cyan
        7: (100, 100, 100), # dark module: gray
    }

    vis = np.zeros((size * scale, size * scale, 3), dtype=np.uint8)
    for r in range(size):
        for c in range(size):
            y0, y1 = r * scale, (r + 1) * scale
            x0, x1 = c * scale, (c + 1) * scale
            mt = tmap[r, c]
            if mt == 0:
                vis[y0:y1, x0:x1] = 0 if matrix[r, c] else 255
            else:
                color = COLORS.get(mt, (128, 128, 128))
                if matrix[r, c]:
                    vis[y0:y1, x0:x1] = color
                else:
                    vis[y0:y1, x0:x1] = tuple(min(255, int(v * 0.4 + 255 * 0.6)) for v in color)
            vis[y0, x0:x1] = (60, 60, 60)
            vis[y0:y1, x0] = (60, 60, 60)

    # Zigzag traversal path through data modules
    half = scale // 2
    path = T.placement_order(version)
    for i in range(len(path) - 1):
        (r1, c1), (r2, c2) = path[i], path[i + 1]
        t = i / max(len(path) - 1, 1)
        color = (0, int(200 * (1 - t)), int(200 * t))
        cv2.line(vis, (int(c1) * scale + half, int(r1) * scale + half),
                 (int(c2) * scale + half, int(r2) * scale + half), color, 2, cv2.LINE_AA)

    if len(path):
        sr, sc = path[0]
        cv2.circle(vis, (int(sc) * scale + half, int(sr) * scale + half), 4, (0, 255, 0), -1)
        er, ec = path[-1]
        cv2.circle(vis, (int(ec) * scale + half, int(er) * scale + half), 4, (0, 0, 255), -1)

    return vis


def _grid_info(i, result):
    g = result.grid
    lines = [f"Grid {i}", f"Version: {g.version}", f"Size: {g.version.width}x{g.version.width}",
             f"EC level: {g.ec_level.name if g.ec_level is not None else '?'}",
             f"Mask: {g.mask if g.mask is not None else '?'}",
             "Corners: " + ", ".join(f"({x:.1f}, {y:.1f})" for x, y in g.corners)]
    if result.ok:
        lines.append("Segments: " + ", ".join(f"{s.mode.value}[{len(s)}]" for s in result.segments))
        lines.append(f"\nResult:\n{result.data!r}")
    else:
        lines.append(f"\nError: {result.error.kind.value}: {result.error} {result.error.details}")
    return "\n".join(lines) + "\n"


def save_debug_all(debug_dir, image, binary, patterns, results):
    """Save all intermediate results to debug_dir."""
    if not debug_dir:
        return
    os.makedirs(debug_dir, exist_ok=True)

    # 1: detected finder patterns + symbol boundaries
    vis = image.copy() if len(image.shape) == 3 else cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    for p in patterns:
        cx, cy = int(p['center'][0]), int(p['center'][1])
        r = max(3, int(3.5 * p['module']))
        cv2.rectangle(vis, (cx - r, cy - r), (cx + r, cy + r), (0, 255, 0), 2)
        cv2.circle(vis, (cx, cy), 5, (0, 0, 255), -1)
        cv2.putText(vis, str(p['index']), (cx+8, cy-8), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 0, 255), 2)
    labels = ['TL', 'TR', 'BR', 'BL']
    for n, res in enumerate(results):
        pts = res.grid.corners.astype(int)
        color = (0, 255, 255) if res.ok else (0, 0, 255)
        for i in range(4):
            cv2.line(vis, tuple(map(int, pts[i])), tuple(map(int, pts[(i+1)%4])), color, 2)
            cv2.putText(vis, f"{n}:{labels[i]}", (int(pts[i][0])+10, int(pts[i][1])-10),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1)
    _save_img(debug_dir, "1_detected.png", vis)

    # 2: binarized image
    _save_img(debug_dir, "2_binary.png", binary)

    # 3: per grid sampled matrix with color-coded function regions
    summary = []
    for n, res in enumerate(results):
        version = res.grid.version
        _save_img(debug_dir, f"3_grid{n}_matrix.png", _draw_colored_matrix(res.grid.modules, version))
        info = _grid_info(n, res)
        with open(os.path.join(debug_dir, f"3_grid{n}_info.txt"), 'w') as f:
            f.write(info)
        summary.append(info)

    with open(os.path.join(debug_dir, "4_summary.txt"), 'w') as f:
        f.write(f"Finder patterns: {len(patterns)}\nGrids: {len(results)}\n\n" + "\n".join(summary))
    logger.debug("debug output written to %s", debug_dir)
