"""
QR Code Detection
Locates normal and Micro QR symbols in a grayscale raster and samples their modules.
"""

import logging
from itertools import combinations

import cv2
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

import qr_tables as T
from qr_types import DetectedGrid, QRError, Version

logger = logging.getLogger(__name__)

MIN_PATTERN_SCORE = 0.8
ALIGNMENT_MATCH = 0.7
MICRO_FINDER = np.float32([[0, 0], [7, 0], [7, 7], [0, 7]])


# ============================================================================
# BINARIZATION
# ============================================================================

def to_gray(image):
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def binarize(image):
    """Dark-module mask (True = dark).

    Threshold is the mean of a local box average and the global mid-level
    between the 5th and 95th percentiles, so uniform regions stay stable.
    """
    gray = to_gray(image).astype(np.float32)
    h, w = gray.shape
    win = max(3, (min(h, w) // 8) | 1)
    local = cv2.blur(gray, (win, win))
    lo, hi = np.percentile(gray, (5, 95))
    return gray < (local + (lo + hi) / 2) / 2


# ============================================================================
# FINDER PATTERNS
# ============================================================================

def _ratio_ok(counts):
    """Run lengths in 1:1:3:1:1 proportion."""
    total = sum(counts)
    if total < 7:
        return False
    module = total / 7
    tol = module / 2
    return (abs(counts[0] - module) < tol and abs(counts[1] - module) < tol and
            abs(counts[2] - 3 * module) < 3 * tol and
            abs(counts[3] - module) < tol and abs(counts[4] - module) < tol)


def _cross_check(line, pos, expected_total):
    """Measure the 1:1:3:1:1 pattern through `pos` along a 1-D line.

    Returns (center, total) or None.
    """
    n = len(line)
    if not 0 <= pos < n or not line[pos]:
        return None
    counts = [0] * 5
    i = pos
    while i >= 0 and line[i]:
        counts[2] += 1; i -= 1
    while i >= 0 and not line[i]:
        counts[1] += 1; i -= 1
    while i >= 0 and line[i]:
        counts[0] += 1; i -= 1
    i = pos + 1
    while i < n and line[i]:
        counts[2] += 1; i += 1
    while i < n and not line[i]:
        counts[3] += 1; i += 1
    while i < n and line[i]:
        counts[4] += 1; i += 1
    if 0 in counts:
        return None
    total = sum(counts)
    if 2 * abs(total - expected_total) >= max(total, expected_total) or not _ratio_ok(counts):
        return None
    return i - counts[4] - counts[3] - counts[2] / 2, total


def _row_candidates(row):
    """(center, total) of every dark-light-dark-light-dark run window matching 1:1:3:1:1."""
    edges = np.flatnonzero(row[1:] != row[:-1]) + 1
    starts = np.concatenate(([0], edges))
    lengths = np.diff(np.concatenate((starts, [len(row)])))
    if len(lengths) < 5:
        return []
    win = sliding_window_view(lengths, 5)
    total = win.sum(axis=1)
    module = total / 7
    tol = module / 2
    ok = (row[starts[:len(win)]] & (total >= 7) &
          (np.abs(win[:, 0] - module) < tol) & (np.abs(win[:, 1] - module) < tol) &
          (np.abs(win[:, 2] - 3 * module) < 3 * tol) &
          (np.abs(win[:, 3] - module) < tol) & (np.abs(win[:, 4] - module) < tol))
    out = []
    for k in np.flatnonzero(ok):
        center = starts[k] + win[k, 0] + win[k, 1] + win[k, 2] / 2
        out.append((center, int(total[k])))
    return out


def find_finder_patterns(binary):
    """
    Find finder patterns by scanning rows for 1:1:3:1:1 runs.

    Each row hit is cross-checked vertically and again horizontally; hits
    are clustered and a cluster confirmed by two or more rows becomes a
    pattern dict with 'center' (x, y), 'module' size and 'count'.
    """
    hits = []
    for y in range(binary.shape[0]):
        for cx, total in _row_candidates(binary[y]):
            v = _cross_check(binary[:, int(cx)], y, total)
            if v is None:
                continue
            cy, vtotal = v
            h = _cross_check(binary[int(cy)], int(cx), total)
            if h is None:
                continue
            cx, htotal = h
            hits.append((cx, cy, (htotal + vtotal) / 14))

    clusters = []
    for x, y, m in hits:
        for c in clusters:
            if np.hypot(c['sx'] / c['count'] - x, c['sy'] / c['count'] - y) < c['sm'] / c['count']:
                c['sx'] += x; c['sy'] += y; c['sm'] += m; c['count'] += 1
                break
        else:
            clusters.append({'sx': x, 'sy': y, 'sm': m, 'count': 1})

    patterns = []
    for c in clusters:
        if c['count'] < 2:
            continue
        patterns.append({
            'index': len(patterns),
            'center': (c['sx'] / c['count'], c['sy'] / c['count']),
            'module': c['sm'] / c['count'],
            'count': c['count'],
        })
    logger.debug("found %d finder patterns", len(patterns))
    return patterns


def identify_corners(patterns):
    """Identify TL, TR, BL corners from 3 finder patterns."""
    centers = [p['center'] for p in patterns]
    max_d, diag = 0, (0, 1)
    for i in range(3):
        for j in range(i+1, 3):
            d = (centers[i][0]-centers[j][0])**2 + (centers[i][1]-centers[j][1])**2
            if d > max_d: max_d, diag = d, (i, j)

    tl_idx = 3 - diag[0] - diag[1]
    p1, p2 = patterns[diag[0]], patterns[diag[1]]
    c_tl = patterns[tl_idx]['center']
    v1 = (p1['center'][0] - c_tl[0], p1['center'][1] - c_tl[1])
    v2 = (p2['center'][0] - c_tl[0], p2['center'][1] - c_tl[1])
    if v1[0] * v2[1] - v1[1] * v2[0] > 0:
        return patterns[tl_idx], p1, p2
    return patterns[tl_idx], p2, p1


def group_finder_patterns(patterns):
    """
    Group finder patterns that could belong to the same normal symbol.

    Returns (quality, (tl, tr, bl), version estimate) sorted best first.
    """
    groups = []
    for combo in combinations(patterns, 3):
        tl, tr, bl = identify_corners(list(combo))
        c = np.array(tl['center'])
        v1, v2 = np.array(tr['center']) - c, np.array(bl['center']) - c
        len1, len2 = np.linalg.norm(v1), np.linalg.norm(v2)
        if len1 == 0 or len2 == 0:
            continue
        angle = np.degrees(np.arccos(np.clip(np.dot(v1, v2) / (len1 * len2), -1, 1)))
        ratio = max(len1, len2) / min(len1, len2)
        sizes = [p['module'] for p in combo]
        size_ratio = max(sizes) / min(sizes)
        if not (60 < angle < 120 and ratio < 1.5 and size_ratio < 2):
            continue
        module = np.mean(sizes)
        version = int(round(((len1 + len2) / 2 / module - 10) / 4))
        if not 1 <= version <= 40:
            continue
        quality = abs(angle - 90) / 90 + (ratio - 1) + (size_ratio - 1)
        groups.append((quality, (tl, tr, bl), version))
    groups.sort(key=lambda g: g[0])
    return groups


# ============================================================================
# PERSPECTIVE + SAMPLING
# ============================================================================

def sample_grid(binary, H, size):
    """Read size x size module centers through module->image transform H."""
    r, c = np.indices((size, size))
    pts = np.stack([c + 0.5, r + 0.5], axis=-1).reshape(-1, 1, 2).astype(np.float32)
    img = cv2.perspectiveTransform(pts, H).reshape(size, size, 2)
    x = np.clip(np.floor(img[..., 0]).astype(int), 0, binary.shape[1] - 1)
    y = np.clip(np.floor(img[..., 1]).astype(int), 0, binary.shape[0] - 1)
    return binary[y, x]


def grid_corners(H, size):
    """Image-space TL, TR, BR, BL of the symbol."""
    outer = np.array([[[0, 0]], [[size, 0]], [[size, size]], [[0, size]]], dtype=np.float32)
    return cv2.perspectiveTransform(outer, H).reshape(4, 2)


def find_alignment(binary, predicted, module):
    """Locate the bottom-right alignment pattern near `predicted` (x, y)."""
    k = max(1, int(round(module)))
    template = np.kron(T.ALIGNMENT, np.ones((k, k))).astype(np.float32)
    reach = int(4 * module) + 5 * k
    x0, y0 = int(predicted[0]) - reach, int(predicted[1]) - reach
    x1, y1 = int(predicted[0]) + reach, int(predicted[1]) + reach
    x0, y0 = max(x0, 0), max(y0, 0)
    x1, y1 = min(x1, binary.shape[1]), min(y1, binary.shape[0])
    region = binary[y0:y1, x0:x1].astype(np.float32)
    if region.shape[0] < template.shape[0] or region.shape[1] < template.shape[1]:
        return None
    res = cv2.matchTemplate(region, template, cv2.TM_CCOEFF_NORMED)
    best = res.max()
    if not best >= ALIGNMENT_MATCH:
        return None
    ys, xs = np.nonzero(res >= best - 1e-6)
    cx = x0 + xs + template.shape[1] / 2
    cy = y0 + ys + template.shape[0] / 2
    i = int(np.argmin(np.hypot(cx - predicted[0], cy - predicted[1])))
    return cx[i], cy[i]


def _homography(binary, tl, tr, bl, version):
    side = version.width
    a, b, c = (np.array(p['center'], dtype=np.float64) for p in (tl, tr, bl))
    src = [(3.5, 3.5), (side - 3.5, 3.5), (3.5, side - 3.5)]
    dst = [a, b, c]

    def affine(u, v):
        return a + (b - a) * (u - 3.5) / (side - 7) + (c - a) * (v - 3.5) / (side - 7)

    found = None
    if version.number >= 2:
        module = np.mean([tl['module'], tr['module'], bl['module']])
        found = find_alignment(binary, affine(side - 6.5, side - 6.5), module)
    if found is not None:
        src.append((side - 6.5, side - 6.5))
        dst.append(found)
    else:
        src.append((side - 3.5, side - 3.5))
        dst.append(affine(side - 3.5, side - 3.5))
    return cv2.getPerspectiveTransform(np.array(src, dtype=np.float32), np.array(dst, dtype=np.float32))


def pattern_scores(modules, version):
    """Fraction of finder modules and of timing modules that read correctly."""
    size = version.width
    finder = np.mean([np.mean(modules[r:r + 7, c:c + 7] == T.FINDER) for r, c in T.finder_origins(version)])
    if version.micro:
        idx = np.arange(8, size)
        timing = np.concatenate([modules[0, idx], modules[idx, 0]])
    else:
        idx = np.arange(8, size - 8)
        timing = np.concatenate([modules[6, idx], modules[idx, 6]])
    expected = np.concatenate([idx % 2 == 0, idx % 2 == 0])
    return float(finder), float(np.mean(timing == expected))


def locate_normal(binary, tl, tr, bl, estimate):
    """Best validated normal grid for a finder triple, or None."""
    best = None
    for n in sorted(range(estimate - 2, estimate + 3), key=lambda n: abs(n - estimate)):
        if not 1 <= n <= 40:
            continue
        version = Version(n)
        H = _homography(binary, tl, tr, bl, version)
        modules = sample_grid(binary, H, version.width)
        finder, timing = pattern_scores(modules, version)
        if finder < MIN_PATTERN_SCORE or timing < MIN_PATTERN_SCORE:
            continue
        if best is None or finder + timing > best[0]:
            best = (finder + timing, version, H, modules)
    if best is None:
        return None

    _, version, H, modules = best
    if version.number >= 7:
        words = [sum(int(modules[r, c]) << i for i, (r, c) in enumerate(copy))
                 for copy in T.version_positions(version)]
        try:
            n = T.decode_version(words)
        except QRError:
            n = version.number
        if n != version.number:
            logger.debug("version info says %d, resampling (estimate %d)", n, version.number)
            version = Version(n)
            H = _homography(binary, tl, tr, bl, version)
            modules = sample_grid(binary, H, version.width)
            if min(pattern_scores(modules, version)) < MIN_PATTERN_SCORE:
                return None
    logger.debug("normal grid version %s at %s", version, tuple(int(v) for v in tl['center']))
    return DetectedGrid(version, modules, grid_corners(H, version.width))


def _ring_points(labels, binary, pattern):
    """Pixels of the finder's outer dark ring, walking right from the center."""
    x, y = int(pattern['center'][0]), int(pattern['center'][1])
    row = binary[y]
    i = x
    for want in (True, False):
        while 0 <= i < len(row) and row[i] == want:
            i += 1
    if not 0 <= i < len(row) or not row[i]:
        return None
    ys, xs = np.nonzero(labels == labels[y, i])
    return np.stack([xs, ys], axis=1).astype(np.float32)


def _ring_contour(ring):
    """Outer boundary pixels of the ring, as pixel centers."""
    xs, ys = ring[:, 0].astype(int), ring[:, 1].astype(int)
    x0, y0 = xs.min() - 1, ys.min() - 1
    mask = np.zeros((ys.max() - y0 + 2, xs.max() - x0 + 2), np.uint8)
    mask[ys - y0, xs - x0] = 1
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
    return max(contours, key=len).reshape(-1, 2) + (x0 + 0.5, y0 + 0.5)


def _intersect(p1, d1, p2, d2):
    m = np.column_stack([d1, -d2])
    if abs(np.linalg.det(m)) < 1e-6:
        return None
    return p1 + np.linalg.solve(m, p2 - p1)[0] * d1


def finder_quad(ring):
    """
    Outer corners of a finder ring, clockwise in image coordinates, or None.

    approxPolyDP on the convex hull gives rough corners. Each side is then
    refitted through the boundary pixels between them and pushed out half a
    pixel, so the corners follow skew and uneven scaling.
    """
    contour = _ring_contour(ring)
    hull = cv2.convexHull(contour.astype(np.float32))
    rough = cv2.approxPolyDP(hull, 0.04 * cv2.arcLength(hull, True), True).reshape(-1, 2)
    if len(rough) != 4:
        box = cv2.boxPoints(cv2.minAreaRect(hull))
        pts = hull.reshape(-1, 2)
        rough = np.array([pts[np.argmin(np.hypot(*(pts - b).T))] for b in box])
    center = rough.mean(axis=0)

    lines = []
    for a, b in zip(rough, np.roll(rough, -1, axis=0)):
        length = np.linalg.norm(b - a)
        if length < 2:
            return None
        e = (b - a) / length
        rel = contour - a
        along, across = rel @ e, np.abs(rel @ np.array([-e[1], e[0]]))
        near = contour[(along > 0.15 * length) & (along < 0.85 * length) & (across < max(2.0, 0.1 * length))]
        p = a
        if len(near) >= 2:
            vx, vy, px, py = cv2.fitLine(near.astype(np.float32), cv2.DIST_L2, 0, 0.01, 0.01).ravel()
            p, e = np.array([px, py]), np.array([vx, vy])
        normal = np.array([-e[1], e[0]])
        if np.dot(normal, p - center) < 0:
            normal = -normal
        lines.append((p + 0.5 * normal, e))

    corners = []
    for k in range(4):
        corner = _intersect(*lines[k - 1], *lines[k])
        if corner is None:
            return None
        corners.append(corner)
    quad = np.array(corners, dtype=np.float32)
    x, y = quad[:, 0], quad[:, 1]
    if np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y) < 0:
        quad = quad[::-1].copy()
    return quad


def _timing_end(binary, H, size, along_row):
    """
    Image point where a Micro timing pattern meets the quiet zone, or None.

    Walks the centerline of row 0 (or column 0) outward from the first timing
    module and stops at the first light stretch longer than 1.5 modules.
    """
    step = 0.05
    t = np.arange(8.5, size + 3, step)
    half = np.full_like(t, 0.5)
    pts = np.stack([t, half] if along_row else [half, t], axis=-1)
    img = cv2.perspectiveTransform(pts.reshape(-1, 1, 2).astype(np.float32), H).reshape(-1, 2)
    x, y = np.floor(img[:, 0]).astype(int), np.floor(img[:, 1]).astype(int)
    inside = (x >= 0) & (x < binary.shape[1]) & (y >= 0) & (y < binary.shape[0])
    dark = np.zeros(len(t), dtype=bool)
    dark[inside] = binary[y[inside], x[inside]]
    if not dark[0]:
        return None
    gaps = np.flatnonzero(sliding_window_view(~dark, int(round(1.5 / step))).all(axis=1))
    if len(gaps) == 0:
        return None
    i = gaps[0]
    return (img[i - 1] + img[i]) / 2


def _refine_micro(binary, H, corners, size):
    """Refit H to the finder corners plus both timing-pattern ends."""
    row_end = _timing_end(binary, H, size, True)
    col_end = _timing_end(binary, H, size, False)
    if row_end is None or col_end is None:
        return None
    src = np.vstack([MICRO_FINDER, [[size, 0.5], [0.5, size]]]).astype(np.float32)
    dst = np.vstack([corners, [row_end, col_end]]).astype(np.float32)
    refined, _ = cv2.findHomography(src, dst)
    return refined


def locate_micro(binary, pattern, labels):
    """Micro grid anchored on a single finder, or None.

    The finder's outer corners give a projective transform for each of the
    four rotations. A rotation is accepted if the Micro format info decodes;
    the transform is then refined from the timing-pattern ends and kept if
    the finder and timing modules agree.
    """
    ring = _ring_points(labels, binary, pattern)
    if ring is None or len(ring) < 8:
        return None
    quad = finder_quad(ring)
    if quad is None:
        return None

    fmt = T.format_positions(Version(1, True))[0]
    best = None
    for k in range(4):
        corners = np.roll(quad, -k, axis=0)
        H = cv2.getPerspectiveTransform(MICRO_FINDER, corners)
        modules = sample_grid(binary, H, 17)
        word = sum(int(modules[r, c]) << i for i, (r, c) in enumerate(fmt))
        try:
            info = T.decode_format([word], micro=True)
        except QRError:
            continue
        version = Version(info.micro_version, True)
        grid = sample_grid(binary, H, version.width)
        score = min(pattern_scores(grid, version))
        refined = _refine_micro(binary, H, corners, version.width)
        if refined is not None:
            regrid = sample_grid(binary, refined, version.width)
            rescore = min(pattern_scores(regrid, version))
            if rescore >= score:
                H, grid, score = refined, regrid, rescore
        if score < MIN_PATTERN_SCORE:
            continue
        if best is None or (info.distance, -score) < (best[0], -best[1]):
            best = (info.distance, score, version, grid, H)
    if best is None:
        return None
    _, _, version, grid, H = best
    logger.debug("micro grid %s at %s", version, tuple(int(c) for c in pattern['center']))
    return DetectedGrid(version, grid, grid_corners(H, version.width))


# ============================================================================
# MAIN
# ============================================================================

def _inside(point, corners):
    return cv2.pointPolygonTest(corners.reshape(-1, 1, 2).astype(np.float32),
                                (float(point[0]), float(point[1])), False) >= 0


def detect(image):
    """Return (binary, finder patterns, grids) for a raster."""
    binary = binarize(image)
    patterns = find_finder_patterns(binary)
    grids, used = [], set()
    for quality, (tl, tr, bl), estimate in group_finder_patterns(patterns):
        ids = {tl['index'], tr['index'], bl['index']}
        if used & ids:
            continue
        grid = locate_normal(binary, tl, tr, bl, estimate)
        if grid is not None:
            grids.append(grid)
            used |= ids

    labels = None
    for p in patterns:
        if p['index'] in used or any(_inside(p['center'], g.corners) for g in grids):
            continue
        if labels is None:
            _, labels = cv2.connectedComponents(binary.astype(np.uint8), connectivity=4)
        grid = locate_micro(binary, p, labels)
        if grid is not None:
            grids.append(grid)

    grids.sort(key=lambda g: (float(g.corners[:, 1].min()), float(g.corners[:, 0].min())))
    logger.debug("detected %d grids", len(grids))
    return binary, patterns, grids


def detect_grids(image):
    """All symbols found in `image`, ordered top-to-bottom then left-to-right."""
    return detect(image)[2]
