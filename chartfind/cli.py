# -*- coding: utf-8 -*-
"""Batch chart detection over image files.

Usage:
    chartfind-detect photos/ extra.png --out outputs/charts --overlay

For every image a ``<stem>.json`` with the detection result is written to
``--out``; ``summary.json`` lists the outcome per image. With ``--overlay``
the result (and, with ``--debug-steps``, the intermediate stages) is drawn
next to the JSON.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from tqdm import tqdm

from .core.chart_spec import builtin_topologies, load_chart_topologies
from .core.config import DEFAULT_CONFIG, HIGH_RECALL_CONFIG, create_detection_config, load_detection_config
from .core.detector import ChartDetector
from .core.errors import UnsupportedFormat
from .utils.images import SUPPORTED_SUFFIXES, read_image_robust
from .viz.overlay import Visualizer

logger = logging.getLogger(__name__)


def collect_images(inputs: Sequence[str]) -> List[Path]:
    paths: List[Path] = []
    for item in inputs:
        p = Path(item)
        if p.is_dir():
            paths.extend(sorted(q for q in p.iterdir() if q.is_file() and q.suffix.lower() in SUPPORTED_SUFFIXES))
        elif p.is_file():
            paths.append(p)
        else:
            logger.warning("Input not found: %s", p)
    return paths


def detect_file(detector: ChartDetector, path: Path, visualizer: Optional[Visualizer] = None,
                debug_steps: bool = False) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "image": str(path),
        "name": path.stem,
        "found": False,
        "message": "",
        "elapsed_ms": 0.0,
        "image_size": None,
    }
    raster = read_image_robust(path)
    if raster is None:
        entry["message"] = "failed_to_read_image"
        return entry
    entry["image_size"] = [raster.width, raster.height]

    debug: Optional[Dict[str, Any]] = {} if debug_steps else None
    start = time.perf_counter()
    try:
        result = detector.detect(raster, debug=debug)
    except UnsupportedFormat as exc:
        entry["message"] = f"unsupported_format: {exc}"
        entry["elapsed_ms"] = float((time.perf_counter() - start) * 1000.0)
        return entry
    entry["elapsed_ms"] = float((time.perf_counter() - start) * 1000.0)

    entry.update(result.to_dict())
    entry["message"] = "ok" if result.found else result.reason
    if visualizer is not None:
        entry["overlays"] = visualizer.save_all(raster.pixels, path.stem, result, debug)
    return entry


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Locate colour reference charts in images.")
    ap.add_argument("inputs", nargs="+", help="Image files and/or directories")
    ap.add_argument("--out", default="outputs/chartfind", help="Output directory for JSON and overlays")
    ap.add_argument("--charts", default=None, help="YAML chart definitions (default: built-in charts)")
    ap.add_argument("--config", default=None, help="YAML detection config overrides")
    ap.add_argument("--high-recall", action="store_true", help="Start from the high-recall preset")
    ap.add_argument("--overlay", action="store_true", help="Write result overlays")
    ap.add_argument("--debug-steps", action="store_true", help="Also write edges/quads/grids overlays")
    ap.add_argument("--workers", type=int, default=None, help="Threads for candidate scoring")
    ap.add_argument("--log", default="INFO", help="Logging level (DEBUG/INFO/WARNING)")
    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log.upper(), logging.INFO), format="%(levelname)s: %(message)s")

    base = HIGH_RECALL_CONFIG if args.high_recall else DEFAULT_CONFIG
    config = load_detection_config(args.config, base=base) if args.config else base
    if args.workers:
        config = create_detection_config(config, workers=args.workers)
    topologies = load_chart_topologies(args.charts) if args.charts else builtin_topologies()

    paths = collect_images(args.inputs)
    if not paths:
        logging.error("No input images found")
        return 2

    os.makedirs(args.out, exist_ok=True)
    detector = ChartDetector(topologies, config)
    visualizer = Visualizer(args.out) if (args.overlay or args.debug_steps) else None

    summary = []
    for p in tqdm(paths, desc="[chartfind]", disable=len(paths) < 2):
        entry = detect_file(detector, p, visualizer, debug_steps=args.debug_steps)
        with open(os.path.join(args.out, f"{p.stem}.json"), "w", encoding="utf-8") as f:
            json.dump(entry, f, indent=2, ensure_ascii=False)
        if entry["found"]:
            logging.info("%s: %s (%s, score %.3f)", p.name, entry["topology_id"],
                         entry["orientation"]["label"], entry["match_score"])
        else:
            logging.warning("%s: chart not detected (%s)", p.name, entry["message"])
        summary.append({k: entry.get(k) for k in ("name", "found", "message", "topology_id", "match_score",
                                                  "elapsed_ms")})

    with open(os.path.join(args.out, "summary.json"), "w", encoding="utf-8") as f:
        json.dump({"num_images": len(paths), "num_found": sum(1 for s in summary if s["found"]),
                   "images": summary}, f, indent=2, ensure_ascii=False)
    logging.info("Detected %d/%d charts; results in %s",
                 sum(1 for s in summary if s["found"]), len(paths), args.out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
