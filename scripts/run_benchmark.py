"""cuibench end-to-end benchmark run.

Pipeline (7 steps):
    1. Load concept lookup (concept ID -> string / CUI), if configured
    2. Load the target embedding and reference embeddings
    3. Load reference-relationship tables
    4. MAP benchmark (causative, semantic type, NDF-RT, comorbidity AP)
    5. DCG benchmark (comorbidity)
    6. Plots: score scatters, optional t-SNE projection
    7. Output: map_scores.csv + dcg_scores.csv + run_manifest.json

Usage:
    python scripts/run_benchmark.py --config configs/default.yaml --out output/
"""
from __future__ import annotations

import argparse
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd
import yaml

from cuibench import __version__
from cuibench.concepts import ConceptInfo
from cuibench.embedding import Embedding
from cuibench.errors import InvalidArgumentError
from cuibench.evaluation.benchmark import benchmark_dcg, benchmark_map, summarize_scores
from cuibench.evaluation.relationships import ReferenceData
from cuibench.io import ensure_dir, load_embeddings, load_reference_data, write_csv, write_json

logger = logging.getLogger("cuibench.run")

REQUIRED_KEYS = ("embedding", "reference_data")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def load_config(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    validate_config(cfg)
    return cfg


def validate_config(cfg: Dict[str, Any]) -> None:
    """Raise InvalidArgumentError for missing or malformed config keys."""
    missing = [key for key in REQUIRED_KEYS if key not in cfg]
    if missing:
        raise InvalidArgumentError(f"Config is missing required keys: {missing}")
    if "path" not in (cfg.get("embedding") or {}):
        raise InvalidArgumentError("Config 'embedding' needs a 'path'")
    if "dir" not in (cfg.get("reference_data") or {}):
        raise InvalidArgumentError("Config 'reference_data' needs a 'dir'")
    for i, ref in enumerate(cfg.get("reference_embeddings") or [], start=1):
        if "path" not in ref:
            raise InvalidArgumentError(f"reference_embeddings[{i}] needs a 'path'")
    k = (cfg.get("benchmark") or {}).get("k", 40)
    if int(k) < 1:
        raise InvalidArgumentError(f"benchmark.k must be >= 1, got {k}")


# ---------------------------------------------------------------------------
# Pipeline steps
# ---------------------------------------------------------------------------

def step_load_concepts(cfg) -> Optional[ConceptInfo]:
    """Step 1: Build the concept lookup from the two concept files."""
    concepts_cfg = cfg.get("concepts") or {}
    if not concepts_cfg:
        logger.info("  No concept files configured; CUI conversion disabled")
        return None
    return ConceptInfo.from_files(concepts_cfg["id_to_string"], concepts_cfg["id_to_cui"])


def _load_one(emb_cfg: Dict[str, Any], concepts: Optional[ConceptInfo]) -> Embedding:
    return load_embeddings(
        emb_cfg["path"],
        convert_to_cui=bool(emb_cfg.get("convert_to_cui", False)),
        concepts=concepts,
        header=bool(emb_cfg.get("header", False)),
        skip=int(emb_cfg.get("skip", 1)),
        delim=emb_cfg.get("delim", " "),
    )


def step_load_embeddings(cfg, concepts) -> dict:
    """Step 2: Load the target and reference embeddings."""
    emb_cfg = cfg["embedding"]
    target = _load_one(emb_cfg, concepts)
    label = emb_cfg.get("label") or os.path.splitext(os.path.basename(emb_cfg["path"]))[0]

    refs: Dict[str, Embedding] = {}
    for i, ref_cfg in enumerate(cfg.get("reference_embeddings") or [], start=1):
        ref_label = ref_cfg.get("label") or f"reference_{i}"
        refs[ref_label] = _load_one(ref_cfg, concepts)

    return {"target": target, "label": label, "refs": refs}


def step_load_reference(cfg) -> ReferenceData:
    """Step 3: Load relationship tables."""
    reference = load_reference_data(cfg["reference_data"]["dir"])
    if reference.is_empty():
        logger.warning("  Reference data directory holds no relationship tables")
    return reference


def step_plots(cfg, out_dir, df_map, df_dcg, target) -> List[str]:
    """Step 6: Write score plots and the optional t-SNE projection."""
    from cuibench import plots

    written = []
    if len(df_map) > 0:
        path = os.path.join(out_dir, "map_scores.png")
        plots.save_figure(plots.plot_map(df_map), path)
        written.append(path)
    if len(df_dcg) > 0:
        path = os.path.join(out_dir, "dcg_scores.png")
        plots.save_figure(plots.plot_dcg(df_dcg), path)
        written.append(path)

    proj_cfg = cfg.get("projection") or {}
    if proj_cfg.get("enabled", False):
        from cuibench.projection import get_tsne
        tsne = get_tsne(
            target,
            perplexity=float(proj_cfg.get("perplexity", 30.0)),
            random_state=proj_cfg.get("random_state", 0),
        )
        write_csv(os.path.join(out_dir, "tsne.csv"), tsne)
        path = os.path.join(out_dir, "tsne.png")
        plots.save_figure(plots.plot_projection(tsne, title="t-SNE"), path)
        written.append(path)
    return written


def step_write_outputs(out_dir, cfg, df_map, df_dcg, loaded, reference, step_timings, figures) -> None:
    """Step 7: Score tables + run manifest."""
    write_csv(os.path.join(out_dir, "map_scores.csv"), df_map)
    write_csv(os.path.join(out_dir, "dcg_scores.csv"), df_dcg)

    manifest = {
        "cuibench_version": __version__,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "config": cfg,
        "target": {"label": loaded["label"], "n_cuis": len(loaded["target"]), "dim": loaded["target"].dim},
        "reference_embeddings": {
            name: {"n_cuis": len(emb), "dim": emb.dim} for name, emb in loaded["refs"].items()
        },
        "reference_tables": reference.summary(),
        "map_summary": summarize_scores(df_map).to_dict(orient="records"),
        "dcg_summary": summarize_scores(df_dcg).to_dict(orient="records"),
        "figures": figures,
        "step_timings": step_timings,
    }
    write_json(os.path.join(out_dir, "run_manifest.json"), manifest)


def _timed_step(step_num, total_steps, name, func, *args, **kwargs):
    """Execute a pipeline step with timing and structured logging."""
    logger.info(f"Step {step_num}/{total_steps}: {name}...")
    t_start = time.time()
    try:
        result = func(*args, **kwargs)
        elapsed = time.time() - t_start
        logger.info(f"  Step {step_num} completed in {elapsed:.2f}s")
        return result, {"step": step_num, "name": name, "elapsed_sec": round(elapsed, 2), "status": "ok"}
    except Exception as e:
        elapsed = time.time() - t_start
        logger.error(f"  Step {step_num} FAILED after {elapsed:.2f}s: {type(e).__name__}: {e}")
        raise


def main(argv=None):
    ap = argparse.ArgumentParser(description=f"cuibench v{__version__}: CUI embedding benchmarks")
    ap.add_argument("--config", required=True, help="YAML config path")
    ap.add_argument("--out", dest="out_dir", required=True, help="output directory")
    ap.add_argument("--k", type=int, default=None, help="override benchmark.k")
    ap.add_argument("--no-intersection", action="store_true",
                    help="pairwise CUI alignment instead of a global intersection")
    ap.add_argument("--no-plots", action="store_true", help="skip figure generation")
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    bench_cfg = cfg.get("benchmark") or {}
    cfg["benchmark"] = bench_cfg
    if args.k is not None:
        bench_cfg["k"] = args.k
    if args.no_intersection:
        bench_cfg["take_intersection"] = False
    validate_config(cfg)

    k = int(bench_cfg.get("k", 40))
    take_intersection = bool(bench_cfg.get("take_intersection", True))
    return_max = bool(bench_cfg.get("return_max", False))
    metrics = [m.lower() for m in bench_cfg.get("metrics", ["map", "dcg"])]
    ensure_dir(args.out_dir)

    total_steps = 7
    t0 = time.time()
    step_timings = []

    concepts, timing = _timed_step(1, total_steps, "Load concept lookup", step_load_concepts, cfg)
    step_timings.append(timing)

    loaded, timing = _timed_step(2, total_steps, "Load embeddings", step_load_embeddings, cfg, concepts)
    step_timings.append(timing)

    reference, timing = _timed_step(3, total_steps, "Load reference relationships", step_load_reference, cfg)
    step_timings.append(timing)

    df_map = pd.DataFrame(columns=["test", "embedding_name", "score"])
    if "map" in metrics:
        df_map, timing = _timed_step(4, total_steps, "MAP benchmark", benchmark_map,
                                     loaded["target"], k, reference, loaded["label"],
                                     loaded["refs"] or None, take_intersection)
        step_timings.append(timing)

    df_dcg = pd.DataFrame(columns=["test", "embedding_name", "score"])
    if "dcg" in metrics:
        df_dcg, timing = _timed_step(5, total_steps, "DCG benchmark", benchmark_dcg,
                                     loaded["target"], k, reference, loaded["label"],
                                     loaded["refs"] or None, take_intersection, return_max)
        step_timings.append(timing)

    figures: List[str] = []
    if not args.no_plots:
        figures, timing = _timed_step(6, total_steps, "Plots", step_plots,
                                      cfg, args.out_dir, df_map, df_dcg, loaded["target"])
        step_timings.append(timing)

    logger.info(f"Step 7/{total_steps}: Writing output files...")
    step_write_outputs(args.out_dir, cfg, df_map, df_dcg, loaded, reference, step_timings, figures)

    elapsed = time.time() - t0
    logger.info(f"Benchmark run completed in {elapsed:.1f}s")
    logger.info(f"  MAP tests: {len(df_map)}  DCG tests: {len(df_dcg)}")


if __name__ == "__main__":
    main()
