#!/usr/bin/env python3
"""
Measure solver accuracy on a folder of labeled CAPTCHAs.

Files must follow the labeled naming scheme ({LABEL}_{ts}.png or
PRED_{LABEL}_{ts}.png); anything else in the folder is skipped.

Usage:
  python eval_solver.py data/captchas
  python eval_solver.py data/captchas --output output/eval.csv
"""

import argparse
import asyncio
import sys
from collections import Counter
from pathlib import Path

import pandas as pd

from config import CONFIG_PATH, load_config, resolve_model_source
from errors import CaptchaError, ModelUnavailableError
from logging_config import setup_logging
from model.glyph_classifier import CHARS
from model.model_store import ModelStore
from pipeline.dataset import list_labeled_images
from solver import CaptchaSolver


async def evaluate(samples: list[tuple[Path, str]], solver: CaptchaSolver) -> pd.DataFrame:
    """Solve every sample; one row per image."""
    rows = []
    for path, label in samples:
        try:
            pred = await solver.solve(path)
            error = ""
        except ModelUnavailableError:
            raise
        except CaptchaError as exc:
            pred, error = "", str(exc)

        rows.append({
            "filename": path.name,
            "label": label,
            "prediction": pred,
            "correct": pred == label,
            "char_matches": sum(p == t for p, t in zip(pred, label)),
            "error": error,
        })
    return pd.DataFrame(rows, columns=["filename", "label", "prediction", "correct", "char_matches", "error"])


def print_report(df: pd.DataFrame, num_chars: int):
    col = dict(fname=40, label=8, pred=8, match=6)
    header = (
        f"{'Image':<{col['fname']}} {'Label':>{col['label']}} "
        f"{'Pred':>{col['pred']}} {'Match':>{col['match']}}"
    )
    sep = "-" * (sum(col.values()) + len(col) - 1)
    print(header)
    print(sep)
    for row in df.itertuples():
        shown = row.prediction or "ERROR"
        match = "PASS" if row.correct else "FAIL"
        print(f"{row.filename:<{col['fname']}} {row.label:>{col['label']}} "
              f"{shown:>{col['pred']}} {match:>{col['match']}}")
    print(sep)

    n = len(df)
    exact = int(df["correct"].sum())
    chars_ok = int(df["char_matches"].sum())
    total_chars = int(df["label"].str.len().sum())
    errors = int((df["error"] != "").sum())
    print(f"\nExact-match accuracy:  {exact}/{n}  ({exact / n:.1%})")
    print(f"Character accuracy:    {chars_ok}/{total_chars}  ({chars_ok / total_chars:.1%})")
    print(f"Failed to solve:       {errors}/{n}")

    print("\nPer-position accuracy:")
    solved = df[df["error"] == ""]
    for i in range(num_chars):
        # Predictions are num_chars long, labels are as long as their file name says
        pairs = [(p, t) for p, t in zip(solved["prediction"], solved["label"]) if i < min(len(p), len(t))]
        ok = sum(p[i] == t[i] for p, t in pairs)
        print(f"  #{i + 1}  {ok:3d}/{len(pairs):3d}")

    per_char_total = Counter()
    per_char_correct = Counter()
    for pred, label in zip(solved["prediction"], solved["label"]):
        for p, t in zip(pred, label):
            per_char_total[t] += 1
            if p == t:
                per_char_correct[t] += 1

    print("\nPer-character accuracy:")
    for c in CHARS:
        total = per_char_total.get(c, 0)
        if not total:
            continue
        ok = per_char_correct.get(c, 0)
        bar = "#" * int(ok / total * 20)
        print(f"  '{c}'  {ok:3d}/{total:3d}  {bar}")


def main():
    parser = argparse.ArgumentParser(description="Evaluate the CAPTCHA solver on labeled images")
    parser.add_argument("folder", type=str, help="Folder of labeled CAPTCHA images")
    parser.add_argument("--model", help="Model parameter file or URL (default: from config)")
    parser.add_argument("--config", default=str(CONFIG_PATH), help="Path to solver.yaml")
    parser.add_argument("--output", type=str, help="Write per-image results to this CSV file")
    args = parser.parse_args()

    config = load_config(Path(args.config))
    setup_logging("WARNING", config["logging"]["file"])

    folder = Path(args.folder)
    if not folder.is_dir():
        print(f"Error: folder not found: {folder}")
        sys.exit(1)

    samples = list_labeled_images(folder)
    if not samples:
        print(f"No labeled images found in {folder}")
        sys.exit(1)
    print(f"Labeled images: {len(samples)}\n")

    num_chars = config["solver"]["num_chars"]
    solver = CaptchaSolver(ModelStore(args.model or resolve_model_source(config)), num_chars=num_chars)
    try:
        df = asyncio.run(evaluate(samples, solver))
    except ModelUnavailableError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    print_report(df, num_chars)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(output_path, index=False)
        print(f"\nResults saved to: {output_path}")


if __name__ == "__main__":
    main()
