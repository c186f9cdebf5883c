#!/usr/bin/env python3
"""
Solve one or more CAPTCHA images with the CNN solver.

Usage:
  python main.py captcha.png
  python main.py data/captchas/*.png --json
  python main.py captcha.png --model path/to/model_weights.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from config import CONFIG_PATH, load_config, resolve_model_source
from errors import CaptchaError, ModelUnavailableError
from logging_config import setup_logging
from model.model_store import ModelStore
from solver import CaptchaSolver


async def solve_files(paths: list[str], solver: CaptchaSolver) -> dict[str, dict]:
    """Solve each file in order. Returns {path: {"label": ...} | {"error": ...}}."""
    results = {}
    for path in paths:
        try:
            label = await solver.solve(Path(path))
        except ModelUnavailableError:
            raise
        except CaptchaError as exc:
            results[path] = {"error": str(exc)}
        else:
            results[path] = {"label": label}
    return results


def main():
    parser = argparse.ArgumentParser(description="Solve six-character grid CAPTCHAs with the CNN solver.")
    parser.add_argument("images", nargs="+", help="CAPTCHA image file(s)")
    parser.add_argument("--model", help="Model parameter file or URL (default: from config)")
    parser.add_argument("--config", default=str(CONFIG_PATH), help="Path to solver.yaml")
    parser.add_argument("--json", action="store_true", help="Print results as one JSON object")
    parser.add_argument("--log-level", help="Logging level (default: from config)")
    args = parser.parse_args()

    config = load_config(Path(args.config))
    setup_logging(args.log_level or config["logging"]["level"], config["logging"]["file"])

    model_source = args.model or resolve_model_source(config)
    solver = CaptchaSolver(ModelStore(model_source), num_chars=config["solver"]["num_chars"])

    try:
        results = asyncio.run(solve_files(args.images, solver))
    except ModelUnavailableError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        print("Export trained weights with model/export_weights.py or pass --model.", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(results, indent=2))
    else:
        for path, result in results.items():
            shown = result.get("label") or f"ERROR: {result['error']}"
            print(f"{Path(path).name:<50}  {shown}")

    if any("error" in r for r in results.values()):
        sys.exit(1)


if __name__ == "__main__":
    main()
