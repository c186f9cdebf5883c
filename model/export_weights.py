#!/usr/bin/env python3
"""
Export GlyphCNN weights to the JSON parameter file read by model_store.py.

PyTorch layouts are converted to the flat row-major layouts of the file:
  conv   (out, in, kh, kw) -> (kh, kw, in, out)
  dense  (out, in)         -> (in, out)
dense1 also has its inputs reordered: PyTorch flattens the pooled map as
(channel, row, col) while the numpy pass flattens (row, col, channel).

Usage:
  python -m model.export_weights model/glyph_cnn.pth model/model_weights.json
"""

import json
import sys
from pathlib import Path

import torch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from model.model_store import LAYER_SPECS, MODEL_PATH

CHECKPOINT_PATH = Path(__file__).resolve().parent / "glyph_cnn.pth"


def _conv_entry(name: str, weight: torch.Tensor, bias: torch.Tensor) -> dict:
    kernel = weight.detach().cpu().permute(2, 3, 1, 0).contiguous()   # (kh, kw, in, out)
    return {
        "name": name,
        "type": "Conv2D",
        "kernel_shape": list(kernel.shape),
        "kernel": kernel.reshape(-1).tolist(),
        "bias": bias.detach().cpu().tolist(),
    }


def _dense_entry(name: str, weight: torch.Tensor, bias: torch.Tensor, channels: int = 0) -> dict:
    weight = weight.detach().cpu()
    if channels:
        # (out, c*hw) -> (hw, c, out) -> (hw*c, out)
        out_size = weight.shape[0]
        kernel = weight.reshape(out_size, channels, -1).permute(2, 1, 0).reshape(-1, out_size)
    else:
        kernel = weight.t()
    kernel = kernel.contiguous()
    return {
        "name": name,
        "type": "Dense",
        "kernel_shape": list(kernel.shape),
        "kernel": kernel.reshape(-1).tolist(),
        "bias": bias.detach().cpu().tolist(),
    }


def state_dict_to_layers(state_dict: dict) -> list[dict]:
    """Convert a GlyphCNN state dict into parameter-file layer descriptors."""
    conv2_channels = LAYER_SPECS["conv2"][1][3]
    return [
        _conv_entry("conv1", state_dict["conv1.weight"], state_dict["conv1.bias"]),
        _conv_entry("conv2", state_dict["conv2.weight"], state_dict["conv2.bias"]),
        _dense_entry("dense1", state_dict["dense1.weight"], state_dict["dense1.bias"], channels=conv2_channels),
        _dense_entry("output", state_dict["output.weight"], state_dict["output.bias"]),
    ]


def export_weights(model_or_state_dict, output_path: Path = MODEL_PATH) -> Path:
    """Write the parameter file for a GlyphCNN (module or state dict)."""
    state_dict = model_or_state_dict
    if isinstance(model_or_state_dict, torch.nn.Module):
        state_dict = model_or_state_dict.state_dict()

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump({"layers": state_dict_to_layers(state_dict)}, f)
    return output_path


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Export GlyphCNN weights to the JSON parameter file")
    parser.add_argument("checkpoint", nargs="?", default=str(CHECKPOINT_PATH), help="state_dict .pth file")
    parser.add_argument("output", nargs="?", default=str(MODEL_PATH), help="Output JSON path")
    args = parser.parse_args()

    state = torch.load(args.checkpoint, map_location="cpu", weights_only=True)
    path = export_weights(state, Path(args.output))
    print(f"Exported {args.checkpoint} -> {path}")
