#!/usr/bin/env python3
"""
Train GlyphCNN from a folder of labeled CAPTCHA images.

For each labeled image ({LABEL}_{ts}.png or PRED_{LABEL}_{ts}.png):
  1. Remove the grid and segment into six glyph tiles (same code as inference)
  2. If segmentation yields six tiles, add each (tile, char) pair to the dataset
  3. Train the CNN, keep the best state dict in model/glyph_cnn.pth and export
     it to the JSON parameter file the solver loads

Run:
  python -m model.glyph_train data/captchas
"""

import logging
import random
import sys
from collections import Counter
from pathlib import Path

import numpy as np
import torch
import torch.nn as nn
import torchvision.transforms.functional as TF
from torch.utils.data import DataLoader, Dataset

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from errors import ImageDecodeError
from model.char_segment import NUM_CHARS, segment_characters
from model.export_weights import CHECKPOINT_PATH, export_weights
from model.glyph_classifier import CHARS, NUM_CLASSES
from model.glyph_cnn import GlyphCNN
from model.model_store import MODEL_PATH
from pipeline.dataset import decode_label, encode_label, list_labeled_images
from pipeline.grid_remover import remove_grid
from pipeline.image_decode import decode_image

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent.parent / "data" / "captchas"
SEED = 42


# ---------------------------------------------------------------------------
# Data extraction
# ---------------------------------------------------------------------------

def extract_char_dataset(folder: Path) -> list[tuple[np.ndarray, str]]:
    """
    Returns (tile float32 28x28, char) pairs from every labeled image.
    Images that fail to decode or do not segment into six tiles are skipped.
    """
    samples: list[tuple[np.ndarray, str]] = []
    skipped_unreadable = skipped_empty = 0

    labeled = list_labeled_images(folder)
    for path, label in labeled:
        try:
            pixels = decode_image(path)
        except ImageDecodeError as exc:
            logger.warning("Skipping %s: %s", path.name, exc)
            skipped_unreadable += 1
            continue

        tiles = segment_characters(remove_grid(pixels), NUM_CHARS)
        if len(tiles) != len(label):
            skipped_empty += 1
            continue

        samples.extend(zip(tiles, label))

    used = len(labeled) - skipped_unreadable - skipped_empty
    print(f"Images used: {used}/{len(labeled)}  "
          f"(skipped: {skipped_empty} no-text, {skipped_unreadable} unreadable)")
    print(f"Character samples: {len(samples)}")
    return samples


# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------

class CharDataset(Dataset):
    def __init__(self, samples: list[tuple[np.ndarray, str]], augment: bool = False):
        self.samples = samples
        self.targets = encode_label("".join(char for _, char in samples))
        self.augment = augment

    def __len__(self) -> int:
        return len(self.samples)

    def __getitem__(self, idx: int) -> tuple[torch.Tensor, int]:
        tile = self.samples[idx][0]
        x = torch.tensor(tile[np.newaxis], dtype=torch.float32)  # (1, 28, 28)

        if self.augment:
            angle = random.uniform(-10, 10)
            x = TF.rotate(x, angle, fill=0.0)
            tx = random.randint(-2, 2)
            ty = random.randint(-2, 2)
            x = TF.affine(x, angle=0, translate=(tx, ty), scale=1.0, shear=0, fill=0.0)
            # Keep the tile binary, like the masks the solver produces
            x = (x > 0.5).float()

        return x, self.targets[idx]


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------

def train(data_dir: Path = DATA_DIR, epochs: int = 40, batch_size: int = 64, lr: float = 1e-3,
          checkpoint_path: Path = CHECKPOINT_PATH, weights_path: Path = MODEL_PATH):
    random.seed(SEED)
    torch.manual_seed(SEED)

    samples = extract_char_dataset(data_dir)
    if not samples:
        print(f"No training samples — check that {data_dir} holds labeled CAPTCHAs.")
        return

    dist = Counter(s[1] for s in samples)
    missing = [c for c in CHARS if dist.get(c, 0) == 0]
    if missing:
        print(f"WARNING: no training samples for classes: {missing}")

    random.shuffle(samples)
    split = int(len(samples) * 0.85)
    train_ds = CharDataset(samples[:split], augment=True)
    val_ds   = CharDataset(samples[split:], augment=False)

    train_loader = DataLoader(train_ds, batch_size=batch_size, shuffle=True,  num_workers=0)
    val_loader   = DataLoader(val_ds,   batch_size=batch_size, shuffle=False, num_workers=0)

    device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    print(f"\nTraining on {device}  |  train={len(train_ds)}  val={len(val_ds)}\n")

    model     = GlyphCNN(num_classes=NUM_CLASSES).to(device)
    optimizer = torch.optim.Adam(model.parameters(), lr=lr)
    scheduler = torch.optim.lr_scheduler.CosineAnnealingLR(optimizer, T_max=epochs)
    criterion = nn.CrossEntropyLoss()

    best_val_acc = -1.0

    for epoch in range(1, epochs + 1):
        # --- train ---
        model.train()
        train_loss = 0.0
        for x, y in train_loader:
            x, y = x.to(device), y.to(device)
            optimizer.zero_grad()
            loss = criterion(model(x), y)
            loss.backward()
            optimizer.step()
            train_loss += loss.item() * len(x)
        train_loss /= len(train_ds)
        scheduler.step()

        # --- validate ---
        model.eval()
        correct = total = 0
        with torch.no_grad():
            for x, y in val_loader:
                x, y = x.to(device), y.to(device)
                correct += (model(x).argmax(dim=1) == y).sum().item()
                total   += len(y)
        val_acc = correct / total if total else 0.0

        if epoch % 5 == 0 or epoch == 1:
            print(f"Epoch {epoch:3d}/{epochs}  loss={train_loss:.4f}  val_acc={val_acc:.1%}")

        if val_acc > best_val_acc:
            best_val_acc = val_acc
            torch.save(model.state_dict(), checkpoint_path)

    print(f"\nBest val accuracy: {best_val_acc:.1%}  — saved to {checkpoint_path}")

    state = torch.load(checkpoint_path, map_location="cpu", weights_only=True)
    export_weights(state, weights_path)
    print(f"Parameter file written to {weights_path}")

    # --- per-class accuracy on the val set ---
    model.load_state_dict(state)
    model.to(device).eval()
    per_class_correct = Counter()
    per_class_total   = Counter()
    with torch.no_grad():
        for x, y in val_loader:
            preds = model(x.to(device)).argmax(dim=1)
            for p, t in zip(decode_label(preds.tolist()), decode_label(y.tolist())):
                per_class_total[t] += 1
                if p == t:
                    per_class_correct[t] += 1

    print("\nPer-class val accuracy:")
    for c in CHARS:
        n = per_class_total.get(c, 0)
        ok = per_class_correct.get(c, 0)
        bar = "#" * int(ok / max(n, 1) * 20)
        print(f"  '{c}'  {ok:3d}/{n:3d}  {bar}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Train the glyph CNN from labeled CAPTCHAs")
    parser.add_argument("data_dir", nargs="?", default=str(DATA_DIR), help="Folder of labeled CAPTCHA images")
    parser.add_argument("--epochs", type=int, default=40)
    parser.add_argument("--batch-size", type=int, default=64)
    parser.add_argument("--lr", type=float, default=1e-3)
    args = parser.parse_args()

    train(Path(args.data_dir), epochs=args.epochs, batch_size=args.batch_size, lr=args.lr)
