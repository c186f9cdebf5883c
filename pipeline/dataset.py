"""Labeled CAPTCHA files: naming scheme and folder listing.

Collected CAPTCHAs are saved as:
  {LABEL}_{timestamp_ms}.png        label confirmed by hand
  PRED_{LABEL}_{timestamp_ms}.png   solver prediction kept after a successful login
  captcha_{timestamp_ms}.png        unlabeled capture (ignored)
  fallback_{timestamp_ms}.png       unnamed download (ignored)
"""

import re
from pathlib import Path

from model.char_segment import NUM_CHARS
from model.glyph_classifier import CHAR_TO_IDX, IDX_TO_CHAR

PRED_PREFIX = "PRED_"
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".bmp")

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*]')
_LABELED_NAME = re.compile(r"^(?:PRED_)?([A-Z0-9]+)_(\d+)$")


def sanitize_label(text: str) -> str:
    """Replace characters that are illegal in file names, trim whitespace."""
    return _ILLEGAL_CHARS.sub("_", text).strip()


def labeled_filename(label: str, timestamp_ms: int, predicted: bool = False) -> str:
    """File name for a saved CAPTCHA whose label is known."""
    prefix = PRED_PREFIX if predicted else ""
    return f"{prefix}{sanitize_label(label.upper())}_{timestamp_ms}.png"


def parse_labeled_filename(name: str) -> str | None:
    """Return the label encoded in a file name, or None if it carries none."""
    match = _LABELED_NAME.match(Path(name).stem)
    if match is None:
        return None
    label = match.group(1)
    if len(label) != NUM_CHARS or not all(c in CHAR_TO_IDX for c in label):
        return None
    return label


def list_labeled_images(folder: Path) -> list[tuple[Path, str]]:
    """All (image path, label) pairs in `folder`, sorted by file name."""
    samples = []
    for path in sorted(Path(folder).iterdir()):
        if not path.is_file() or path.suffix.lower() not in IMAGE_SUFFIXES:
            continue
        label = parse_labeled_filename(path.name)
        if label is not None:
            samples.append((path, label))
    return samples


def encode_label(text: str) -> list[int]:
    """Convert a label to class indices."""
    return [CHAR_TO_IDX[c] for c in text]


def decode_label(indices: list[int]) -> str:
    """Convert class indices back to a label."""
    return "".join(IDX_TO_CHAR[i] for i in indices)
