"""
PyTorch version of the fixed glyph CNN, used for training only.

Classes: A-Z then 0-9, 36 total.
Input:   (1, 28, 28) float32 tensor, ink=1 background=0.
Output:  logits over 36 classes.

Layer attributes carry the same names as the exported parameter file so
model/export_weights.py can map them one to one.
"""

import torch
import torch.nn as nn

from model.glyph_classifier import NUM_CLASSES


class GlyphCNN(nn.Module):
    def __init__(self, num_classes: int = NUM_CLASSES):
        super().__init__()
        # 28x28x1 -> 26x26x32 -> 13x13x32
        self.conv1 = nn.Conv2d(1, 32, kernel_size=3)
        # 13x13x32 -> 11x11x64 -> 5x5x64
        self.conv2 = nn.Conv2d(32, 64, kernel_size=3)
        self.pool = nn.MaxPool2d(2)
        self.dense1 = nn.Linear(64 * 5 * 5, 128)
        self.dropout = nn.Dropout(0.5)
        self.output = nn.Linear(128, num_classes)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = self.pool(torch.relu(self.conv1(x)))
        x = self.pool(torch.relu(self.conv2(x)))
        x = torch.flatten(x, 1)   # channel-major; the exporter reorders dense1
        x = self.dropout(torch.relu(self.dense1(x)))
        return self.output(x)
