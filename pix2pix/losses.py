"""
Loss functions for pix2pix.

The generator loss adds an L1 reconstruction term, weighted by
``l1_lambda``, to the adversarial sigmoid cross entropy.
"""

from typing import Tuple

import torch
import torch.nn as nn

from gan_ops.layers import sigmoid_cross_entropy_with_logits


L1_LAMBDA = 100.0


def generator_loss(fake_logits: torch.Tensor, generated: torch.Tensor, target: torch.Tensor,
                   l1_lambda: float = L1_LAMBDA) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """
    Compute generator loss.

    Args:
        fake_logits: Patch logits for (input, generated) pairs
        generated: Generator output
        target: Ground truth images
        l1_lambda: Weight of the L1 term

    Returns:
        Tuple of (total_loss, gan_loss, l1_loss)
    """
    if generated.shape != target.shape:
        raise ValueError(f"Generated and target shapes differ: {tuple(generated.shape)} vs {tuple(target.shape)}")

    gan_loss = sigmoid_cross_entropy_with_logits(torch.ones_like(fake_logits), fake_logits).mean()
    l1_loss = torch.mean(torch.abs(target - generated))
    total_loss = gan_loss + l1_lambda * l1_loss
    return total_loss, gan_loss, l1_loss


def discriminator_loss(real_logits: torch.Tensor, fake_logits: torch.Tensor) -> torch.Tensor:
    """
    Compute discriminator loss.

    Args:
        real_logits: Patch logits for (input, target) pairs
        fake_logits: Patch logits for (input, generated) pairs

    Returns:
        Scalar loss
    """
    real_loss = sigmoid_cross_entropy_with_logits(torch.ones_like(real_logits), real_logits).mean()
    generated_loss = sigmoid_cross_entropy_with_logits(torch.zeros_like(fake_logits), fake_logits).mean()
    return real_loss + generated_loss


class Pix2PixLoss(nn.Module):
    """
    Both pix2pix losses in one module.
    """

    def __init__(self, l1_lambda: float = L1_LAMBDA):
        super().__init__()
        self.l1_lambda = l1_lambda

    def discriminator_loss(self, real_logits: torch.Tensor, fake_logits: torch.Tensor) -> torch.Tensor:
        return discriminator_loss(real_logits, fake_logits)

    def generator_loss(self, fake_logits: torch.Tensor, generated: torch.Tensor,
                       target: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        return generator_loss(fake_logits, generated, target, self.l1_lambda)
