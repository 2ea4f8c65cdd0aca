"""
Adversarial losses for the DCGAN.

Both networks are trained on logits with the numerically stable sigmoid
cross entropy. The discriminator labels real images 1 and generated images
0; the generator wants its images labelled 1.
"""

from typing import Optional, Tuple

import torch
import torch.nn as nn

from gan_ops.layers import sigmoid_cross_entropy_with_logits


def discriminator_loss(real_logits: torch.Tensor, fake_logits: torch.Tensor) -> torch.Tensor:
    """
    Compute discriminator loss.

    Args:
        real_logits: Discriminator logits for real images
        fake_logits: Discriminator logits for generated images

    Returns:
        Scalar loss
    """
    real_loss = sigmoid_cross_entropy_with_logits(torch.ones_like(real_logits), real_logits).mean()
    fake_loss = sigmoid_cross_entropy_with_logits(torch.zeros_like(fake_logits), fake_logits).mean()
    return real_loss + fake_loss


def generator_loss(fake_logits: torch.Tensor) -> torch.Tensor:
    """
    Compute generator loss.

    Args:
        fake_logits: Discriminator logits for generated images

    Returns:
        Scalar loss
    """
    return sigmoid_cross_entropy_with_logits(torch.ones_like(fake_logits), fake_logits).mean()


class DCGANLoss(nn.Module):
    """
    Both DCGAN losses in one module.
    """

    def forward(self, real_logits: Optional[torch.Tensor],
                fake_logits: Optional[torch.Tensor]) -> Tuple[Optional[torch.Tensor], Optional[torch.Tensor]]:
        """
        Compute both discriminator and generator losses.

        Args:
            real_logits: Logits for real images, may be None
            fake_logits: Logits for generated images, may be None

        Returns:
            Tuple of (discriminator_loss, generator_loss); an entry is None
            when its inputs are missing
        """
        if real_logits is not None and fake_logits is not None:
            d_loss = discriminator_loss(real_logits, fake_logits)
        else:
            d_loss = None
        if fake_logits is not None:
            g_loss = generator_loss(fake_logits)
        else:
            g_loss = None

        return d_loss, g_loss
