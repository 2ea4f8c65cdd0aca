"""
pix2pix graphs: a U-Net generator and a PatchGAN discriminator.

The generator translates an input image into a target image through a
stack of stride-2 downsampling blocks and mirrored upsampling blocks joined
by skip connections. The discriminator scores overlapping patches of an
(input, target) pair. As in the DCGAN, a shared-weights discriminator
scores generated pairs with the same convolution variables.
"""

import math
from typing import List, Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

from gan_ops.layers import (
    BatchNormalization, Conv2D, Conv2DTranspose, Dropout, LeakyReLU,
)
from gan_ops.optim import trainable_variables
from gan_ops.utils import count_parameters, get_device


IMAGE_SIZE = 256
INPUT_CHANNELS = 3
OUTPUT_CHANNELS = 3
INIT_STDDEV = 0.02
MAX_FILTERS = 512


class Downsample(nn.Module):
    """
    Stride-2 convolution, optional batchnorm, leaky relu.
    """

    def __init__(self, in_channels: int, filters: int, size: int = 4, apply_batchnorm: bool = True):
        super().__init__()
        self.conv = Conv2D(in_channels, filters, size, stride=2, padding="SAME", use_bias=False,
                           kernel_initializer="normal", stddev=INIT_STDDEV)
        self.bn = BatchNormalization(filters) if apply_batchnorm else None
        self.act = LeakyReLU()

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = self.conv(x)
        if self.bn is not None:
            x = self.bn(x)
        return self.act(x)


class Upsample(nn.Module):
    """
    Stride-2 transposed convolution, batchnorm, optional dropout, relu.
    """

    def __init__(self, in_channels: int, filters: int, size: int = 4, apply_dropout: bool = False):
        super().__init__()
        self.deconv = Conv2DTranspose(in_channels, filters, size, stride=2, padding="SAME",
                                      use_bias=False, kernel_initializer="normal", stddev=INIT_STDDEV)
        self.bn = BatchNormalization(filters)
        self.dropout = Dropout(0.5) if apply_dropout else None

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = self.bn(self.deconv(x))
        if self.dropout is not None:
            x = self.dropout(x)
        return F.relu(x)


def down_filters(image_size: int) -> List[int]:
    """
    Filters of the U-Net downsampling stack for a square image.

    One block per halving down to 1x1: 64, 128, 256, then 512 onwards.
    """
    if image_size < 4 or image_size & (image_size - 1):
        raise ValueError(f"image_size must be a power of two >= 4, got {image_size}")
    depth = int(math.log2(image_size))
    return [min(64 * 2 ** i, MAX_FILTERS) for i in range(depth)]


class Generator(nn.Module):
    """
    U-Net Generator.
    """

    def __init__(self,
                 in_channels: int = INPUT_CHANNELS,
                 out_channels: int = OUTPUT_CHANNELS,
                 image_size: int = IMAGE_SIZE,
                 filters: Optional[List[int]] = None):
        """
        Initialize the generator.

        Args:
            in_channels: Channels of the input image
            out_channels: Channels of the generated image
            image_size: Height and width of the images, a power of two
            filters: Filters of each downsampling block; one per halving of
                image_size. Defaults to down_filters(image_size)
        """
        super().__init__()

        self.in_channels = in_channels
        self.out_channels = out_channels
        self.image_size = image_size

        expected = down_filters(image_size)
        if filters is None:
            filters = expected
        elif len(filters) != len(expected):
            raise ValueError(f"Expected {len(expected)} filters for image_size {image_size}, got {len(filters)}")
        self.filters = list(filters)

        self.down_stack = nn.ModuleList()
        channels = in_channels
        for i, f in enumerate(filters):
            self.down_stack.append(Downsample(channels, f, apply_batchnorm=i > 0))
            channels = f

        # Mirror of the down stack without the bottleneck; each block's
        # output is concatenated with the matching skip connection
        self.up_stack = nn.ModuleList()
        for j, f in enumerate(reversed(filters[:-1])):
            self.up_stack.append(Upsample(channels, f, apply_dropout=j < 3))
            channels = 2 * f

        self.last = Conv2DTranspose(channels, out_channels, 4, stride=2, padding="SAME", use_bias=True,
                                    kernel_initializer="normal", stddev=INIT_STDDEV)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Forward pass of the generator.

        Args:
            x: Input images of shape (batch_size, in_channels, image_size, image_size)

        Returns:
            Translated images in [-1, 1] of shape (batch_size, out_channels, image_size, image_size)
        """
        if x.dim() != 4 or tuple(x.shape[1:]) != (self.in_channels, self.image_size, self.image_size):
            raise ValueError(
                f"Expected images of shape (N, {self.in_channels}, {self.image_size}, "
                f"{self.image_size}), got {tuple(x.shape)}"
            )

        skips = []
        for down in self.down_stack:
            x = down(x)
            skips.append(x)

        skips = reversed(skips[:-1])
        for up, skip in zip(self.up_stack, skips):
            x = up(x)
            x = torch.cat([x, skip], dim=1)

        return torch.tanh(self.last(x))

    def reset_parameters(self):
        for module in self.modules():
            if module is not self and hasattr(module, 'reset_parameters'):
                module.reset_parameters()


class Discriminator(nn.Module):
    """
    PatchGAN Discriminator.

    The input and target images are concatenated on the channel axis and
    mapped to a grid of patch logits of size (H/8 - 2, W/8 - 2).
    """

    def __init__(self, in_channels: int = INPUT_CHANNELS, target_channels: int = OUTPUT_CHANNELS):
        super().__init__()

        self.in_channels = in_channels
        self.target_channels = target_channels

        def conv(cin, cout, stride, padding, use_bias=False):
            return Conv2D(cin, cout, 4, stride=stride, padding=padding, use_bias=use_bias,
                          kernel_initializer="normal", stddev=INIT_STDDEV)

        self.conv1 = conv(in_channels + target_channels, 64, 2, "SAME")
        self.conv2 = conv(64, 128, 2, "SAME")
        self.conv3 = conv(128, 256, 2, "SAME")
        self.conv4 = conv(256, 512, 1, "VALID")
        self.last = conv(512, 1, 1, "VALID", use_bias=True)

        self.norm2 = BatchNormalization(128)
        self.norm3 = BatchNormalization(256)
        self.norm4 = BatchNormalization(512)
        self.act = LeakyReLU()

    def forward(self, inputs: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        """
        Score an (input, target) pair.

        Args:
            inputs: Conditioning images (batch_size, in_channels, H, W)
            targets: Real or generated images (batch_size, target_channels, H, W)

        Returns:
            Patch logits of shape (batch_size, 1, H/8 - 2, W/8 - 2)
        """
        return _patch_logits(self, self, inputs, targets)

    def share(self) -> "SharedDiscriminator":
        return SharedDiscriminator(self)

    def reset_parameters(self):
        for module in self.modules():
            if module is not self and hasattr(module, 'reset_parameters'):
                module.reset_parameters()


class SharedDiscriminator(nn.Module):
    """
    PatchGAN discriminator over the convolution variables of ``source``.

    Only the batchnorm statistics belong to this branch.
    """

    def __init__(self, source: Discriminator):
        super().__init__()
        self.source = source
        self.norm2 = BatchNormalization(128)
        self.norm3 = BatchNormalization(256)
        self.norm4 = BatchNormalization(512)

    def forward(self, inputs: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        return _patch_logits(self.source, self, inputs, targets)


def _patch_logits(weights: Discriminator, branch: nn.Module,
                  inputs: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
    if inputs.shape[0] != targets.shape[0] or inputs.shape[-2:] != targets.shape[-2:]:
        raise ValueError(
            f"Input and target batches differ: {tuple(inputs.shape)} vs {tuple(targets.shape)}"
        )
    if min(inputs.shape[-2:]) < 24:
        raise ValueError(f"PatchGAN needs images of at least 24x24, got {tuple(inputs.shape[-2:])}")

    x = torch.cat([inputs, targets], dim=1)
    x = weights.act(weights.conv1(x))
    x = weights.act(branch.norm2(weights.conv2(x)))
    x = weights.act(branch.norm3(weights.conv3(x)))
    x = F.pad(x, (1, 1, 1, 1))
    x = weights.act(branch.norm4(weights.conv4(x)))
    x = F.pad(x, (1, 1, 1, 1))
    return weights.last(x)


class Pix2Pix(nn.Module):
    """
    U-Net generator and PatchGAN discriminator wired for adversarial training.
    """

    def __init__(self,
                 in_channels: int = INPUT_CHANNELS,
                 out_channels: int = OUTPUT_CHANNELS,
                 image_size: int = IMAGE_SIZE,
                 device: Optional[torch.device] = None):
        super().__init__()

        self.in_channels = in_channels
        self.out_channels = out_channels
        self.image_size = image_size

        self.generator = Generator(in_channels, out_channels, image_size)
        self.discriminator = Discriminator(in_channels, out_channels)
        self.fake_discriminator = self.discriminator.share()

        self.device = device if device is not None else get_device()
        self.to(self.device)

    def forward(self, inputs: torch.Tensor,
                targets: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Build the full adversarial graph.

        Returns:
            Tuple of (real_logits, fake_logits, generated)
        """
        generated = self.generator(inputs)
        real_logits = self.discriminator(inputs, targets)
        fake_logits = self.fake_discriminator(inputs, generated)
        return real_logits, fake_logits, generated

    def translate(self, inputs: torch.Tensor) -> torch.Tensor:
        with torch.no_grad():
            return self.generator(inputs.to(self.device))

    def reset_parameters(self):
        self.generator.reset_parameters()
        self.discriminator.reset_parameters()
        for module in (self.fake_discriminator.norm2, self.fake_discriminator.norm3,
                       self.fake_discriminator.norm4):
            module.reset_parameters()

    def generator_variables(self):
        return trainable_variables(self.generator)

    def discriminator_variables(self):
        return trainable_variables(self.discriminator)


if __name__ == "__main__":
    model = Pix2Pix(image_size=64)

    inputs = torch.randn(2, INPUT_CHANNELS, 64, 64, device=model.device)
    targets = torch.randn(2, OUTPUT_CHANNELS, 64, 64, device=model.device)
    real_logits, fake_logits, generated = model(inputs, targets)

    print(f"pix2pix Model Summary:")
    print(f"  Generator parameters: {count_parameters(model.generator):,}")
    print(f"  Discriminator parameters: {count_parameters(model.discriminator):,}")
    print(f"  Generated shape: {generated.shape}")
    print(f"  Patch logits shape: {real_logits.shape}")
