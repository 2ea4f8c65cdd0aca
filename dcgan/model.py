"""
Deep Convolutional GAN (DCGAN) graphs.

The generator projects Gaussian noise through a dense layer and three
transposed convolutions into an image. The discriminator maps an image to a
single real/fake logit with two strided convolutions and a dense layer. A
shared-weights discriminator applies the same variables to a second input
(the generated images) without declaring any of its own.
"""

from typing import Optional, Tuple

import torch
import torch.nn as nn

from gan_ops.layers import (
    BatchNormalization, Conv2D, Conv2DTranspose, Dense, Dropout, LeakyReLU,
    LEAKY_ALPHA,
)
from gan_ops.optim import trainable_variables
from gan_ops.utils import count_parameters, get_device


NOISE_DIM = 100
IMAGE_SIZE = 28
NUM_CHANNELS = 1
DROPOUT_RATE = 0.3
KERNEL_SIZE = 5


class Generator(nn.Module):
    """
    DCGAN Generator.

    noise -> dense -> fixed batchnorm -> leaky relu -> reshape to
    (256, size/4, size/4) -> 3 transposed convolutions (strides 1, 2, 2),
    each but the last followed by batchnorm and leaky relu.
    """

    def __init__(self,
                 noise_dim: int = NOISE_DIM,
                 image_size: int = IMAGE_SIZE,
                 channels: int = NUM_CHANNELS,
                 base_filters: int = 256):
        """
        Initialize the generator.

        Args:
            noise_dim: Dimension of the noise input
            image_size: Height and width of the generated images
            channels: Number of output channels (1 for MNIST)
            base_filters: Channels of the reshaped dense projection
        """
        super().__init__()

        if image_size % 4 != 0:
            raise ValueError(f"image_size must be divisible by 4, got {image_size}")

        self.noise_dim = noise_dim
        self.image_size = image_size
        self.channels = channels
        self.base_filters = base_filters
        self.initial_size = image_size // 4

        units = self.initial_size * self.initial_size * base_filters

        # Dense weight starts as N(0, 1) * 0.01
        self.dense = Dense(noise_dim, units, use_bias=False, kernel_initializer="normal", stddev=0.01)
        # Dense output is normalized with constant statistics (mean 0, variance 1)
        self.bn0 = BatchNormalization(units, fixed=True)
        self.act0 = LeakyReLU(LEAKY_ALPHA)

        self.deconv1 = Conv2DTranspose(base_filters, base_filters // 2, KERNEL_SIZE, stride=1)
        self.bn1 = BatchNormalization(base_filters // 2)
        self.act1 = LeakyReLU(LEAKY_ALPHA)

        self.deconv2 = Conv2DTranspose(base_filters // 2, base_filters // 4, KERNEL_SIZE, stride=2)
        self.bn2 = BatchNormalization(base_filters // 4)
        self.act2 = LeakyReLU(LEAKY_ALPHA)

        self.deconv3 = Conv2DTranspose(base_filters // 4, channels, KERNEL_SIZE, stride=2)

    def sample_noise(self, batch_size: int, device: Optional[torch.device] = None) -> torch.Tensor:
        """Draw standard normal noise of shape (batch_size, noise_dim)."""
        if device is None:
            device = self.dense.weight.device
        return torch.randn(batch_size, self.noise_dim, device=device)

    def forward(self, z: Optional[torch.Tensor] = None, batch_size: Optional[int] = None) -> torch.Tensor:
        """
        Forward pass of the generator.

        Args:
            z: Noise of shape (batch_size, noise_dim); drawn when None
            batch_size: Number of images to generate when z is None

        Returns:
            Generated images of shape (batch_size, channels, image_size, image_size)
        """
        if z is None:
            if batch_size is None:
                raise ValueError("Either z or batch_size must be given")
            z = self.sample_noise(batch_size)

        s = self.initial_size
        x = self.act0(self.bn0(self.dense(z)))
        x = x.view(x.size(0), self.base_filters, s, s)

        x = self.act1(self.bn1(self.deconv1(x, (s, s))))
        x = self.act2(self.bn2(self.deconv2(x, (2 * s, 2 * s))))
        return self.deconv3(x, (self.image_size, self.image_size))

    def reset_parameters(self):
        for module in self.modules():
            if module is not self and hasattr(module, 'reset_parameters'):
                module.reset_parameters()


class Discriminator(nn.Module):
    """
    DCGAN Discriminator.

    Two 5x5 stride-2 convolutions with leaky relu and dropout, then a dense
    layer producing one logit per image.
    """

    def __init__(self,
                 image_size: int = IMAGE_SIZE,
                 channels: int = NUM_CHANNELS,
                 dropout_rate: float = DROPOUT_RATE):
        super().__init__()

        if image_size % 4 != 0:
            raise ValueError(f"image_size must be divisible by 4, got {image_size}")

        self.image_size = image_size
        self.channels = channels
        self.dropout_rate = dropout_rate
        self.flatten_size = (image_size // 4) ** 2 * 128

        self.conv1 = Conv2D(channels, 64, KERNEL_SIZE, stride=2, padding="SAME")
        self.conv2 = Conv2D(64, 128, KERNEL_SIZE, stride=2, padding="SAME")
        self.fc1 = Dense(self.flatten_size, 1)

        self.act = LeakyReLU(LEAKY_ALPHA)
        self.dropout1 = Dropout(dropout_rate)
        self.dropout2 = Dropout(dropout_rate)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Forward pass of the discriminator.

        Args:
            x: Images of shape (batch_size, channels, image_size, image_size)

        Returns:
            Logits of shape (batch_size, 1)
        """
        return _discriminate(self, self, x)

    def get_features(self, x: torch.Tensor) -> torch.Tensor:
        """Flattened activations feeding the final dense layer."""
        return _features(self, self, x)

    def share(self) -> "SharedDiscriminator":
        """Build a second discriminator graph over this one's variables."""
        return SharedDiscriminator(self)

    def reset_parameters(self):
        self.conv1.reset_parameters()
        self.conv2.reset_parameters()
        self.fc1.reset_parameters()


class SharedDiscriminator(nn.Module):
    """
    Discriminator that reuses the variables of another discriminator.

    It owns only its dropout layers; the convolution and dense parameters
    are those of ``source``, so gradients computed through it accumulate on
    the source's parameters.
    """

    def __init__(self, source: Discriminator):
        super().__init__()
        self.source = source
        self.dropout1 = Dropout(source.dropout_rate)
        self.dropout2 = Dropout(source.dropout_rate)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return _discriminate(self.source, self, x)

    def get_features(self, x: torch.Tensor) -> torch.Tensor:
        return _features(self.source, self, x)


def _features(weights: Discriminator, branch: nn.Module, x: torch.Tensor) -> torch.Tensor:
    if x.dim() != 4 or tuple(x.shape[1:]) != (weights.channels, weights.image_size, weights.image_size):
        raise ValueError(
            f"Expected images of shape (N, {weights.channels}, {weights.image_size}, "
            f"{weights.image_size}), got {tuple(x.shape)}"
        )
    x = branch.dropout1(weights.act(weights.conv1(x)))
    x = branch.dropout2(weights.act(weights.conv2(x)))
    return x.reshape(x.size(0), weights.flatten_size)


def _discriminate(weights: Discriminator, branch: nn.Module, x: torch.Tensor) -> torch.Tensor:
    return weights.fc1(_features(weights, branch, x))


class DCGAN(nn.Module):
    """
    Generator plus discriminator wired for adversarial training.

    ``discriminator`` scores real images and ``fake_discriminator`` (sharing
    its variables) scores generated images.
    """

    def __init__(self,
                 noise_dim: int = NOISE_DIM,
                 image_size: int = IMAGE_SIZE,
                 channels: int = NUM_CHANNELS,
                 dropout_rate: float = DROPOUT_RATE,
                 device: Optional[torch.device] = None):
        super().__init__()

        self.noise_dim = noise_dim
        self.image_size = image_size
        self.channels = channels

        self.generator = Generator(noise_dim, image_size, channels)
        self.discriminator = Discriminator(image_size, channels, dropout_rate)
        self.fake_discriminator = self.discriminator.share()

        self.device = device if device is not None else get_device()
        self.to(self.device)

    def forward(self, real_images: torch.Tensor,
                z: Optional[torch.Tensor] = None) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Build the full adversarial graph.

        Args:
            real_images: Batch of real images
            z: Optional noise; drawn to match the real batch when None

        Returns:
            Tuple of (real_logits, fake_logits, fake_images)
        """
        if z is None:
            z = self.generator.sample_noise(real_images.size(0), device=real_images.device)
        fake_images = self.generator(z)
        real_logits = self.discriminator(real_images)
        fake_logits = self.fake_discriminator(fake_images)
        return real_logits, fake_logits, fake_images

    def sample(self, num_samples: int = 1, z: Optional[torch.Tensor] = None) -> torch.Tensor:
        """
        Sample images from the generator.

        Args:
            num_samples: Number of samples to generate
            z: Optional noise to generate from (if None, sample from prior)

        Returns:
            Generated image tensor
        """
        if z is None:
            z = self.generator.sample_noise(num_samples, device=self.device)

        was_training = self.generator.training
        self.generator.eval()
        try:
            with torch.no_grad():
                samples = self.generator(z.to(self.device))
        finally:
            self.generator.train(was_training)

        return samples

    def reset_parameters(self):
        """Re-run the initial assignment of every variable."""
        self.generator.reset_parameters()
        self.discriminator.reset_parameters()

    def generator_variables(self):
        return trainable_variables(self.generator)

    def discriminator_variables(self):
        return trainable_variables(self.discriminator)


if __name__ == "__main__":
    model = DCGAN()

    batch_size = 4
    real_images = torch.randn(batch_size, NUM_CHANNELS, IMAGE_SIZE, IMAGE_SIZE, device=model.device)
    real_logits, fake_logits, fake_images = model(real_images)

    print(f"DCGAN Model Summary:")
    print(f"  Generator parameters: {count_parameters(model.generator):,}")
    print(f"  Discriminator parameters: {count_parameters(model.discriminator):,}")
    print(f"  Generated shape: {fake_images.shape}")
    print(f"  Real logits shape: {real_logits.shape}")
    print(f"  Fake logits shape: {fake_logits.shape}")
    print(f"  Using device: {model.device}")
