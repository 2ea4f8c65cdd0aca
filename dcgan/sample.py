"""
DCGAN Sampler for generating images from a trained generator.
"""

import os

import torch

from dcgan.model import DCGAN, NOISE_DIM, IMAGE_SIZE, NUM_CHANNELS
from gan_ops.utils import get_device, save_image_grid


class DCGANSampler:
    """
    Loads a trained DCGAN checkpoint and generates images from noise.
    """

    def __init__(self, model_path: str):
        """
        Initialize DCGAN sampler.

        Args:
            model_path: Path to a checkpoint written by the trainer
        """
        self.device = get_device()
        self.model_path = model_path

        self.model = self._load_model(model_path)
        self.model.eval()

        print(f"Loaded DCGAN model from {model_path}")
        print(f"Noise dimension: {self.model.noise_dim}")
        print(f"Image size: {self.model.image_size}")
        print(f"Using device: {self.device}")

    def _load_model(self, model_path: str) -> DCGAN:
        checkpoint = torch.load(model_path, map_location=self.device, weights_only=False)
        if 'model_state_dict' not in checkpoint:
            raise ValueError(f"{model_path} is not a DCGAN checkpoint")

        config = checkpoint.get('config') or {}
        model = DCGAN(
            noise_dim=config.get('noise_dim', NOISE_DIM),
            image_size=config.get('image_size', IMAGE_SIZE),
            channels=config.get('in_channels', NUM_CHANNELS),
            device=self.device,
        )
        model.load_state_dict(checkpoint['model_state_dict'])
        return model

    def sample_random(self, num_samples: int = 16) -> torch.Tensor:
        return self.model.sample(num_samples=num_samples)

    def sample_from_latent(self, z: torch.Tensor) -> torch.Tensor:
        """
        Sample images from specific noise vectors.

        Args:
            z: Noise of shape (batch_size, noise_dim)

        Returns:
            Generated image tensor
        """
        if z.dim() != 2 or z.size(1) != self.model.noise_dim:
            raise ValueError(f"Expected noise of shape (N, {self.model.noise_dim}), got {tuple(z.shape)}")
        return self.model.sample(z=z)

    def interpolate_latent(self, z1: torch.Tensor, z2: torch.Tensor,
                           num_steps: int = 10) -> torch.Tensor:
        """
        Interpolate linearly between two noise vectors.

        Args:
            z1: First noise vector, shape (noise_dim,) or (1, noise_dim)
            z2: Second noise vector
            num_steps: Number of interpolation steps

        Returns:
            Images for each step, first image generated from z1
        """
        z1 = z1.reshape(1, -1).to(self.device)
        z2 = z2.reshape(1, -1).to(self.device)
        alphas = torch.linspace(0, 1, num_steps, device=self.device).unsqueeze(1)
        interpolated_z = (1 - alphas) * z1 + alphas * z2
        return self.sample_from_latent(interpolated_z)

    def save_samples(self, samples: torch.Tensor, filepath: str, nrow: int = 4):
        """
        Save generated samples as a grid image.

        Args:
            samples: Generated image tensor in [-1, 1]
            filepath: Path to save the image
            nrow: Number of images per row
        """
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        save_image_grid(samples, filepath, nrow=nrow)

        print(f"Saved samples to {filepath}")
