"""
DCGAN Trainer.

This module provides the training pipeline for the DCGAN: alternating
discriminator and generator updates, each network with its own Adam
optimizer and moment accumulators.
"""

import os
from typing import Any, Dict, Iterable, Optional

import numpy as np
import torch
from tqdm import tqdm

from configs.default_config_DCGAN import DEFAULT_CONFIG
from dcgan.losses import DCGANLoss
from dcgan.model import DCGAN
from gan_ops.utils import (
    set_seed, gradient_clip, save_checkpoint, load_checkpoint, get_device,
    log_hyperparameters, create_optimizer, create_dataloader, log_metrics,
    print_model_summary, save_image_grid, plot_losses,
)


def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration for training.

    Returns:
        Configuration dictionary (a fresh copy)
    """
    return dict(DEFAULT_CONFIG)


def _optimizer_kwargs(config: Dict[str, Any]) -> Dict[str, Any]:
    if config['optimizer_type'] in ('shadow_adam', 'adam', 'adamw'):
        return {'betas': (config['beta1'], config['beta2']), 'eps': config['epsilon']}
    return {}


class DCGANTrainer:
    """
    DCGAN Trainer for MNIST.
    Handles training loop, logging, and checkpointing.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the DCGAN trainer.

        Args:
            config: Configuration dictionary, overlaid on the defaults
        """
        self.config = {**get_default_config(), **config}
        config = self.config
        self.device = get_device()
        self.experiment_name = config['experiment_name']

        set_seed(config['seed'])

        self.model = DCGAN(
            noise_dim=config['noise_dim'],
            image_size=config['image_size'],
            channels=config['in_channels'],
            dropout_rate=config['dropout_rate'],
            device=self.device,
        )
        self.loss_fn = DCGANLoss()

        self.g_optimizer = create_optimizer(
            self.model.generator,
            optimizer_type=config['optimizer_type'],
            learning_rate=config['g_learning_rate'],
            **_optimizer_kwargs(config)
        )
        self.d_optimizer = create_optimizer(
            self.model.discriminator,
            optimizer_type=config['optimizer_type'],
            learning_rate=config['d_learning_rate'],
            **_optimizer_kwargs(config)
        )

        # Training state
        self.current_epoch = 0
        self.global_step = 0
        self.best_g_loss = float('inf')
        self.best_d_loss = float('inf')

        config['checkpoint_dir'] = os.path.join(config['checkpoint_dir'], self.experiment_name)
        config['log_dir'] = os.path.join(config['log_dir'], self.experiment_name)
        config['sample_dir'] = os.path.join(config['sample_dir'], self.experiment_name)
        os.makedirs(config['checkpoint_dir'], exist_ok=True)
        os.makedirs(config['log_dir'], exist_ok=True)
        os.makedirs(config['sample_dir'], exist_ok=True)

        log_hyperparameters(config, config['log_dir'])

        print_model_summary(self.model)

        if config['resume_from']:
            load_checkpoint(self, config['resume_from'])

    def train_step(self, batch) -> Dict[str, float]:
        """
        Single training step.

        The discriminator is updated first on detached generated images,
        then the generator is updated through the shared-weights
        discriminator.

        Args:
            batch: Batch of images, or a (images, labels) pair

        Returns:
            Dictionary containing loss values
        """
        real_images = batch[0] if isinstance(batch, (list, tuple)) else batch
        real_images = real_images.to(self.device)
        batch_size = real_images.size(0)

        z = self.model.generator.sample_noise(batch_size, device=self.device)

        # Train discriminator
        self.d_optimizer.zero_grad()
        fake_images = self.model.generator(z)
        real_logits = self.model.discriminator(real_images)
        fake_logits = self.model.fake_discriminator(fake_images.detach())
        d_loss, _ = self.loss_fn(real_logits, fake_logits)
        d_loss.backward()
        gradient_clip(self.model.discriminator, self.config['max_grad_norm'])
        self.d_optimizer.step()

        # Train generator
        self.g_optimizer.zero_grad()
        fake_logits = self.model.fake_discriminator(fake_images)
        _, g_loss = self.loss_fn(None, fake_logits)
        g_loss.backward()
        gradient_clip(self.model.generator, self.config['max_grad_norm'])
        self.g_optimizer.step()

        return {
            'd_loss': d_loss.item(),
            'g_loss': g_loss.item(),
        }

    def validate(self, val_loader: Iterable) -> Dict[str, float]:
        """
        Validation step.

        Args:
            val_loader: Validation dataloader

        Returns:
            Dictionary containing validation metrics
        """
        self.model.eval()
        total_d_loss = 0.0
        total_g_loss = 0.0
        num_batches = 0

        with torch.no_grad():
            for batch in val_loader:
                real_images = batch[0] if isinstance(batch, (list, tuple)) else batch
                real_logits, fake_logits, _ = self.model(real_images.to(self.device))
                d_loss, g_loss = self.loss_fn(real_logits, fake_logits)

                total_d_loss += d_loss.item()
                total_g_loss += g_loss.item()
                num_batches += 1

        self.model.train()

        if num_batches == 0:
            raise ValueError("Validation loader yielded no batches")

        return {
            'val_d_loss': total_d_loss / num_batches,
            'val_g_loss': total_g_loss / num_batches
        }

    def generate_samples(self, num_samples: Optional[int] = None) -> str:
        """
        Generate sample images and save them as a grid.

        Args:
            num_samples: Number of samples to generate

        Returns:
            Path of the saved grid
        """
        if num_samples is None:
            num_samples = self.config['num_sample_images']

        self.model.eval()
        samples = self.model.sample(num_samples=num_samples)
        samples_path = os.path.join(self.config['sample_dir'], f"samples_epoch_{self.current_epoch}.png")
        save_image_grid(samples, samples_path, nrow=4)
        self.model.train()

        return samples_path

    def train(self, train_loader: Optional[Iterable] = None, val_loader: Optional[Iterable] = None):
        """
        Main training loop.

        Args:
            train_loader: Training batches; MNIST is loaded when None
            val_loader: Validation batches; MNIST is loaded when None
        """
        print(f"Starting DCGAN training on {self.device}")
        print(f"Experiment: {self.experiment_name}")

        if train_loader is None or val_loader is None:
            mnist_train, mnist_val = create_dataloader(self.config, device=self.device, normalize=True, dataset='mnist')
            train_loader = train_loader if train_loader is not None else mnist_train
            val_loader = val_loader if val_loader is not None else mnist_val

        self.model.train()
        train_losses = []
        for epoch in range(self.current_epoch, self.config['num_epochs']):
            self.current_epoch = epoch

            train_losses = []
            pbar = tqdm(train_loader, desc=f"Epoch {epoch+1}/{self.config['num_epochs']}")

            for batch in pbar:
                step_losses = self.train_step(batch)
                train_losses.append(step_losses)

                pbar.set_postfix({
                    'D Loss': f"{step_losses['d_loss']:.4f}",
                    'G Loss': f"{step_losses['g_loss']:.4f}",
                })

                self.global_step += 1

            val_metrics = self.validate(val_loader)

            avg_d_loss = float(np.mean([l['d_loss'] for l in train_losses]))
            avg_g_loss = float(np.mean([l['g_loss'] for l in train_losses]))

            log_metrics(self.config['log_dir'], {
                'd_loss': avg_d_loss,
                'g_loss': avg_g_loss,
                'val_d_loss': val_metrics['val_d_loss'],
                'val_g_loss': val_metrics['val_g_loss'],
            }, epoch + 1)

            if val_metrics['val_g_loss'] < self.best_g_loss:
                self.best_g_loss = val_metrics['val_g_loss']
                self.best_d_loss = val_metrics['val_d_loss']
                save_checkpoint(self, is_best=True)

            if (epoch + 1) % self.config['save_every'] == 0:
                save_checkpoint(self, normal_save=True)

            if (epoch + 1) % self.config['sample_every'] == 0:
                self.generate_samples()

        if train_losses:
            plot_losses(os.path.join(self.config['log_dir'], "training_log.txt"),
                        os.path.join(self.config['log_dir'], "loss_plot.png"))
        print("Training completed!")
