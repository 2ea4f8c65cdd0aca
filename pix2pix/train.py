"""
pix2pix Trainer.

Trains the U-Net generator and PatchGAN discriminator on batches of
(input, target) image pairs supplied by the caller, with images scaled to
[-1, 1].
"""

import os
from typing import Any, Dict, Iterable, Optional

import numpy as np
import torch
from tqdm import tqdm

from configs.default_config_pix2pix import DEFAULT_CONFIG
from pix2pix.losses import Pix2PixLoss
from pix2pix.model import Pix2Pix
from gan_ops.utils import (
    set_seed, gradient_clip, save_checkpoint, load_checkpoint, get_device,
    log_hyperparameters, create_optimizer, log_metrics, print_model_summary,
    save_image_grid, plot_losses,
)


def get_default_config() -> Dict[str, Any]:
    return dict(DEFAULT_CONFIG)


def _split_pair(batch):
    if not isinstance(batch, (list, tuple)) or len(batch) != 2:
        raise ValueError("pix2pix batches must be (inputs, targets) pairs")
    return batch


class Pix2PixTrainer:
    """
    pix2pix Trainer.
    Handles training loop, logging, and checkpointing.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the pix2pix trainer.

        Args:
            config: Configuration dictionary, overlaid on the defaults
        """
        self.config = {**get_default_config(), **config}
        config = self.config
        self.device = get_device()
        self.experiment_name = config['experiment_name']

        set_seed(config['seed'])

        self.model = Pix2Pix(
            in_channels=config['in_channels'],
            out_channels=config['out_channels'],
            image_size=config['image_size'],
            device=self.device,
        )
        self.loss_fn = Pix2PixLoss(l1_lambda=config['l1_lambda'])

        optimizer_kwargs = {}
        if config['optimizer_type'] in ('shadow_adam', 'adam', 'adamw'):
            optimizer_kwargs = {'betas': (config['beta1'], config['beta2']), 'eps': config['epsilon']}

        self.g_optimizer = create_optimizer(
            self.model.generator,
            optimizer_type=config['optimizer_type'],
            learning_rate=config['g_learning_rate'],
            **optimizer_kwargs
        )
        self.d_optimizer = create_optimizer(
            self.model.discriminator,
            optimizer_type=config['optimizer_type'],
            learning_rate=config['d_learning_rate'],
            **optimizer_kwargs
        )

        # Training state
        self.current_epoch = 0
        self.global_step = 0
        self.best_g_loss = float('inf')
        self.best_d_loss = float('inf')
        self.example_batch = None

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

        Args:
            batch: Pair of (inputs, targets) tensors

        Returns:
            Dictionary containing loss values
        """
        inputs, targets = _split_pair(batch)
        inputs = inputs.to(self.device)
        targets = targets.to(self.device)

        generated = self.model.generator(inputs)

        # Train discriminator
        self.d_optimizer.zero_grad()
        real_logits = self.model.discriminator(inputs, targets)
        fake_logits = self.model.fake_discriminator(inputs, generated.detach())
        d_loss = self.loss_fn.discriminator_loss(real_logits, fake_logits)
        d_loss.backward()
        gradient_clip(self.model.discriminator, self.config['max_grad_norm'])
        self.d_optimizer.step()

        # Train generator
        self.g_optimizer.zero_grad()
        fake_logits = self.model.fake_discriminator(inputs, generated)
        g_loss, gan_loss, l1_loss = self.loss_fn.generator_loss(fake_logits, generated, targets)
        g_loss.backward()
        gradient_clip(self.model.generator, self.config['max_grad_norm'])
        self.g_optimizer.step()

        return {
            'd_loss': d_loss.item(),
            'g_loss': g_loss.item(),
            'gan_loss': gan_loss.item(),
            'l1_loss': l1_loss.item(),
        }

    def validate(self, val_loader: Iterable) -> Dict[str, float]:
        """
        Validation step.

        Args:
            val_loader: Validation pairs

        Returns:
            Dictionary containing validation metrics
        """
        totals = {'val_d_loss': 0.0, 'val_g_loss': 0.0, 'val_l1_loss': 0.0}
        num_batches = 0

        # Batch statistics are kept at evaluation time; the running
        # statistics are restored once the loop is done
        buffers = {name: buf.clone() for name, buf in self.model.named_buffers()}
        with torch.no_grad():
            for batch in val_loader:
                inputs, targets = _split_pair(batch)
                inputs = inputs.to(self.device)
                targets = targets.to(self.device)
                real_logits, fake_logits, generated = self.model(inputs, targets)
                d_loss = self.loss_fn.discriminator_loss(real_logits, fake_logits)
                g_loss, _, l1_loss = self.loss_fn.generator_loss(fake_logits, generated, targets)

                totals['val_d_loss'] += d_loss.item()
                totals['val_g_loss'] += g_loss.item()
                totals['val_l1_loss'] += l1_loss.item()
                num_batches += 1

            for name, buf in self.model.named_buffers():
                buf.copy_(buffers[name])

        if num_batches == 0:
            raise ValueError("Validation loader yielded no batches")

        return {name: value / num_batches for name, value in totals.items()}

    def generate_samples(self, batch=None) -> str:
        """
        Save input, target and generated images side by side.

        Args:
            batch: (inputs, targets) pair; the first seen batch when None

        Returns:
            Path of the saved grid
        """
        if batch is None:
            batch = self.example_batch
        if batch is None:
            raise ValueError("No example batch available for sampling")
        inputs, targets = _split_pair(batch)

        generated = self.model.translate(inputs)
        panels = [targets.to(self.device), generated]
        if inputs.size(1) == generated.size(1):
            panels.insert(0, inputs.to(self.device))
        rows = torch.cat(panels, dim=0)

        samples_path = os.path.join(self.config['sample_dir'], f"samples_epoch_{self.current_epoch}.png")
        save_image_grid(rows, samples_path, nrow=inputs.size(0))
        return samples_path

    def train(self, train_loader: Iterable, val_loader: Optional[Iterable] = None):
        """
        Main training loop.

        Args:
            train_loader: Iterable of (inputs, targets) batches
            val_loader: Optional iterable of (inputs, targets) batches;
                best-model selection uses training losses when None
        """
        print(f"Starting pix2pix training on {self.device}")
        print(f"Experiment: {self.experiment_name}")

        self.model.train()
        epoch_losses = []
        for epoch in range(self.current_epoch, self.config['num_epochs']):
            self.current_epoch = epoch

            epoch_losses = []
            pbar = tqdm(train_loader, desc=f"Epoch {epoch+1}/{self.config['num_epochs']}")

            for batch in pbar:
                if self.example_batch is None:
                    self.example_batch = _split_pair(batch)
                step_losses = self.train_step(batch)
                epoch_losses.append(step_losses)

                pbar.set_postfix({
                    'D Loss': f"{step_losses['d_loss']:.4f}",
                    'G Loss': f"{step_losses['g_loss']:.4f}",
                    'L1': f"{step_losses['l1_loss']:.4f}",
                })

                self.global_step += 1

            metrics = {
                name: float(np.mean([l[name] for l in epoch_losses]))
                for name in ('d_loss', 'g_loss', 'l1_loss')
            }
            if val_loader is not None:
                metrics.update(self.validate(val_loader))
                g_score, d_score = metrics['val_g_loss'], metrics['val_d_loss']
            else:
                g_score, d_score = metrics['g_loss'], metrics['d_loss']

            log_metrics(self.config['log_dir'], metrics, epoch + 1)

            if g_score < self.best_g_loss:
                self.best_g_loss = g_score
                self.best_d_loss = d_score
                save_checkpoint(self, is_best=True)

            if (epoch + 1) % self.config['save_every'] == 0:
                save_checkpoint(self, normal_save=True)

            if (epoch + 1) % self.config['sample_every'] == 0:
                self.generate_samples()

        if epoch_losses:
            plot_losses(os.path.join(self.config['log_dir'], "training_log.txt"),
                        os.path.join(self.config['log_dir'], "loss_plot.png"))
        print("Training completed!")
