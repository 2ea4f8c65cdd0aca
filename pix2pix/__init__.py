"""
pix2pix conditional GAN for paired image-to-image translation.

This module provides the U-Net generator, the PatchGAN discriminator,
their losses and a training pipeline over caller-supplied image pairs.
"""
