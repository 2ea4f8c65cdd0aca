"""
Deep Convolutional GAN (DCGAN) for generating MNIST-sized images.

This module provides the generator, the discriminator and its
shared-weights variant, the adversarial losses and a training pipeline.
"""
