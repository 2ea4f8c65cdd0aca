"""
Shared building blocks for the DCGAN and pix2pix networks.

This package provides the layer primitives, the Adam optimizer with
explicit moment accumulators and the training utilities used by both
models.
"""
