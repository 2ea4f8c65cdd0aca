"""Configuration dictionaries for DCGAN and pix2pix training."""
