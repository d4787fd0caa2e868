"""Models for anomaly detection."""

from .autoencoder import SequenceAutoencoder

__all__ = ['SequenceAutoencoder']
