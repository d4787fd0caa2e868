"""Sequence autoencoder - learns to reconstruct "normal" frame windows.

Trained only on normal audio; windows it cannot reconstruct well
(high reconstruction error) deviate from the learned signature.
"""

import torch
import torch.nn as nn
from typing import Dict
from pathlib import Path

from ..config import ModelConfig


class Encoder(nn.Module):
    """Compress a (W, F) window to a latent vector."""

    def __init__(self, config: ModelConfig):
        super().__init__()
        self.config = config
        self.rnn1 = nn.LSTM(config.n_features, config.hidden_dim, batch_first=True)
        self.rnn2 = nn.LSTM(config.hidden_dim, config.latent_dim, batch_first=True)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Args:
            x: (B, W, F)
        Returns:
            (B, latent_dim) final-step latent
        """
        x, _ = self.rnn1(x)  # (B, W, hidden)
        x, _ = self.rnn2(x)  # (B, W, latent)
        return x[:, -1]


class Decoder(nn.Module):
    """Reconstruct a window from the repeated latent vector."""

    def __init__(self, config: ModelConfig):
        super().__init__()
        self.config = config
        self.rnn = nn.LSTM(config.latent_dim, config.hidden_dim, batch_first=True)
        # Applied per step, output in [0, 1]
        self.proj = nn.Sequential(
            nn.Linear(config.hidden_dim, config.n_features),
            nn.Sigmoid(),
        )

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        """
        Args:
            z: (B, latent_dim)
        Returns:
            (B, W, F) reconstruction
        """
        x = z.unsqueeze(1).repeat(1, self.config.window_size, 1)  # (B, W, latent)
        x, _ = self.rnn(x)  # (B, W, hidden)
        return self.proj(x)


class SequenceAutoencoder(nn.Module):
    """Recurrent encoder/decoder over windows of normalized frames.

    Inputs are frames divided by 255 so both input and target live in [0, 1].
    """

    def __init__(self, config: ModelConfig):
        super().__init__()
        self.config = config
        self.encoder = Encoder(config)
        self.decoder = Decoder(config)

    def forward(self, x: torch.Tensor) -> Dict[str, torch.Tensor]:
        z = self.encoder(x)
        return {'reconstruction': self.decoder(z), 'latent': z}

    def reconstruction_error(self, x: torch.Tensor) -> torch.Tensor:
        """Per-window MSE, shape (B,)."""
        with torch.no_grad():
            recon = self.forward(x)['reconstruction']
            error = ((recon - x) ** 2).mean(dim=(1, 2))
        return error

    def save(self, path: str):
        """Save checkpoint."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        torch.save({
            'config': self.config.__dict__,
            'state_dict': self.state_dict(),
        }, path)

    @classmethod
    def from_checkpoint(cls, path: str, map_location: str = 'cpu') -> 'SequenceAutoencoder':
        """Load from checkpoint."""
        checkpoint = torch.load(path, map_location=map_location)

        config = ModelConfig(**checkpoint['config'])
        model = cls(config)
        model.load_state_dict(checkpoint['state_dict'])

        return model
