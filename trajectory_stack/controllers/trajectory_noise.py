# In: trajectory_stack/controllers/trajectory_noise.py
from typing import Optional, Tuple

import torch

from .trajectory_types import ControllerConfig, ControlSequence


class NoiseGenerator:
    """
    Generates exploration noise for control sampling.

    Randomness is drawn only from the torch.Generator handed in per call,
    so two calls with equally seeded generators give identical samples.
    """
    def __init__(self, config: ControllerConfig):
        self.config = config
        self.device = config.device

        if config.v_std > config.velocity_limit and config.verbose:
            print(f" WARNING: v_std ({config.v_std}) > velocity_limit ({config.velocity_limit})")
            print("   This means noise is larger than velocity range!")

    def generate_noisy_controls(
        self,
        nominal_sequence: ControlSequence,
        generator: Optional[torch.Generator] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Returns (v_samples, w_samples) both shape [samples, horizon].
        Row 0 is the nominal sequence without noise.
        """
        K = self.config.num_samples
        T = self.config.horizon

        # Generate noise: [K,T]
        v_noise = torch.randn(K, T, generator=generator, device=self.device) * self.config.v_std
        w_noise = torch.randn(K, T, generator=generator, device=self.device) * self.config.w_std

        # Keep one unperturbed rollout of the nominal
        v_noise[0] = 0.0
        w_noise[0] = 0.0

        # Add to nominal (broadcasting: [T] -> [K, T])
        v_samples = nominal_sequence.vx.unsqueeze(0) + v_noise
        w_samples = nominal_sequence.wz.unsqueeze(0) + w_noise

        return v_samples, w_samples


def make_generator(seed: Optional[int], device: str = "cpu") -> torch.Generator:
    """Private generator for one cycle; unseeded generators draw a fresh seed"""
    generator = torch.Generator(device=device)
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(seed)
    return generator
