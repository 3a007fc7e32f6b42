"""Client for the matrix referral program on Solana."""

from matrix_client.config import MatrixConfig, load_config
from matrix_client.reconstruct import reconstruct
from matrix_client.registration import verify_and_register

__all__ = ["MatrixConfig", "load_config", "reconstruct", "verify_and_register"]
__version__ = "0.1.0"
