"""Capability interfaces consumed by the composers and the session."""
from .chain import ChainClient
from .flash_loan import FlashLoanProvider
from .lending_protocol import LendingProtocol
from .price_oracle import PriceOracle
from .swap import SwapRouter
from .transport import Signer, TransactionEncoder, Transport

__all__ = [
    "ChainClient",
    "FlashLoanProvider",
    "LendingProtocol",
    "PriceOracle",
    "Signer",
    "SwapRouter",
    "TransactionEncoder",
    "Transport",
]
