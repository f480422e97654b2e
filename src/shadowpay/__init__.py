"""ShadowPay relayer: isolated execution of privacy-pool deposits and withdrawals."""

__version__ = "0.1.0"
