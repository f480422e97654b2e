"""Lightweight public tier and its forwarding client."""

from shadowpay.public.forwarding import ForwardedResponse, ForwardingClient

__all__ = ["ForwardedResponse", "ForwardingClient"]
