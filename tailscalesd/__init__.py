"""
tailscalesd - Prometheus HTTP service discovery for Tailscale tailnets
"""

__version__ = "0.1.0"
