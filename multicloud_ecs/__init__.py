"""
Provider-agnostic virtual machine control plane.

One normalized request shape for creating and managing instances across
cloud vendors, routed to the right vendor backend with tenant-scoped network
prerequisites resolved automatically.
"""

__version__ = "0.1.0"
