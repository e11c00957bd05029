"""
DAS-API integrity verification harness.

Compares a testing DAS-API deployment with a reference deployment request by
request, and validates compressed-asset proofs against on-chain tree state.
"""

__version__ = "0.1.0"
