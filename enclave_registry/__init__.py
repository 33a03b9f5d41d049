"""Enclave Registry - attestation-gated enclave identities and signed-message verification."""

__version__ = "0.1.0"
