"""
X.509 certificate toolkit: key material, certificate/CSR builders, parser,
validator and PKCS#12 codec.
"""

__version__ = "0.1.0"
