"""ACM Gateway Protocol Integrations.

This module provides the device-facing side of the gateway:
- MLLP transport framing
- HL7 v2 alarm message decoding and enrichment
"""

from acm_gateway.integrations.base import (
    IntegrationError,
    IntegrationAdapter,
    FrameTooLargeError,
    DecodeError,
    MissingSegmentError,
    StoreError,
    LoadError,
)

__all__ = [
    "IntegrationError",
    "IntegrationAdapter",
    "FrameTooLargeError",
    "DecodeError",
    "MissingSegmentError",
    "StoreError",
    "LoadError",
]
