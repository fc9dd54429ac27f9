"""Checksum utilities for deriving deterministic document identifiers."""

import hashlib


class ChecksumCalculator:
    """Calculates SHA-256 checksums of raw document bodies."""

    def calculate_sha256(self, data: bytes) -> str:
        """Calculate SHA-256 checksum of data.

        Called once per restored document, so it does not log.

        Args:
            data: Data to checksum

        Returns:
            Hexadecimal SHA-256 checksum (64 characters)
        """
        return hashlib.sha256(data).hexdigest()
