"""
Segment upload contract.

This module defines the *interface only*: no segmentation, no retries.

Key invariants:
- upload_segment() is awaited once per segment, in increasing sequence
  order; the next segment is never offered before the previous one
  returned.
- Failure is signalled by raising. The upload sink turns any exception
  into UploadError and aborts the run.
- Retrying, if any, is the implementation's choice and stays inside
  upload_segment().
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class SegmentUploader(ABC):
    """
    Abstract interface for delivering one named segment to storage.
    """

    @abstractmethod
    async def upload_segment(self, name: str, data: bytes) -> None:
        """
        Persist `data` under `name`.

        Returns only once the segment is durably accepted.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release transport resources. Default: nothing to release."""
        return None
