from __future__ import annotations

import abc
from typing import List

from find_moving_objects.utils.types import CandidateObject, ScanRecord


class BaseSegmenter(abc.ABC):
    @abc.abstractmethod
    def segment(self, scan: ScanRecord) -> List[CandidateObject]:
        """
        Input:
            scan: one ScanRecord
        Output:
            candidate objects ordered by increasing angle; the same scan must
            always produce the same candidates
        """
        raise NotImplementedError
