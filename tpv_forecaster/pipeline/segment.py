"""
SegmentStage — partition merchants into segments.

Either clusters the validated registration table with ``Segmenter`` or, when
a precomputed ``assignment`` mapping is supplied, checks it is a total
partition and uses it as is. Output: ``SegmentationResult``.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import pandas as pd

from tpv_forecaster.models.meta import RunMetadata
from tpv_forecaster.pipeline.base import PipelineStage
from tpv_forecaster.segmentation.segmenter import Segmenter

logger = logging.getLogger(__name__)


class SegmentStage(PipelineStage):
    """Produce the SegmentAssignment for the run."""

    stage_name = "segment"

    def _execute(
        self,
        run: RunMetadata,
        registrations: pd.DataFrame,
        assignment: Optional[Mapping[str, int]] = None,
        **kwargs,
    ) -> int:
        if assignment is not None:
            logger.info("Using a precomputed segment assignment.")
            self.output = Segmenter.from_mapping(assignment, registrations.index)
        else:
            segmenter = Segmenter(self.config.segmentation, seed=self.config.seed)
            self.output = segmenter.fit(registrations)
        return len(self.output.assignment)
