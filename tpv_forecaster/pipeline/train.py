"""
TrainStage — fit one ensemble per (segment, horizon).

Steps
-----
1. Pre-select registration dummy columns against reference-month volume.
2. Build training and live frames per (segment, horizon).
3. Dispatch every job to the worker pool and join.
4. If any job failed, raise ``TrainingFailedError`` listing every failed
   pair; a partial set of models is never passed on.

Output: ``TrainOutput(jobs, report, registration_features)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from tpv_forecaster.features.horizon import HorizonDatasetBuilder, select_registration_features
from tpv_forecaster.ml.trainer import TrainingJob, TrainingReport, build_jobs, train_all
from tpv_forecaster.models.meta import RunMetadata
from tpv_forecaster.pipeline.base import PipelineStage
from tpv_forecaster.segmentation.encoding import one_hot_encode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainOutput:
    jobs: list[TrainingJob]
    report: TrainingReport
    registration_features: list[str]


class TrainStage(PipelineStage):
    """Train the (segment, horizon) ensembles."""

    stage_name = "train"

    def _execute(
        self,
        run: RunMetadata,
        completed: pd.DataFrame,
        registrations: pd.DataFrame,
        assignment: pd.Series,
        **kwargs,
    ) -> int:
        attributes = list(self.config.segmentation.attributes)
        selected = select_registration_features(
            registrations, completed, attributes, self.config.selection, seed=self.config.seed
        )
        dummies = one_hot_encode(registrations, attributes)[selected]
        builder = HorizonDatasetBuilder(completed, dummies)

        jobs = build_jobs(builder, assignment, list(self.config.forecast.horizons))
        report = train_all(jobs, self.config)
        report.raise_for_failures()

        self.output = TrainOutput(jobs=jobs, report=report, registration_features=selected)
        return len(report.models)
