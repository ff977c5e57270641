"""
Takeoff Pipeline - legend-driven quantity takeoff for one plan
Each stage has one job and communicates through strict contracts:
scale calibration and annotation OCR run alongside legend segmentation and
classification, then every legend pattern is searched and measured in turn
"""

import time
import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Union
from concurrent.futures import CancelledError, ThreadPoolExecutor

from infrastructure.utils.raster_io import PlanImage, load_plan
from services.error_types import ConfigurationError
from services.legend_catalog import LegendElementCatalog, legend_catalog
from services.legend_segmenter import LegendSegmenter
from services.measurement_aggregator import MeasurementAggregator
from services.ocr_extractor import OCREngine, create_ocr_engine
from services.pattern_classifier import (
    LegendLabelReader, LegendPattern, OpenAIVisionClassifier, PatternClassifier, VisionLanguageClassifier
)
from services.pattern_matcher import PatternMatcher
from services.pipeline_context import RunContext
from services.pipeline_contracts import ElementResult, TakeoffReport
from services.scale_extractor import ScaleExtractor
from services.takeoff_config import TakeoffConfig
from services.text_annotation_extractor import TextAnnotationExtractor, correlate_annotations
from services.texture_features import extract_features
from utils.logging_utils import StageTimer, log_stage

logger = logging.getLogger(__name__)


class TakeoffPipeline:
    """
    Runs legend segmentation, classification, plan-wide matching and measurement
    """

    def __init__(
        self,
        config: Optional[TakeoffConfig] = None,
        ocr_engine: Optional[OCREngine] = None,
        vlm: Optional[VisionLanguageClassifier] = None,
        catalog: Optional[LegendElementCatalog] = None,
        use_vlm: bool = True
    ):
        self.config = config or TakeoffConfig()
        self.config.validate()
        self.catalog = catalog or legend_catalog
        self.ocr_engine = ocr_engine or create_ocr_engine(self.config.ocr)
        self.vlm = vlm if vlm is not None else self._default_vlm(use_vlm)

        self.scale_extractor = ScaleExtractor(
            self.ocr_engine, self.config.scale, self.config.ocr, self.config.legend
        )
        self.annotation_extractor = TextAnnotationExtractor(
            self.ocr_engine, self.config.annotations, self.config.ocr, self.catalog, self.config.legend
        )
        self.segmenter = LegendSegmenter(self.config.legend, self.config.sampling)
        self.matcher = PatternMatcher(self.config)
        self.aggregator = MeasurementAggregator(self.catalog)

    def _default_vlm(self, use_vlm: bool) -> Optional[VisionLanguageClassifier]:
        if not use_vlm or not self.config.vlm.enabled:
            logger.info("Vision-language classification disabled; using legend label keywords")
            return None
        try:
            return OpenAIVisionClassifier(self.config.vlm)
        except ConfigurationError as e:
            logger.warning(f"{e.message}; falling back to legend label keywords")
            return None

    def run(
        self,
        plan: Union[PlanImage, str, Path],
        cancel_event: Optional[threading.Event] = None,
        source_file: Optional[str] = None
    ) -> TakeoffReport:
        """
        Run the complete takeoff

        Raises:
            PlanLoadError: the plan could not be read or decoded
        """
        start_time = time.time()
        cancel_event = cancel_event or threading.Event()

        if not isinstance(plan, PlanImage):
            source_file = source_file or str(plan)
            plan = load_plan(plan)

        context = RunContext(source_file)
        diagnostics = context.diagnostics
        for note in self.config.advisories():
            diagnostics.info("config", note)

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="Takeoff_OCR") as executor:
            scale_future = executor.submit(self.scale_extractor.calibrate, plan, diagnostics)
            annotation_future = executor.submit(self.annotation_extractor.extract, plan, diagnostics)

            with log_stage("legend", {'location': self.config.legend.location}, context, logger):
                segmentation = self.segmenter.segment(plan)
            context.set_legend_bounds(segmentation.bounds)
            if not segmentation.swatches:
                diagnostics.warning("legend", "No pattern swatches found in the legend area",
                                    bounds=list(segmentation.bounds))

            label_reader = None
            if self.vlm is None:
                label_reader = LegendLabelReader(self.ocr_engine, segmentation, self.config.ocr)
            classifier = PatternClassifier(self.vlm, self.catalog, self.config.vlm, label_reader)
            with log_stage("classification", {'swatches': len(segmentation.swatches)}, context, logger):
                patterns = classifier.classify_swatches(segmentation.swatches, diagnostics)

            context.set_scale(scale_future.result())
            annotations = annotation_future.result()

        excluded = [context.legend_bounds] if self.config.scanning.exclude_legend else []
        results = self._measure_patterns(plan, patterns, excluded, context, cancel_event)

        results = correlate_annotations(results, annotations, self.config.annotations.max_distance)
        summary = self.aggregator.summarize(results)

        report = TakeoffReport(
            scale=context.scale,
            results=results,
            summary=summary,
            annotations=annotations,
            diagnostics=diagnostics.entries,
            processing_time_seconds=time.time() - start_time,
            stage_timings=context.timings,
            source_file=source_file,
            legend_bounds=context.legend_bounds
        )
        logger.info(f"Takeoff complete: {summary.total_elements} elements, {summary.total_matches} matches, "
                    f"{len(report.warnings)} warnings in {report.processing_time_seconds:.2f}s")
        logger.debug(f"Run context: {context.summary()}")
        return report

    def _measure_patterns(self, plan: PlanImage, patterns: List[LegendPattern], excluded,
                          context: RunContext, cancel_event: threading.Event) -> List[ElementResult]:
        """Search and measure the patterns one after another"""
        results: List[ElementResult] = []
        for pattern in patterns:
            with StageTimer("matching", f"Pattern search {pattern.element_type}", context, logger):
                descriptor = extract_features(pattern.source_image.pixels, self.config.texture)
                pattern = replace(pattern, feature_descriptor=descriptor)
                try:
                    matches = self.matcher.find_pattern(plan, pattern, excluded, cancel_event)
                except CancelledError:
                    context.diagnostics.warning(
                        "matching", f"Search cancelled at {pattern.element_type}; remaining patterns skipped",
                        completed=len(results), total=len(patterns)
                    )
                    break
            results.append(self.aggregator.element_result(pattern, matches, context.scale))
        return results


def run_takeoff(plan_path: Union[str, Path], config: Optional[TakeoffConfig] = None,
                use_vlm: bool = True) -> TakeoffReport:
    """Convenience wrapper: build a pipeline and run it on one plan file"""
    return TakeoffPipeline(config, use_vlm=use_vlm).run(plan_path)
