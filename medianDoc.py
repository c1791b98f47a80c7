"""Per-contig and autosomal median coverage over the windows of a coverage file."""
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple
import logging
import math
import re

from VCFwriter import iter_window_records
from utils import DEFAULT_AUTOSOME_PATTERN, get_median

logger = logging.getLogger(__name__)


class EmptyCoverageError(ValueError):
    """No windows at all were found while computing medians."""


@dataclass(frozen=True)
class MedianReadDepthInfo:
    on_autosomes: float
    by_chrom: Dict[str, float] = field(default_factory=dict)


def is_autosome(contig: str, pattern: str = DEFAULT_AUTOSOME_PATTERN) -> bool:
    return re.match(pattern, contig) is not None


def compute_doc_median(values: Iterable[Tuple[str, float]], autosome_pattern: str = DEFAULT_AUTOSOME_PATTERN,
                       empty_policy: str = "nan") -> MedianReadDepthInfo:
    """Build medians from ``(contig, coverage)`` pairs.

    A run without any window yields NaN for the autosomal median and no
    per-contig values with ``empty_policy="nan"``, and raises
    ``EmptyCoverageError`` with ``empty_policy="error"``.
    """
    by_contig: Dict[str, List[float]] = OrderedDict()
    for contig, cov in values:
        by_contig.setdefault(contig, []).append(cov)

    if not by_contig:
        if empty_policy == "error":
            raise EmptyCoverageError("No coverage windows found, cannot compute medians")
        logger.warning("No coverage windows found, medians are undefined")
        return MedianReadDepthInfo(math.nan, {})

    autosomal = []
    by_chrom = {}
    for contig, covs in by_contig.items():
        by_chrom[contig] = get_median(covs)
        if is_autosome(contig, autosome_pattern):
            autosomal += covs
    if not autosomal:
        logger.warning("No autosomal windows found, autosomal median is undefined")
    return MedianReadDepthInfo(get_median(autosomal), by_chrom)


def load_doc_median(path: str, autosome_pattern: str = DEFAULT_AUTOSOME_PATTERN,
                    empty_policy: str = "nan") -> MedianReadDepthInfo:
    values = ((contig, stats.cov) for contig, stats, _ in iter_window_records(path))
    info = compute_doc_median(values, autosome_pattern, empty_policy)
    logger.info(f"Median coverage on autosomes: {info.on_autosomes}")
    for contig, median in info.by_chrom.items():
        logger.debug(f"Median coverage on {contig}: {median}")
    return info
