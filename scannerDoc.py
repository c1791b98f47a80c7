"""Windowed depth-of-coverage aggregation over a stream of BAM records.

Two aggregators share one contract: ``CoverageAggregator`` accumulates
per-base depth and reports its mean and standard deviation per window,
``FragmentsAggregator`` counts one representative position per fragment.
A fresh aggregator is built for every scanned region.
"""
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional
import logging

import numpy as np

from utils import COUNT_KINDS, CollectDocConfig, ConfigError, GenomicInterval, num_windows
from utilsPE import SKIP_FLAGS, firstPairObs, fragmentMidpoint, is_malformed, is_rec_translocation, \
    unclippedFraction

logger = logging.getLogger(__name__)

# Number of records between two progress callbacks.
PROGRESS_EVERY = 10_000


@dataclass(frozen=True)
class RegionStats:
    start: int
    end: int
    cov: float
    cov_sd: Optional[float]
    mean_mapq: float


def skip_record(rec, config: CollectDocConfig) -> bool:
    """Records that never contribute to any window."""
    if is_malformed(rec):
        return True
    if rec.flag & SKIP_FLAGS:
        return True
    if rec.mapping_quality < config.min_mapq:
        return True
    return unclippedFraction(rec) < config.min_unclipped


def _mean_mapqs(mapq_sum, mapq_count):
    out = np.full(len(mapq_sum), np.nan)
    np.divide(mapq_sum, mapq_count, out=out, where=mapq_count > 0)
    return out


class BamRecordAggregator:
    """Contract shared by the aggregators; holds no state itself."""

    def put_fetched_records(self, records: Iterable, progress_callback: Optional[Callable[[int], None]] = None):
        raise NotImplementedError

    def num_processed(self) -> int:
        raise NotImplementedError

    def num_skipped(self) -> int:
        raise NotImplementedError

    def num_regions(self) -> int:
        raise NotImplementedError

    def get_stats(self, region_id: int) -> RegionStats:
        raise NotImplementedError


def _scan(records, put_record, progress_callback):
    count = 0
    for rec in records:
        put_record(rec)
        count += 1
        if progress_callback is not None and count % PROGRESS_EVERY == 0:
            progress_callback(rec.reference_start)
    if progress_callback is not None:
        progress_callback(-1)


class CoverageAggregator(BamRecordAggregator):
    def __init__(self, config: CollectDocConfig, contig: GenomicInterval):
        self.config = config
        self.contig = contig
        self.window_length = config.window_length
        self.n_windows = num_windows(contig, self.window_length)

        self._num_processed = 0
        self._num_skipped = 0
        # In-flight windows: ordinal -> per-base depth.
        self._open = {}
        # Lowest window ordinal that may still receive depth.
        self._next_close = 0
        self._cov = np.zeros(self.n_windows)
        self._cov_sd = np.zeros(self.n_windows)
        self._mapq_sum = np.zeros(self.n_windows, dtype=np.int64)
        self._mapq_count = np.zeros(self.n_windows, dtype=np.int64)
        self._stats = None

    def _window_bounds(self, ordinal):
        start = self.contig.start + ordinal * self.window_length
        return start, min(start + self.window_length, self.contig.end)

    def _ordinal(self, pos):
        return (pos - self.contig.start) // self.window_length

    def _close_windows(self, upto):
        """Reduce all windows with ordinal < ``upto`` to their summary values."""
        upto = min(upto, self.n_windows)
        for ordinal in range(self._next_close, upto):
            depth = self._open.pop(ordinal, None)
            if depth is not None:
                self._cov[ordinal] = depth.sum() / len(depth)
                self._cov_sd[ordinal] = depth.std()
        self._next_close = max(self._next_close, upto)

    def _put_record(self, rec):
        self._num_processed += 1
        if skip_record(rec, self.config):
            self._num_skipped += 1
            return

        start = max(rec.reference_start, self.contig.start)
        end = min(rec.reference_end, self.contig.end)
        if start >= end:
            return
        first = self._ordinal(start)
        last = self._ordinal(end - 1)
        if first < self._next_close:
            logger.debug(f"Skipping out-of-order record {rec.query_name} at {rec.reference_start}")
            self._num_skipped += 1
            return

        # Input is position-sorted: nothing later can reach windows before ``first``.
        self._close_windows(first)

        self._mapq_sum[first:last + 1] += rec.mapping_quality
        self._mapq_count[first:last + 1] += 1

        for block_start, block_end in rec.get_blocks():
            block_start = max(block_start, self.contig.start)
            block_end = min(block_end, self.contig.end)
            pos = block_start
            while pos < block_end:
                ordinal = self._ordinal(pos)
                win_start, win_end = self._window_bounds(ordinal)
                depth = self._open.get(ordinal)
                if depth is None:
                    depth = self._open[ordinal] = np.zeros(win_end - win_start, dtype=np.int32)
                stop = min(block_end, win_end)
                depth[pos - win_start:stop - win_start] += 1
                pos = stop

    def _finalize(self):
        self._close_windows(self.n_windows)
        mean_mapqs = _mean_mapqs(self._mapq_sum, self._mapq_count)
        stats = []
        for ordinal in range(self.n_windows):
            start, end = self._window_bounds(ordinal)
            stats.append(RegionStats(start, end, float(self._cov[ordinal]), float(self._cov_sd[ordinal]),
                                     float(mean_mapqs[ordinal])))
        self._stats = stats

    def put_fetched_records(self, records, progress_callback=None):
        if self._stats is not None:
            raise RuntimeError("Aggregator already finalized, build a new one per region")
        _scan(records, self._put_record, progress_callback)
        self._finalize()

    def num_processed(self):
        return self._num_processed

    def num_skipped(self):
        return self._num_skipped

    def num_regions(self):
        return self.n_windows

    def get_stats(self, region_id):
        if not 0 <= region_id < self.n_windows:
            raise IndexError(f"Window {region_id} out of range [0, {self.n_windows})")
        if self._stats is None:
            self._finalize()
        return self._stats[region_id]


class FragmentsAggregator(BamRecordAggregator):
    """Counts each fragment once, in the window holding the fragment midpoint."""

    def __init__(self, config: CollectDocConfig, contig: GenomicInterval):
        self.config = config
        self.contig = contig
        self.window_length = config.window_length
        self.n_windows = num_windows(contig, self.window_length)

        self._num_processed = 0
        self._num_skipped = 0
        self._counts = np.zeros(self.n_windows, dtype=np.int64)
        self._mapq_sum = np.zeros(self.n_windows, dtype=np.int64)
        self._stats = None

    def _skip_pair(self, rec):
        if not rec.is_paired:
            return False
        if not rec.is_proper_pair or rec.mate_is_unmapped or is_rec_translocation(rec):
            return True
        # Only the leftmost mate stands for the fragment.
        return not firstPairObs(rec)

    def _put_record(self, rec):
        self._num_processed += 1
        if skip_record(rec, self.config) or self._skip_pair(rec):
            self._num_skipped += 1
            return
        pos = fragmentMidpoint(rec)
        if pos not in self.contig:
            self._num_skipped += 1
            return
        ordinal = (pos - self.contig.start) // self.window_length
        self._counts[ordinal] += 1
        self._mapq_sum[ordinal] += rec.mapping_quality

    def _finalize(self):
        mean_mapqs = _mean_mapqs(self._mapq_sum, self._counts)
        stats = []
        for ordinal in range(self.n_windows):
            start = self.contig.start + ordinal * self.window_length
            end = min(start + self.window_length, self.contig.end)
            cov = float(self._counts[ordinal])
            if self.config.normalize_counts:
                cov /= end - start
            stats.append(RegionStats(start, end, cov, None, float(mean_mapqs[ordinal])))
        self._stats = stats

    def put_fetched_records(self, records, progress_callback=None):
        if self._stats is not None:
            raise RuntimeError("Aggregator already finalized, build a new one per region")
        _scan(records, self._put_record, progress_callback)
        self._finalize()

    def num_processed(self):
        return self._num_processed

    def num_skipped(self):
        return self._num_skipped

    def num_regions(self):
        return self.n_windows

    def get_stats(self, region_id):
        if not 0 <= region_id < self.n_windows:
            raise IndexError(f"Window {region_id} out of range [0, {self.n_windows})")
        if self._stats is None:
            self._finalize()
        return self._stats[region_id]


def build_aggregator(config: CollectDocConfig, contig: GenomicInterval) -> BamRecordAggregator:
    if config.count_kind == "coverage":
        return CoverageAggregator(config, contig)
    elif config.count_kind == "fragments":
        return FragmentsAggregator(config, contig)
    raise ConfigError(f"count_kind must be one of {', '.join(COUNT_KINDS)}, got {config.count_kind!r}")


def collect_stats(aggregator: BamRecordAggregator) -> List[RegionStats]:
    return [aggregator.get_stats(i) for i in range(aggregator.num_regions())]
