from dataclasses import dataclass
from typing import List
import logging
import math

import pysam

from utils import GenomicInterval, iter_windows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferenceWindowStats:
    gc_content: float
    has_gap: bool


def window_gc_stats(seq: str) -> ReferenceWindowStats:
    """GC fraction over the non-N bases of ``seq`` and whether it contains an N."""
    seq = seq.upper()
    n_count = seq.count('N')
    non_n = len(seq) - n_count
    if non_n == 0:
        gc = math.nan
    else:
        gc = (seq.count('G') + seq.count('C')) / non_n
    return ReferenceWindowStats(gc, n_count > 0)


class ReferenceStats:
    """Per-window GC content and gap flags of one contig interval."""

    def __init__(self, interval: GenomicInterval, window_length: int, windows: List[ReferenceWindowStats]):
        self.interval = interval
        self.window_length = window_length
        self.windows = windows

    def __len__(self):
        return len(self.windows)

    def __getitem__(self, ordinal):
        return self.windows[ordinal]

    def for_position(self, pos):
        return self.windows[(pos - self.interval.start) // self.window_length]

    @classmethod
    def from_sequence(cls, seq: str, window_length: int, interval: GenomicInterval = None):
        """Build from the sequence of ``interval`` (the whole of ``seq`` if not given)."""
        if interval is None:
            interval = GenomicInterval("sequence", 0, len(seq))
        if len(seq) != len(interval):
            raise ValueError(f"Sequence length {len(seq)} does not match interval {interval}")
        windows = [
            window_gc_stats(seq[w.start - interval.start:w.end - interval.start])
            for w in iter_windows(interval, window_length)
        ]
        return cls(interval, window_length, windows)

    @classmethod
    def from_path(cls, path_fasta: str, interval: GenomicInterval, window_length: int):
        logger.info(f"Computing reference GC content for {interval.to_region_string()}")
        with pysam.FastaFile(path_fasta) as fasta:
            if interval.contig not in fasta.references:
                raise KeyError(f"Contig {interval.contig} is not present in reference {path_fasta}")
            seq = fasta.fetch(interval.contig, interval.start, interval.end)
        return cls.from_sequence(seq, window_length, interval)
