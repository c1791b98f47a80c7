# Config
from typing import Dict, Iterator, List, Optional
import logging
import os
import re

import numpy as np
import yaml

logger = logging.getLogger(__name__)

COUNT_KINDS = ("coverage", "fragments")
EMPTY_POLICIES = ("nan", "error")
DEFAULT_AUTOSOME_PATTERN = r"^(chr)?\d+$"


class ConfigError(ValueError):
    """Invalid configuration, raised before any scan starts."""


class CollectDocConfig:
    def __init__(self, window_length=1000, count_kind="coverage", min_mapq=0,
                 min_unclipped=0.6, normalize_counts=False):
        self.window_length = window_length
        self.count_kind = count_kind
        self.min_mapq = min_mapq
        self.min_unclipped = min_unclipped
        self.normalize_counts = normalize_counts

    def update(self, values: Dict):
        for key, value in values.items():
            if not hasattr(self, key):
                raise ConfigError(f"Unknown collect_doc_config setting: {key}")
            setattr(self, key, value)

    def check(self):
        if not isinstance(self.window_length, int) or self.window_length <= 0:
            raise ConfigError(f"window_length must be a positive integer, got {self.window_length!r}")
        if self.count_kind not in COUNT_KINDS:
            raise ConfigError(f"count_kind must be one of {', '.join(COUNT_KINDS)}, got {self.count_kind!r}")
        if not 0.0 <= self.min_unclipped <= 1.0:
            raise ConfigError(f"min_unclipped must be within [0, 1], got {self.min_unclipped}")
        if self.min_mapq < 0:
            raise ConfigError(f"min_mapq must not be negative, got {self.min_mapq}")

    def __repr__(self):
        return f"CollectDocConfig({self.__dict__})"


class Config:
    def __init__(self):
        self.collect_doc_config = CollectDocConfig()
        self.path_reference_fasta = None
        self.htslib_io_threads = 0
        self.autosome_pattern = DEFAULT_AUTOSOME_PATTERN
        self.empty_medians = "nan"

        self.path_input = ''
        self.path_output = ''
        self.path_config = None
        self.regions = None
        self.overwrite = False
        self.verbosity = 0

    def print_info(self):
        logger.info("Config Information:")
        for key, value in self.__dict__.items():
            logger.info(f"{key}: {value}")

    def load_file(self, path_config):
        """Apply settings from a YAML configuration file."""
        if not os.path.exists(path_config):
            raise FileNotFoundError(f"Configuration file not found: {path_config}")
        with open(path_config, 'r') as f:
            values = yaml.safe_load(f)
        self.apply_dict(values or {})

    def apply_dict(self, values: Dict):
        for key, value in values.items():
            if key == "collect_doc_config":
                self.collect_doc_config.update(value or {})
            elif key in ("path_reference_fasta", "htslib_io_threads", "autosome_pattern", "empty_medians"):
                setattr(self, key, value)
            else:
                raise ConfigError(f"Unknown configuration setting: {key}")

    def setup(self, args):
        self.path_input = args.input
        self.path_output = args.output
        self.path_config = args.config
        self.overwrite = args.overwrite
        self.verbosity = args.verbose
        if args.regions:
            self.regions = [tok for tok in args.regions.split(',') if tok]

        if self.path_config:
            logger.debug(f"Loading config file: {self.path_config}")
            self.load_file(self.path_config)

        # Command line wins over the configuration file.
        if args.genome:
            self.path_reference_fasta = args.genome
        if args.window_length is not None:
            self.collect_doc_config.window_length = args.window_length
        if args.count_kind is not None:
            self.collect_doc_config.count_kind = args.count_kind
        if args.threads is not None:
            self.htslib_io_threads = args.threads

    def check(self):
        self.collect_doc_config.check()
        if self.empty_medians not in EMPTY_POLICIES:
            raise ConfigError(f"empty_medians must be one of {', '.join(EMPTY_POLICIES)}, got {self.empty_medians!r}")
        try:
            re.compile(self.autosome_pattern)
        except re.error as e:
            raise ConfigError(f"Invalid autosome_pattern {self.autosome_pattern!r}: {e}")
        if self.path_reference_fasta and not os.path.isfile(self.path_reference_fasta):
            raise ConfigError(f"Reference file is missing: {self.path_reference_fasta}")
        if self.path_output not in ("-", "/dev/stdout") and os.path.exists(self.path_output) \
                and not self.overwrite:
            raise ConfigError(f"Output file already exists: {self.path_output}")


class GenomicInterval:
    def __init__(self, contig: str, start: int, end: int):
        if not contig:
            raise ValueError("Interval contig must not be empty")
        if start < 0 or start > end:
            raise ValueError(f"Invalid interval {contig}:[{start}, {end})")
        self.contig = contig
        self.start = start
        self.end = end

    def __len__(self):
        return self.end - self.start

    def __hash__(self):
        return hash((self.contig, self.start, self.end))

    def __eq__(self, other):
        return self.contig == other.contig and self.start == other.start and self.end == other.end

    def __contains__(self, pos):
        return self.start <= pos < self.end

    def __repr__(self):
        return f"{self.contig}:[{self.start}, {self.end})"

    def to_region_string(self):
        return f"{self.contig}:{self.start + 1:,}-{self.end:,}"


def num_windows(interval: GenomicInterval, window_length: int) -> int:
    if window_length <= 0:
        raise ConfigError(f"window_length must be positive, got {window_length}")
    return (len(interval) + window_length - 1) // window_length


def iter_windows(interval: GenomicInterval, window_length: int) -> Iterator[GenomicInterval]:
    """Yield consecutive windows covering ``interval``; the last one may be shorter."""
    if window_length <= 0:
        raise ConfigError(f"window_length must be positive, got {window_length}")
    for start in range(interval.start, interval.end, window_length):
        yield GenomicInterval(interval.contig, start, min(start + window_length, interval.end))


def parse_region(region: str, contig_lengths: Optional[Dict[str, int]] = None) -> GenomicInterval:
    """Parse ``chr``, ``chr:start-end`` or ``chr:start`` (1-based, inclusive, commas allowed)."""
    region = region.strip()
    if not region:
        raise ConfigError("Empty region string")
    contig, sep, rng = region.rpartition(':')
    if not sep or contig_lengths is not None and region in contig_lengths:
        contig, rng = region, ''
    length = None
    if contig_lengths is not None:
        if contig not in contig_lengths:
            raise ConfigError(f"Unknown contig in region: {region}")
        length = contig_lengths[contig]

    if not rng:
        if length is None:
            raise ConfigError(f"Region {region} needs explicit coordinates without contig lengths")
        return GenomicInterval(contig, 0, length)

    tokens = rng.replace(',', '').split('-')
    if len(tokens) > 2 or not all(tok.isdigit() for tok in tokens):
        raise ConfigError(f"Invalid region coordinates: {region}")
    start = int(tokens[0]) - 1
    if len(tokens) == 2:
        end = int(tokens[1])
    elif length is None:
        raise ConfigError(f"Region {region} needs an end coordinate without contig lengths")
    else:
        end = length
    if length is not None:
        end = min(end, length)
    if start < 0 or start > end:
        raise ConfigError(f"Invalid region coordinates: {region}")
    return GenomicInterval(contig, start, end)


def get_median(elements: List[float]) -> float:
    if len(elements) == 0:
        return float('nan')
    return float(np.median(np.asarray(elements, dtype=np.float64)))
