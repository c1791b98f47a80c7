import logging
import os
from typing import List, Optional

import pysam

from utils import GenomicInterval, parse_region

logger = logging.getLogger(__name__)


def build_chroms_bam(samfile: pysam.AlignmentFile) -> List[GenomicInterval]:
    """One interval per contig declared in the BAM header, in header order."""
    return [GenomicInterval(name, 0, length) for name, length in zip(samfile.references, samfile.lengths)]


def get_SM_tag(header_text: str, file_name: str) -> str:
    sm_identifiers = []
    for line in header_text.split('\n'):
        if line.startswith("@RG"):
            for key_value in line.split("\t"):
                if ":" in key_value:
                    field, value = key_value.split(":", 1)
                    if field == "SM" and value not in sm_identifiers:
                        sm_identifiers.append(value)

    if not sm_identifiers:
        return file_name
    if len(sm_identifiers) > 1:
        logger.warning(f"Multiple sample names (@RG:SM) present in the BAM file, using {sm_identifiers[0]}")
    return sm_identifiers[0]


def samples_from_file(path: str) -> List[str]:
    with pysam.AlignmentFile(path, "rb") as samfile:
        file_name = os.path.basename(path).split('.')[0]
        return [get_SM_tag(str(samfile.header), file_name)]


def resolve_regions(samfile: pysam.AlignmentFile, regions: Optional[List[str]]) -> List[GenomicInterval]:
    """Parse region strings against the BAM header; all contigs when none are given."""
    contigs = build_chroms_bam(samfile)
    if not regions:
        return contigs
    lengths = {c.contig: c.end for c in contigs}
    return [parse_region(region, lengths) for region in regions]


def open_indexed_bam(path: str, threads: int = 0) -> pysam.AlignmentFile:
    samfile = pysam.AlignmentFile(path, "rb", threads=max(1, threads))
    if not samfile.has_index():
        samfile.close()
        raise OSError(f"Alignment file {path} has no index")
    return samfile


def fetch_region(samfile: pysam.AlignmentFile, interval: GenomicInterval):
    """All records overlapping ``interval``, in position order."""
    if samfile.get_tid(interval.contig) < 0:
        raise KeyError(f"Contig {interval.contig} not found in alignment file {samfile.filename}")
    return samfile.fetch(interval.contig, interval.start, interval.end)
