import logging
import math
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

import numpy as np
import pysam

from referenceStats import ReferenceStats, ReferenceWindowStats
from scannerDoc import RegionStats
from utils import GenomicInterval

logger = logging.getLogger(__name__)

DOC_COLLECTOR_VERSION = "0.1.0"
WINDOW_ALLELES = ("N", "<WINDOW>")


def guess_bcf_format(path: str) -> str:
    """Return the ``pysam.VariantFile`` write mode for ``path``."""
    if path.endswith(".bcf"):
        return "wb"
    elif path.endswith(".vcf.gz"):
        return "wz"
    return "w"


def build_header(samples: List[str], contigs: List[GenomicInterval], path_reference: Optional[str] = None,
                 file_date: Optional[str] = None) -> pysam.VariantHeader:
    hdr = pysam.VariantHeader()
    hdr.add_meta("fileDate", value=file_date or datetime.now().strftime("%Y%m%d"))
    hdr.add_meta("source", value="DocCollector" + DOC_COLLECTOR_VERSION)
    if path_reference:
        hdr.add_meta("reference", value=str(path_reference))
    for contig in contigs:
        hdr.contigs.add(contig.contig, length=contig.end)

    hdr.add_meta('ALT', items=[('ID', 'WINDOW'),
                               ('Description', "Record describes a window for read or coverage counting")])
    hdr.add_meta('INFO', items=[('ID', 'END'), ('Number', 1), ('Type', 'Integer'),
                                ('Description', "Window end")])
    hdr.add_meta('INFO', items=[('ID', 'MAPQ'), ('Number', 1), ('Type', 'Float'),
                                ('Description', "Mean MAPQ value across samples for approximating mapability")])
    hdr.add_meta('INFO', items=[('ID', 'GC'), ('Number', 1), ('Type', 'Float'),
                                ('Description', "Reference GC fraction, if reference FASTA file was given")])
    hdr.add_meta('INFO', items=[('ID', 'GAP'), ('Number', 0), ('Type', 'Flag'),
                                ('Description', "Window overlaps with N in reference (gap)")])
    hdr.add_meta('FORMAT', items=[('ID', 'GT'), ('Number', 1), ('Type', 'String'), ('Description', "Genotype")])
    hdr.add_meta('FORMAT', items=[('ID', 'MQ'), ('Number', 1), ('Type', 'Float'),
                                  ('Description', "Mean read MAPQ from region")])
    # The meaning of RCV depends on the counting approach (fragments vs. coverage).
    hdr.add_meta('FORMAT', items=[('ID', 'RCV'), ('Number', 1), ('Type', 'Float'),
                                  ('Description', "Raw coverage value")])
    hdr.add_meta('FORMAT', items=[('ID', 'RCVSD'), ('Number', 1), ('Type', 'Float'),
                                  ('Description', "Raw coverage standard deviation")])

    for sample in samples:
        hdr.add_sample(sample)
    return hdr


def build_bcf_writer(path: str, samples: List[str], contigs: List[GenomicInterval],
                     path_reference: Optional[str] = None) -> pysam.VariantFile:
    header = build_header(samples, contigs, path_reference)
    return pysam.VariantFile(path, guess_bcf_format(path), header=header)


def write_region_records(writer: pysam.VariantFile, contig: str, stats: List[RegionStats],
                         ref_stats: Optional[ReferenceStats] = None) -> int:
    """Write one record per window of ``contig``, in window order."""
    for ordinal, region in enumerate(stats):
        rec = writer.new_record(contig=contig, start=region.start, stop=region.end, alleles=WINDOW_ALLELES,
                                id=f"{contig}:{region.start + 1}-{region.end}")

        if ref_stats is not None:
            window = ref_stats[ordinal]
            if not math.isnan(window.gc_content):
                rec.info['GC'] = window.gc_content
            if window.has_gap:
                rec.info['GAP'] = True
        if not math.isnan(region.mean_mapq):
            rec.info['MAPQ'] = region.mean_mapq

        sample = rec.samples[0]
        sample['GT'] = (None, None)
        sample['RCV'] = region.cov
        if region.cov_sd is not None:
            sample['RCVSD'] = region.cov_sd
        if not math.isnan(region.mean_mapq):
            sample['MQ'] = region.mean_mapq

        writer.write(rec)
    return len(stats)


def has_reference(header: pysam.VariantHeader) -> bool:
    return any(record.key == "reference" for record in header.records)


def iter_window_records(path: str) -> Iterator[Tuple[str, RegionStats, Optional[ReferenceWindowStats]]]:
    """Read back the windows written by ``write_region_records``."""
    with pysam.VariantFile(path) as reader:
        with_reference = has_reference(reader.header)
        for rec in reader:
            sample = rec.samples[0]
            mean_mapq = rec.info.get('MAPQ')
            stats = RegionStats(
                start=rec.start,
                end=rec.stop,
                cov=sample['RCV'],
                cov_sd=sample.get('RCVSD'),
                mean_mapq=math.nan if mean_mapq is None else mean_mapq,
            )
            ref_window = None
            if with_reference:
                gc = rec.info.get('GC')
                ref_window = ReferenceWindowStats(math.nan if gc is None else gc, bool(rec.info.get('GAP', False)))
            yield rec.contig, stats, ref_window


def format_median_line(sample: str, on_autosomes: float, by_chrom) -> str:
    # Coverage values are stored as 32-bit floats, print them at that precision.
    # The underscore prefix keeps htslib from rejecting keys that start with a digit.
    fields = [f"ID={sample}", f"autosomes={np.float32(on_autosomes)}"]
    fields += [f"_{contig}={np.float32(value)}" for contig, value in sorted(by_chrom.items())]
    return "##median-coverage=<" + ",".join(fields) + ">"


def perform_final_write(path_in: str, path_out: str, doc_median_info) -> None:
    """Copy ``path_in`` to ``path_out`` adding the median coverage header line."""
    with pysam.VariantFile(path_in) as reader:
        samples = list(reader.header.samples)
        if not samples:
            raise ValueError(f"No sample in coverage file {path_in}")
        header = reader.header.copy()
        header.add_line(format_median_line(samples[0], doc_median_info.on_autosomes, doc_median_info.by_chrom))

        with pysam.VariantFile(path_out, guess_bcf_format(path_out), header=header) as writer:
            for rec in reader:
                rec.translate(writer.header)
                writer.write(rec)

    if path_out.endswith(".vcf.gz"):
        pysam.tabix_index(path_out, preset="vcf", force=True)
