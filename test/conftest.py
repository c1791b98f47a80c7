"""
Pytest fixtures: synthetic alignments, BAM and FASTA files.
"""

import pysam
import pytest

from utils import CollectDocConfig


CONTIG_LENGTHS = [("chr1", 1000), ("chr2", 1200), ("chrX", 800)]


@pytest.fixture
def bam_header():
    return pysam.AlignmentHeader.from_dict({
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": length} for name, length in CONTIG_LENGTHS],
        "RG": [{"ID": "rg1", "SM": "sample1"}],
    })


@pytest.fixture
def make_read(bam_header):
    """Factory for ``pysam.AlignedSegment`` records."""
    counter = [0]

    def _make_read(start, cigar="100M", contig="chr1", mapq=60, flag=0, name=None,
                   mate_start=None, tlen=0, mate_contig=None):
        counter[0] += 1
        read = pysam.AlignedSegment(bam_header)
        read.query_name = name or f"read{counter[0]}"
        read.flag = flag
        read.reference_name = contig
        read.reference_start = start
        read.mapping_quality = mapq
        read.cigarstring = cigar
        query_len = sum(length for op, length in read.cigartuples
                        if op in (pysam.CMATCH, pysam.CINS, pysam.CSOFT_CLIP, pysam.CEQUAL, pysam.CDIFF))
        read.query_sequence = "A" * query_len
        read.query_qualities = pysam.qualitystring_to_array("I" * query_len)
        if mate_start is not None:
            read.next_reference_name = mate_contig or contig
            read.next_reference_start = mate_start
            read.template_length = tlen
        return read

    return _make_read


@pytest.fixture
def make_pair(make_read):
    """Factory for a properly paired, FR-oriented read pair."""
    def _make_pair(start, mate_start, length=100, contig="chr1", mapq=60, name=None, extra_flag=0):
        tlen = mate_start + length - start
        flag1 = pysam.FPAIRED | pysam.FPROPER_PAIR | pysam.FMREVERSE | pysam.FREAD1 | extra_flag
        flag2 = pysam.FPAIRED | pysam.FPROPER_PAIR | pysam.FREVERSE | pysam.FREAD2 | extra_flag
        first = make_read(start, f"{length}M", contig=contig, mapq=mapq, flag=flag1, name=name,
                          mate_start=mate_start, tlen=tlen)
        second = make_read(mate_start, f"{length}M", contig=contig, mapq=mapq, flag=flag2,
                           name=first.query_name, mate_start=start, tlen=-tlen)
        return first, second

    return _make_pair


@pytest.fixture
def write_bam(tmp_path, bam_header):
    """Write records to a sorted, indexed BAM file and return its path."""
    def _write_bam(reads, name="sample.bam"):
        path = tmp_path / name
        with pysam.AlignmentFile(str(path), "wb", header=bam_header) as out:
            for read in sorted(reads, key=lambda r: (r.reference_id, r.reference_start)):
                out.write(read)
        pysam.index(str(path))
        return path

    return _write_bam


@pytest.fixture
def write_fasta(tmp_path):
    """Write ``{name: sequence}`` to an indexed FASTA file and return its path."""
    def _write_fasta(seqs, name="ref.fa"):
        path = tmp_path / name
        with open(path, "w") as f:
            for contig, seq in seqs.items():
                f.write(f">{contig}\n")
                for i in range(0, len(seq), 60):
                    f.write(seq[i:i + 60] + "\n")
        pysam.faidx(str(path))
        return path

    return _write_fasta


@pytest.fixture
def doc_config():
    return CollectDocConfig(window_length=500, count_kind="coverage", min_mapq=0, min_unclipped=0.6)
