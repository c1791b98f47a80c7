import pysam

# Flags that always exclude a record from coverage counting.
SKIP_FLAGS = pysam.FUNMAP | pysam.FSECONDARY | pysam.FSUPPLEMENTARY | pysam.FQCFAIL | pysam.FDUP


def alignmentLength(rec):
    """Number of reference bases spanned by the alignment."""
    cigar = rec.cigartuples
    alen = 0
    for op, length in cigar:
        if op in [pysam.CMATCH, pysam.CEQUAL, pysam.CDIFF, pysam.CDEL, pysam.CREF_SKIP]:
            alen += length
    return alen


def unclippedFraction(rec):
    """Fraction of the read that is not soft- or hard-clipped."""
    clipped = 0
    total = 0
    for op, length in rec.cigartuples:
        if op in [pysam.CSOFT_CLIP, pysam.CHARD_CLIP]:
            clipped += length
        if op in [pysam.CMATCH, pysam.CEQUAL, pysam.CDIFF, pysam.CINS, pysam.CSOFT_CLIP, pysam.CHARD_CLIP]:
            total += length
    if total == 0:
        return 0.0
    return (total - clipped) / total


def is_malformed(rec):
    return not rec.cigartuples or rec.reference_start < 0 or rec.reference_end is None


def is_rec_translocation(rec):
    return rec.reference_id != rec.next_reference_id


def firstPairObs(rec):
    """Whether ``rec`` is the leftmost mate of its pair (ties broken by read 1)."""
    if rec.reference_start != rec.next_reference_start:
        return rec.reference_start < rec.next_reference_start
    return rec.is_read1


def fragmentMidpoint(rec):
    """Representative position of the fragment that ``rec`` belongs to.

    Paired reads use the middle of the template (only meaningful for the
    leftmost mate, where the template length is positive); unpaired reads use
    the middle of their own alignment.
    """
    if rec.is_paired and rec.template_length > 0:
        return rec.reference_start + rec.template_length // 2
    return rec.reference_start + alignmentLength(rec) // 2
