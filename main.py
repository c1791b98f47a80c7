import argparse
import logging
import os
import sys
import tempfile

from tqdm import tqdm

from interfaceUtils import fetch_region, open_indexed_bam, resolve_regions, samples_from_file, build_chroms_bam
from medianDoc import EmptyCoverageError, load_doc_median
from referenceStats import ReferenceStats
from scannerDoc import build_aggregator, collect_stats
from utils import Config, ConfigError, GenomicInterval
from VCFwriter import build_bcf_writer, perform_final_write, write_region_records

logger = logging.getLogger(__name__)

# Uncompressed VCF, so re-reading it does not make htslib look for an index.
SCRATCH_FILE_NAME = "tmp.vcf"


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description="DocCollector: collect depth of coverage evidence from BAM")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="increase verbosity")
    parser.add_argument("--overwrite", action="store_true", help="allow overwriting of output file")
    parser.add_argument("-c", "--config", help="YAML configuration file")
    parser.add_argument("-r", "--regions", help="comma-separated list of regions, e.g. chr1:1-1,000,000")
    parser.add_argument("-g", "--genome", help="reference FASTA file for GC content and gaps")
    parser.add_argument("-w", "--window-length", type=int, help="window length (default 1000)")
    parser.add_argument("-k", "--count-kind", help="coverage or fragments (default coverage)")
    parser.add_argument("-t", "--threads", type=int, help="htslib decompression threads")
    parser.add_argument("input", help="coordinate-sorted, indexed BAM file")
    parser.add_argument("output", help="output VCF/BCF file ('-' for stdout)")
    return parser.parse_args(argv)


def setup_logging(verbosity: int):
    logging.basicConfig(
        level=logging.DEBUG if verbosity > 0 else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


def _make_progress_bar(config: Config, region: GenomicInterval):
    if config.verbosity > 0 or config.path_output in ("-", "/dev/stdout"):
        return None
    return tqdm(total=len(region) // 1_000, desc=f"scanning {region.contig}", unit="Kbp", leave=False)


def process_region(config: Config, samfile, region: GenomicInterval, bcf_writer) -> int:
    """Scan one region and write its windows; returns the number of windows."""
    logger.info(f"Processing contig {region.to_region_string()}")
    doc_config = config.collect_doc_config
    aggregator = build_aggregator(doc_config, region)
    ref_stats = None
    if config.path_reference_fasta:
        ref_stats = ReferenceStats.from_path(config.path_reference_fasta, region, doc_config.window_length)

    if len(region) == 0:
        return 0

    progress_bar = _make_progress_bar(config, region)

    def on_progress(pos):
        if progress_bar is not None and pos >= 0:
            progress_bar.n = max(0, pos - region.start) // 1_000
            progress_bar.refresh()

    logger.info("Computing coverage...")
    try:
        aggregator.put_fetched_records(fetch_region(samfile, region), on_progress)
    finally:
        if progress_bar is not None:
            progress_bar.close()
    processed = aggregator.num_processed()
    skipped = aggregator.num_skipped()
    if processed:
        logger.debug(f"Processed {processed:,}, skipped {skipped:,} records "
                     f"({100.0 * (processed - skipped) / processed:.2f}% were processed)")
    else:
        logger.debug("No records in region")

    logger.info("Writing BCF with coverage information...")
    return write_region_records(bcf_writer, region.contig, collect_stats(aggregator), ref_stats)


def perform_collection(config: Config):
    config.check()

    with open_indexed_bam(config.path_input, config.htslib_io_threads) as samfile:
        contigs = build_chroms_bam(samfile)
        regions = resolve_regions(samfile, config.regions)
        samples = samples_from_file(config.path_input)

        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_out = os.path.join(tmp_dir, SCRATCH_FILE_NAME)
            logger.info("Scan BAM file for coverage information; write results to temporary file.")
            # The scratch file must be closed before the median pass re-reads it.
            with build_bcf_writer(tmp_out, samples, contigs, config.path_reference_fasta) as writer:
                for region in regions:
                    process_region(config, samfile, region, writer)

            logger.info("Done scanning BAM. Will now compute per-contig coverage medians.")
            doc_median_info = load_doc_median(tmp_out, config.autosome_pattern, config.empty_medians)

            logger.info("Done computing per-contig coverage medians. Building final coverage file.")
            perform_final_write(tmp_out, config.path_output, doc_median_info)
    return doc_median_info


def main(argv=None):
    args = parse_arguments(argv)
    setup_logging(args.verbose)
    logger.info("Starting DocCollector")

    config = Config()
    try:
        config.setup(args)
        config.print_info()
        perform_collection(config)
    except (ConfigError, EmptyCoverageError) as e:
        logger.error(str(e))
        return 1
    except (OSError, KeyError, ValueError) as e:
        logger.error(f"Coverage collection failed: {e}")
        return 1

    logger.info("All done. Have a nice day!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
