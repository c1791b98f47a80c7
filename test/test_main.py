"""
End-to-end tests: synthetic BAM in, coverage VCF with median header out.
"""

import math

import pysam
import pytest

import interfaceUtils
from main import main, parse_arguments, perform_collection
from utils import Config, ConfigError
from VCFwriter import iter_window_records


def _config(bam_path, out_path, **doc_settings):
    config = Config()
    config.path_input = str(bam_path)
    config.path_output = str(out_path)
    config.verbosity = 1
    config.collect_doc_config.update(doc_settings)
    return config


def _median_line(path):
    with pysam.VariantFile(str(path)) as reader:
        lines = [line for line in str(reader.header).splitlines() if line.startswith("##median-coverage")]
    assert len(lines) == 1
    return lines[0]


class TestPerformCollection:

    def test_single_read_scenario(self, tmp_path, make_read, write_bam):
        bam = write_bam([make_read(100, "500M", mapq=30)])
        out = tmp_path / "out.vcf"
        config = _config(bam, out, window_length=500)
        config.regions = ["chr1"]

        info = perform_collection(config)

        records = list(iter_window_records(str(out)))
        assert len(records) == 2
        (_, first, _), (_, second, _) = records
        assert (first.start, first.end) == (0, 500)
        assert first.cov == pytest.approx(0.8, rel=1e-6)
        assert first.mean_mapq == pytest.approx(30)
        assert (second.start, second.end) == (500, 1000)
        assert second.cov == pytest.approx(0.2, rel=1e-6)
        assert second.mean_mapq == pytest.approx(30)

        assert info.by_chrom.keys() == {"chr1"}
        assert info.on_autosomes == pytest.approx(0.5, rel=1e-6)
        assert _median_line(out).startswith("##median-coverage=<ID=sample1,autosomes=0.5")

    def test_all_contigs_in_header_order(self, tmp_path, make_read, write_bam):
        bam = write_bam([make_read(0, "100M"), make_read(0, "100M", contig="chrX")])
        out = tmp_path / "out.bcf"

        info = perform_collection(_config(bam, out, window_length=500))

        contigs = [contig for contig, _, _ in iter_window_records(str(out))]
        assert contigs == ["chr1"] * 2 + ["chr2"] * 3 + ["chrX"] * 2
        assert set(info.by_chrom) == {"chr1", "chr2", "chrX"}
        # Autosomal windows: [0.2, 0, 0, 0, 0].
        assert info.on_autosomes == 0.0

    def test_fragments_with_reference(self, tmp_path, make_pair, write_bam, write_fasta):
        reads = list(make_pair(100, 300)) + list(make_pair(600, 800))
        bam = write_bam(reads)
        fasta = write_fasta({"chr1": "GC" * 250 + "AT" * 250, "chr2": "N" * 1200, "chrX": "A" * 800})
        out = tmp_path / "out.vcf"
        config = _config(bam, out, window_length=500, count_kind="fragments")
        config.path_reference_fasta = str(fasta)
        config.regions = ["chr1"]

        perform_collection(config)

        (_, first, ref_first), (_, second, ref_second) = list(iter_window_records(str(out)))
        assert first.cov == 1
        assert second.cov == 1
        assert first.cov_sd is None
        assert ref_first.gc_content == pytest.approx(1.0)
        assert ref_second.gc_content == 0.0
        assert not ref_first.has_gap

    def test_region_subset(self, tmp_path, make_read, write_bam):
        bam = write_bam([make_read(100, "500M")])
        out = tmp_path / "out.vcf"
        config = _config(bam, out, window_length=100)
        config.regions = ["chr1:201-450"]

        perform_collection(config)

        stats = [s for _, s, _ in iter_window_records(str(out))]
        assert [(s.start, s.end) for s in stats] == [(200, 300), (300, 400), (400, 450)]
        assert all(s.cov == 1.0 for s in stats)

    def test_empty_region_policy(self, tmp_path, write_bam):
        bam = write_bam([])
        out = tmp_path / "out.vcf"
        config = _config(bam, out)
        config.regions = ["chr1:1-0"]

        info = perform_collection(config)
        assert math.isnan(info.on_autosomes)
        assert info.by_chrom == {}

        config = _config(bam, tmp_path / "out2.vcf")
        config.regions = ["chr1:1-0"]
        config.empty_medians = "error"
        with pytest.raises(ValueError):
            perform_collection(config)

    def test_invalid_count_kind(self, tmp_path, write_bam):
        bam = write_bam([])
        with pytest.raises(ConfigError):
            perform_collection(_config(bam, tmp_path / "out.vcf", count_kind="reads"))

    def test_unknown_region_contig(self, tmp_path, write_bam):
        bam = write_bam([])
        config = _config(bam, tmp_path / "out.vcf")
        config.regions = ["chr9"]
        with pytest.raises(ConfigError):
            perform_collection(config)

    def test_failed_region_writes_nothing(self, tmp_path, make_read, write_bam, monkeypatch):
        bam = write_bam([make_read(0, "100M"), make_read(0, "100M", contig="chr2")])
        out = tmp_path / "out.vcf"
        fetched = []

        def fetch_failing_on_chr2(samfile, interval):
            fetched.append(interval.contig)
            if interval.contig == "chr2":
                raise OSError("read error on chr2")
            return interfaceUtils.fetch_region(samfile, interval)

        monkeypatch.setattr("main.fetch_region", fetch_failing_on_chr2)
        with pytest.raises(OSError, match="chr2"):
            perform_collection(_config(bam, out, window_length=500))

        assert fetched == ["chr1", "chr2"]
        assert not out.exists()

    def test_scratch_file_read_without_index_lookup(self, tmp_path, make_read, write_bam, capfd):
        bam = write_bam([make_read(0, "100M")])
        capfd.readouterr()

        perform_collection(_config(bam, tmp_path / "out.vcf", window_length=500))

        assert "Could not retrieve index" not in capfd.readouterr().err


class TestMain:

    def test_parse_arguments(self):
        args = parse_arguments(["-vv", "-w", "250", "-k", "fragments", "-r", "chr1,chr2", "in.bam", "out.vcf"])
        config = Config()
        config.setup(args)

        assert config.verbosity == 2
        assert config.collect_doc_config.window_length == 250
        assert config.collect_doc_config.count_kind == "fragments"
        assert config.regions == ["chr1", "chr2"]

    def test_config_file_overridden_by_command_line(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("collect_doc_config:\n  window_length: 250\n  count_kind: fragments\n")
        config = Config()
        config.setup(parse_arguments(["-c", str(path), "-w", "100", "in.bam", "out.vcf"]))

        assert config.collect_doc_config.window_length == 100
        assert config.collect_doc_config.count_kind == "fragments"

    def test_main_success(self, tmp_path, make_read, write_bam):
        bam = write_bam([make_read(0, "100M")])
        out = tmp_path / "out.vcf.gz"

        assert main(["-v", "-w", "500", str(bam), str(out)]) == 0
        assert out.exists()
        assert (tmp_path / "out.vcf.gz.tbi").exists()

    def test_main_refuses_existing_output(self, tmp_path, write_bam):
        bam = write_bam([])
        out = tmp_path / "out.vcf"
        out.write_text("existing")

        assert main(["-v", str(bam), str(out)]) == 1
        assert out.read_text() == "existing"
        assert main(["-v", "--overwrite", str(bam), str(out)]) == 0

    def test_main_missing_input(self, tmp_path):
        assert main(["-v", str(tmp_path / "missing.bam"), str(tmp_path / "out.vcf")]) == 1

    def test_main_reference_length_mismatch(self, tmp_path, make_read, write_bam, write_fasta):
        bam = write_bam([make_read(0, "100M")])
        # chr1 is 1000bp in the BAM header.
        fasta = write_fasta({"chr1": "A" * 500, "chr2": "A" * 1200, "chrX": "A" * 800})
        out = tmp_path / "out.vcf"

        assert main(["-v", "-g", str(fasta), str(bam), str(out)]) == 1
        assert not out.exists()
