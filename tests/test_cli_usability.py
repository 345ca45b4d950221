import json
import subprocess
import sys
from pathlib import Path

from haplink.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "haplink"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def _data_lines(vcf: Path) -> list[str]:
    return [line for line in vcf.read_text(encoding="utf-8").splitlines() if not line.startswith("#")]


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "haplink run" in cp.stdout
    assert "haplink make-toy-data" in cp.stdout


def test_run_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "run"
    cp = _run_cli(
        [
            "run",
            "--bam",
            toy["bam"],
            "--reference",
            toy["ref_fa"],
            "--readcounts",
            toy["readcounts"],
            "--outdir",
            str(outdir),
            "--dry-run",
        ]
    )
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert "toy.vcf" in cp.stdout
    assert not outdir.exists()


def test_make_toy_data_and_run(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0
    assert (toy_dir / "toy.bam.bai").exists()

    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "run",
            "--bam",
            str(toy_dir / "toy.bam"),
            "--reference",
            str(toy_dir / "toy_ref.fa"),
            "--readcounts",
            str(toy_dir / "toy.readcounts.tsv"),
            "--outdir",
            str(outdir),
            "--seed",
            "1",
            "--iterations",
            "200",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "report.html").exists()
    assert (outdir / "plots" / "variant_frequencies.png").exists()

    calls = [line.split("\t") for line in _data_lines(outdir / "toy.vcf")]
    assert [(c[1], c[3], c[4]) for c in calls] == [("101", "A", "C"), ("131", "G", "A")]

    assert "name: A101C_G131A" in (outdir / "toy.haplotypes.yaml").read_text(encoding="utf-8")

    summary = json.loads((outdir / "summary.json").read_text(encoding="utf-8"))
    assert summary["variants"] == 2
    assert [h["name"] for h in summary["haplotypes"]] == ["A101C_G131A"]


def test_variants_then_haplotypes(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    vcf = tmp_path / "calls" / "toy.vcf"
    cp = _run_cli(
        [
            "variants",
            "--readcounts",
            toy["readcounts"],
            "--reference",
            toy["ref_fa"],
            "--out",
            str(vcf),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert len(_data_lines(vcf)) == 2

    yaml_path = tmp_path / "calls" / "toy.haplotypes.yaml"
    cp = _run_cli(
        [
            "haplotypes",
            "--bam",
            toy["bam"],
            "--vcf",
            str(vcf),
            "--out",
            str(yaml_path),
            "--method",
            "raw",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    text = yaml_path.read_text(encoding="utf-8")
    assert "alt-alt: 30" in text
    assert "ref-ref: 30" in text


def test_strict_thresholds_leave_no_haplotypes(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "run",
            "--bam",
            toy["bam"],
            "--reference",
            toy["ref_fa"],
            "--readcounts",
            toy["readcounts"],
            "--outdir",
            str(outdir),
            "--method",
            "raw",
            "--haplotype-depth",
            "31",
            "--no-report",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert "haplotypes: []" in (outdir / "toy.haplotypes.yaml").read_text(encoding="utf-8")
    assert not (outdir / "report.html").exists()


def test_missing_input_is_reported(tmp_path: Path) -> None:
    cp = _run_cli(
        [
            "run",
            "--bam",
            str(tmp_path / "missing.bam"),
            "--reference",
            str(tmp_path / "missing.fa"),
            "--outdir",
            str(tmp_path / "out"),
        ]
    )
    assert cp.returncode == 2
    assert "Path does not exist" in cp.stderr


def test_probability_arguments_are_checked(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        ["variants", "--readcounts", toy["readcounts"], "--reference", toy["ref_fa"], "--out", "x.vcf", "-f", "1.5"]
    )
    assert cp.returncode == 2
    assert "between 0 and 1" in cp.stderr


def test_malformed_readcounts_exit_code(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    bad = tmp_path / "bad.tsv"
    bad.write_text("chr1\t101\tA\n", encoding="utf-8")
    cp = _run_cli(
        ["variants", "--readcounts", str(bad), "--reference", toy["ref_fa"], "--out", str(tmp_path / "x.vcf")]
    )
    assert cp.returncode == 2
    assert "MalformedInputError" in cp.stderr


def test_negative_seed_is_rejected_before_any_output(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "run",
            "--bam",
            toy["bam"],
            "--reference",
            toy["ref_fa"],
            "--readcounts",
            toy["readcounts"],
            "--outdir",
            str(outdir),
            "--seed",
            "-1",
        ]
    )
    assert cp.returncode == 2
    assert "Must be >= 0" in cp.stderr
    assert not outdir.exists()


def test_zero_iterations_are_rejected(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        ["haplotypes", "--bam", toy["bam"], "--vcf", toy["bam"], "--out", str(tmp_path / "h.yaml"), "--iterations", "0"]
    )
    assert cp.returncode == 2
    assert "Must be >= 1" in cp.stderr
