import pytest

from buildflow import artifacts
from buildflow.dsl import TargetBuilder
from buildflow.errors import ArtifactContractViolation


def touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("x")
    return path


def test_matching_files_recursive(tmp_path):
    touch(tmp_path / "results" / "a" / "coverage.cobertura.xml")
    touch(tmp_path / "results" / "b" / "c" / "coverage.cobertura.xml")
    found = artifacts.matching_files("results/**/coverage.cobertura.xml", tmp_path)
    assert len(found) == 2


def test_directories_do_not_match(tmp_path):
    (tmp_path / "out" / "lib.nupkg").mkdir(parents=True)
    assert artifacts.matching_files("out/*.nupkg", tmp_path) == []


def test_missing_patterns(tmp_path):
    touch(tmp_path / "packages" / "lib.1.0.0.nupkg")
    target = TargetBuilder("Pack").produces("packages/*.nupkg", "packages/*.snupkg").build()
    assert artifacts.missing_patterns(target, tmp_path) == ["packages/*.snupkg"]


def test_verify_raises_with_patterns(tmp_path):
    target = TargetBuilder("Report").produces("reports/mutation-report.html").build()
    with pytest.raises(ArtifactContractViolation) as info:
        artifacts.verify(target, tmp_path)
    assert info.value.target == "Report"
    assert info.value.patterns == ["reports/mutation-report.html"]


def test_verify_passes(tmp_path):
    touch(tmp_path / "reports" / "mutation-report.html")
    target = TargetBuilder("Report").produces("reports/mutation-report.html").build()
    artifacts.verify(target, tmp_path)


def test_target_without_outputs_always_passes(tmp_path):
    artifacts.verify(TargetBuilder("Compile").build(), tmp_path)
