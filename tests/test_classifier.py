from __future__ import annotations

from ciresults.harvest.classifier import JobClassifier, dashboard_versions, identify_variants
from ciresults.harvest.step_tagger import StepTagger
from ciresults.sources.models import CIConfig

INFORMING_49 = "redhat-openshift-ocp-release-4.9-informing"


def test_classify_platform_mod_and_parallel_conformance() -> None:
    tags = JobClassifier()(INFORMING_49, "periodic-ci-openshift-release-master-nightly-4.9-e2e-aws-fips")

    assert tags.platform == "aws"
    assert tags.mod == "fips"
    assert tags.testtype == "conformance-parallel"
    assert tags.tags == ("aws", "fips", "4.9")


def test_classify_never_stable_upgrade_job() -> None:
    job = "periodic-ci-openshift-release-master-nightly-4.9-e2e-metal-ipi-upgrade"
    tags = JobClassifier()("redhat-openshift-ocp-release-4.9-blocking", job)

    assert tags.platform == "metal-ipi"
    assert tags.mod == "none"
    assert tags.testtype == "upgrade-conformance"
    assert tags.tags == ("metal-ipi", "upgrade", "4.9", "never-stable")


def test_promote_job_is_only_promote_variant() -> None:
    job = "promote-release-openshift-machine-os-content-e2e-aws-4.9"

    assert identify_variants(job) == ["promote"]
    assert JobClassifier()(INFORMING_49, job).testtype == "promote"


def test_unknown_job_falls_back() -> None:
    tags = JobClassifier()("some-dashboard", "nightly-smoke")

    assert (tags.platform, tags.mod, tags.testtype) == ("unknown", "none", "other")
    assert tags.tags == ("unknown-variant",)


def test_extra_never_stable_names_are_honoured() -> None:
    classifier = JobClassifier(never_stable={"custom-e2e-gcp"})

    assert "never-stable" in classifier("dash", "custom-e2e-gcp").tags
    assert "never-stable" not in classifier("dash", "custom-e2e-azure").tags


def test_dashboard_versions() -> None:
    assert dashboard_versions(INFORMING_49) == ["4.9"]
    assert dashboard_versions("redhat-openshift-ocp-release-4.10-blocking") == ["4.10"]
    assert dashboard_versions("sig-release-master-blocking") == []


def test_step_tags_follow_variants() -> None:
    tagger = StepTagger()
    tagger.add_config(
        CIConfig.model_validate(
            {
                "zz_generated_metadata": {
                    "org": "openshift",
                    "repo": "release",
                    "branch": "master",
                    "variant": "nightly-4.9",
                },
                "tests": [
                    {
                        "as": "e2e-gcp",
                        "literal_steps": {
                            "cluster_profile": "gcp",
                            "test": [{"as": "openshift-e2e-test", "env": [{"name": "TEST_TYPE", "default": "upgrade"}]}],
                        },
                    }
                ],
            }
        )
    )
    tags = JobClassifier(step_tagger=tagger)(INFORMING_49, "periodic-ci-openshift-release-master-nightly-4.9-e2e-gcp")

    assert tags.tags == ("gcp", "x-platform-gcp", "x-test-openshift-e2e-upgrade-only", "4.9")
