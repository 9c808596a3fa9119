from __future__ import annotations

from ciresults.sources.models import CIConfig, CITest

NO_STEPS_TAG = "x-no-steps"
UNKNOWN_TEST_TAG = "x-test-unknown"

E2E_STEPS = frozenset({"openshift-e2e-test", "openshift-e2e-libvirt-test", "baremetalds-e2e-test"})

SUITE_TAGS = {
    "openshift/conformance/parallel": "parallel",
    "openshift/conformance/serial": "serial",
    "openshift/csi": "csi",
    "experimental/reliability/minimal": "canary",
}

TEST_TYPE_TAGS = {
    "upgrade-conformance": "upgrade-conformance",
    "upgrade": "upgrade-only",
    "image-ecosystem": "image-ecosystem",
    "jenkins-e2e-rhel-only": "jenkins-e2e-rhel-only",
}


def tags_for_test(test: CITest) -> list[str]:
    tags = [f"x-platform-{test.literal_steps.cluster_profile}"]
    found = False
    for step in test.literal_steps.test:
        if step.as_ not in E2E_STEPS:
            continue
        found = True
        test_type = step.env_default("TEST_TYPE")
        if test_type in {"suite", "conformance-serial", "conformance-parallel"}:
            suffix = "suite-" + SUITE_TAGS.get(step.env_default("TEST_SUITE"), "unknown")
        else:
            suffix = TEST_TYPE_TAGS.get(test_type, "unknown")
        tags.append(f"x-test-openshift-e2e-{suffix}")
    if not found:
        tags.append(UNKNOWN_TEST_TAG)
    return tags


class StepTagger:
    """Maps periodic job names to tags derived from their CI step config."""

    def __init__(self) -> None:
        self._jobs: dict[str, list[str]] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def add_config(self, config: CIConfig) -> None:
        meta = config.metadata
        prefix = f"periodic-ci-{meta.org}-{meta.repo}-{meta.branch}-"
        if meta.variant:
            prefix += f"{meta.variant}-"
        for test in config.tests:
            self._jobs[prefix + test.as_] = tags_for_test(test)

    def get_tags(self, job_name: str) -> list[str]:
        tags = self._jobs.get(job_name)
        if not tags:
            return [NO_STEPS_TAG]
        return list(tags)
