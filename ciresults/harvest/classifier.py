"""Job name classification.

Every job gets three single-valued fields (platform, mod, test type) and a set
of freeform tags. The tags are the axis the stats API groups and filters on.
Classification happens once, when a job is first stored.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from ciresults.harvest.step_tagger import StepTagger
from ciresults.sources.models import JobTags

logger = logging.getLogger(__name__)

UNKNOWN_VARIANT = "unknown-variant"
NEVER_STABLE_TAG = "never-stable"


@dataclass(slots=True, frozen=True)
class RegexpTagger:
    tag: str
    pattern: re.Pattern[str]

    @classmethod
    def of(cls, tag: str, pattern: str) -> "RegexpTagger":
        return cls(tag=tag, pattern=re.compile(pattern))


def join_patterns(taggers: list[RegexpTagger]) -> str:
    if not taggers:
        return ""
    return "(?:" + "|".join(t.pattern.pattern for t in taggers) + ")"


PLATFORMS: list[RegexpTagger] = [
    RegexpTagger.of("aws-upi", "-aws-upi"),
    RegexpTagger.of("azure", "-azure"),
    RegexpTagger.of("gcp", "-gcp"),
    RegexpTagger.of("metal-assisted", "-metal-assisted"),
    RegexpTagger.of("metal-ipi", "-metal-ipi"),
    RegexpTagger.of("openstack", "-openstack"),
    RegexpTagger.of("ovirt", "-ovirt"),
    RegexpTagger.of("libvirt-ppc64le", "-libvirt-ppc64le"),
    RegexpTagger.of("libvirt-s390x", "-libvirt-s390x"),
    RegexpTagger.of("vsphere-upi", "-vsphere-upi"),
    # generic platforms must come after the specific ones
    RegexpTagger.of("aws", "-aws"),
    RegexpTagger.of("metal", "-metal"),
    RegexpTagger.of("vsphere", "-vsphere"),
]

MODS: list[RegexpTagger] = [
    RegexpTagger.of("calico", "-calico"),
    RegexpTagger.of("canary", "-canary"),
    RegexpTagger.of("cilium", "-cilium"),
    RegexpTagger.of("compact", "-compact"),
    RegexpTagger.of("disruptive", "-disruptive"),
    RegexpTagger.of("fips", "-fips"),
    RegexpTagger.of("mirrors", "-mirrors"),
    RegexpTagger.of("ovn", "-ovn"),
    RegexpTagger.of("proxy", "-proxy"),
    RegexpTagger.of("rt", "-rt"),
    RegexpTagger.of("sdn-multitenant", "-sdn-multitenant"),
    RegexpTagger.of("shared-vpc", "-shared-vpc"),
    RegexpTagger.of("single-node", "-single-node"),
]

TEST_TYPES: list[RegexpTagger] = [
    RegexpTagger.of("promote", "^promote-"),
    RegexpTagger.of("conformance-serial", "-serial"),
    RegexpTagger.of("other", "-arcconformance"),
    RegexpTagger.of("other", "-cert-rotation"),
    RegexpTagger.of("other", "-cluster-logging-operator"),
    RegexpTagger.of("other", "-console"),
    RegexpTagger.of("other", "-csi"),
    RegexpTagger.of("other", "-elasticsearch-operator"),
    RegexpTagger.of("other", "-image-ecosystem"),
    RegexpTagger.of("other", "-jenkins-e2e"),
    RegexpTagger.of("upgrade-conformance-from-stable", "-upgrade-from-stable"),
    RegexpTagger.of("upgrade-conformance", "-upgrade"),
    RegexpTagger.of("conformance-parallel", join_patterns(PLATFORMS) + join_patterns(MODS) + r"?(?:-4\.[0-9]+)?$"),
]


def _variant(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


_PROMOTE = _variant(r"^promote-")
_VARIANT_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("aws", _variant(r"-aws")),
    ("azure", _variant(r"-azure")),
    ("gcp", _variant(r"-gcp")),
    ("openstack", _variant(r"-openstack")),
    ("osd", _variant(r"-osd")),
]
_METAL_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("metal-assisted", _variant(r"-metal-assisted")),
    ("metal-ipi", _variant(r"-metal-ipi")),
    ("metal-upi", _variant(r"-metal")),
]
_VSPHERE_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("vsphere-upi", _variant(r"-vsphere-upi")),
    ("vsphere-ipi", _variant(r"-vsphere")),
]
_TRAILING_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("upgrade", _variant(r"-upgrade")),
    ("serial", _variant(r"-serial")),
    ("ovn", _variant(r"-ovn")),
    ("fips", _variant(r"-fips")),
    ("ppc64le", _variant(r"-ppc64le")),
    ("s390x", _variant(r"-s390x")),
    ("realtime", _variant(r"-rt")),
    ("proxy", _variant(r"-proxy")),
]
_OVIRT = _variant(r"-ovirt")
_VERSION = re.compile(r"\d+\.\d+")

NEVER_STABLE_JOBS: frozenset[str] = frozenset(
    {
        "periodic-ci-openshift-release-master-ci-4.9-upgrade-from-stable-4.8-e2e-aws-ovn-upgrade",
        "periodic-ci-openshift-release-master-ci-4.9-upgrade-from-stable-4.8-e2e-aws-upgrade",
        "periodic-ci-openshift-release-master-ci-4.9-upgrade-from-stable-4.8-e2e-azure-ovn-upgrade",
        "periodic-ci-openshift-release-master-ci-4.9-upgrade-from-stable-4.8-e2e-gcp-ovn-upgrade",
        "periodic-ci-openshift-release-master-ci-4.9-upgrade-from-stable-4.8-e2e-ovirt-upgrade",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-aws-csi-migration",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-aws-proxy",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-aws-upgrade",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-aws-workers-rhel7",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-compact-remote-libvirt-ppc64le",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-compact-remote-libvirt-s390x",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-gcp-rt",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-metal-ipi",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-metal-ipi-ovn-dualstack",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-metal-ipi-ovn-ipv6",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-metal-ipi-upgrade",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-remote-libvirt-ppc64le",
        "periodic-ci-openshift-release-master-nightly-4.9-e2e-remote-libvirt-s390x",
        "periodic-ci-openshift-release-master-nightly-4.9-openshift-ipi-azure-arcconformance",
        "periodic-ci-openshift-release-master-nightly-4.9-upgrade-from-stable-4.8-e2e-aws-upgrade",
        "periodic-ci-openshift-release-master-nightly-4.9-upgrade-from-stable-4.8-e2e-metal-ipi-upgrade",
        "release-openshift-ocp-installer-e2e-aws-upi-4.9",
        "release-openshift-ocp-installer-e2e-azure-ovn-4.9",
        "release-openshift-ocp-installer-e2e-gcp-ovn-4.9",
        "release-openshift-ocp-osd-aws-nightly-4.9",
        "release-openshift-ocp-osd-gcp-nightly-4.9",
        "release-openshift-origin-installer-e2e-aws-sdn-network-stress-4.9",
    }
)


def pick_tag(job_name: str, taggers: list[RegexpTagger], fallback: str) -> str:
    for tagger in taggers:
        if tagger.pattern.search(job_name):
            return tagger.tag
    return fallback


def identify_variants(job_name: str) -> list[str]:
    # a promotion job can't be part of any other variant aggregation
    if _PROMOTE.search(job_name):
        return ["promote"]

    variants = [tag for tag, pattern in _VARIANT_RULES if pattern.search(job_name)]
    variants.extend(_first_match(job_name, _METAL_RULES))
    if _OVIRT.search(job_name):
        variants.append("ovirt")
    variants.extend(_first_match(job_name, _VSPHERE_RULES))
    variants.extend(tag for tag, pattern in _TRAILING_RULES if pattern.search(job_name))

    if not variants:
        logger.debug("unknown variant for job", extra={"job_name": job_name})
        return [UNKNOWN_VARIANT]
    return variants


def dashboard_versions(dashboard: str) -> list[str]:
    return _VERSION.findall(dashboard)


def _first_match(job_name: str, rules: list[tuple[str, re.Pattern[str]]]) -> list[str]:
    for tag, pattern in rules:
        if pattern.search(job_name):
            return [tag]
    return []


class JobClassifier:
    def __init__(
        self,
        step_tagger: StepTagger | None = None,
        never_stable: Iterable[str] = NEVER_STABLE_JOBS,
    ) -> None:
        self.step_tagger = step_tagger
        self.never_stable = frozenset(never_stable)

    def __call__(self, dashboard: str, job_name: str) -> JobTags:
        tags = identify_variants(job_name)
        if self.step_tagger is not None:
            tags.extend(self.step_tagger.get_tags(job_name))
        tags.extend(dashboard_versions(dashboard))
        if job_name in self.never_stable:
            tags.append(NEVER_STABLE_TAG)
        return JobTags(
            platform=pick_tag(job_name, PLATFORMS, "unknown"),
            mod=pick_tag(job_name, MODS, "none"),
            testtype=pick_tag(job_name, TEST_TYPES, "other"),
            tags=tuple(dict.fromkeys(tags)),
        )
