"""Tests for the reconciliation engine."""

import pytest

from src.common.config import SyncContext
from src.common.errors import InvalidArtifact, NothingToReconcile, NotFound
from src.sync.records import PackageRecord
from src.sync.reconcile import ReconcileStatus, ReconciliationEngine, reconcile

from conftest import CORRUPT_RPM, MIRROR_URL, read_manifest, write_manifest, write_rpm


def known_manifest(target_dir):
    return read_manifest(target_dir / "packages.yaml")


class TestPreconditions:
    """Tests for structural checks made before any work."""

    def test_missing_target(self, tmp_path, resolver, validator):
        context = SyncContext(target_dir=tmp_path / "missing")
        with pytest.raises(NothingToReconcile):
            reconcile(context, resolver, validator)

    def test_no_manifest_and_no_package_directory(self, tmp_path, resolver, validator):
        context = SyncContext(target_dir=tmp_path)
        with pytest.raises(NothingToReconcile):
            reconcile(context, resolver, validator)

    def test_nothing_anywhere(self, context, resolver, validator, target_dir):
        with pytest.raises(NothingToReconcile):
            reconcile(context, resolver, validator)
        assert not (target_dir / "packages.yaml").exists()

    def test_commented_manifest_counts_as_empty(self, context, resolver, validator, target_dir):
        (target_dir / "packages.yaml").write_text("# example:\n#   rpm_name: x-1-1.noarch.rpm\n")
        with pytest.raises(NothingToReconcile):
            reconcile(context, resolver, validator)

    def test_mirrored_repos_are_enough(self, context, resolver, validator, target_dir):
        repodata = target_dir / "reposync" / "base" / "repodata"
        repodata.mkdir(parents=True)
        (repodata / "repomd.xml").write_text("<repomd/>")

        report = reconcile(context, resolver, validator)

        assert report.status == ReconcileStatus.SUCCESS
        assert known_manifest(target_dir) == {}


class TestScenarios:
    """End-to-end reconciliation of a target directory."""

    def test_fetches_missing_known_package(self, context, resolver, validator, target_dir, packages_dir):
        """Known package, empty package directory, resolvable source."""
        write_manifest(target_dir / "packages.yaml", {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm"}})
        resolver.publish("foo-1.0-1.x86_64.rpm", "foo")

        report = reconcile(context, resolver, validator)

        assert report.is_success
        assert report.failures == {}
        assert report.fetched == ["foo-1.0-1.x86_64.rpm"]
        assert (packages_dir / "foo-1.0-1.x86_64.rpm").is_file()
        assert known_manifest(target_dir) == {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm"}}
        assert not (target_dir / "unknown_packages.yaml").exists()

    def test_newer_artifact_retires_old_one(self, context, resolver, validator, target_dir, packages_dir):
        """Recorded artifact gone upstream, older one on disk, newer one available."""
        write_manifest(target_dir / "packages.yaml", {"foo": {"rpm_name": "foo-1.5-1.x86_64.rpm"}})
        write_rpm(packages_dir, "foo-1.0-1.x86_64.rpm")
        url = resolver.publish("foo-2.0-1.x86_64.rpm", "foo")

        report = reconcile(context, resolver, validator)

        assert report.is_success
        assert report.retired == ["foo-1.0-1.x86_64.rpm"]
        assert not (packages_dir / "foo-1.0-1.x86_64.rpm").exists()
        assert (packages_dir / "obsolete" / "foo-1.0-1.x86_64.rpm").is_file()
        assert (packages_dir / "foo-2.0-1.x86_64.rpm").is_file()
        assert known_manifest(target_dir) == {
            "foo": {"rpm_name": "foo-2.0-1.x86_64.rpm", "source": url}
        }
        assert [(s.key, s.original, s.adopted) for s in report.substitutions] == [
            ("foo", "foo-1.5-1.x86_64.rpm", "foo-2.0-1.x86_64.rpm")
        ]

    def test_unresolvable_download_becomes_unknown(self, context, resolver, validator, target_dir, packages_dir):
        """Artifact on disk with no record and no resolvable source."""
        write_rpm(packages_dir, "bar-1.0-1.x86_64.rpm")

        report = reconcile(context, resolver, validator)

        assert report.status == ReconcileStatus.PARTIAL_FAILURE
        assert isinstance(report.failures["bar"], NotFound)
        assert report.updated_unknown == {"bar": PackageRecord("bar", "bar-1.0-1.x86_64.rpm")}
        assert read_manifest(target_dir / "unknown_packages.yaml") == {
            "bar": {"rpm_name": "bar-1.0-1.x86_64.rpm"}
        }
        assert known_manifest(target_dir) == {}
        assert (packages_dir / "bar-1.0-1.x86_64.rpm").is_file()

    def test_resolvable_download_is_recorded(self, context, resolver, validator, target_dir, packages_dir):
        write_rpm(packages_dir, "bar-1.0-1.x86_64.rpm")
        write_manifest(target_dir / "unknown_packages.yaml", {"bar": {"rpm_name": "bar-1.0-1.x86_64.rpm"}})
        url = resolver.publish("bar-1.0-1.x86_64.rpm")

        report = reconcile(context, resolver, validator)

        assert report.is_success
        assert report.resolved_unknowns == ["bar"]
        assert known_manifest(target_dir) == {"bar": {"rpm_name": "bar-1.0-1.x86_64.rpm", "source": url}}
        assert not (target_dir / "unknown_packages.yaml").exists()
        assert resolver.fetch_calls == []

    def test_newer_download_supersedes_record(self, context, resolver, validator, target_dir, packages_dir):
        """Known package with a newer artifact next to the recorded one."""
        write_manifest(target_dir / "packages.yaml", {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm"}})
        write_rpm(packages_dir, "foo-1.0-1.x86_64.rpm")
        write_rpm(packages_dir, "foo-2.0-1.x86_64.rpm")
        url = resolver.publish("foo-2.0-1.x86_64.rpm")

        report = reconcile(context, resolver, validator)

        assert report.is_success
        assert known_manifest(target_dir) == {
            "foo": {"rpm_name": "foo-2.0-1.x86_64.rpm", "source": url}
        }
        assert [(s.key, s.original, s.adopted) for s in report.substitutions] == [
            ("foo", "foo-1.0-1.x86_64.rpm", "foo-2.0-1.x86_64.rpm")
        ]
        assert report.retired == ["foo-1.0-1.x86_64.rpm"]
        assert (packages_dir / "obsolete" / "foo-1.0-1.x86_64.rpm").is_file()

        second = reconcile(context, resolver, validator)
        assert second.substitutions == []
        assert second.retired == []


class TestFetchKnown:
    """Tests for fetching known packages."""

    def test_explicit_source_fetched_directly(self, context, resolver, validator, target_dir):
        url = resolver.publish("foo-1.0-1.x86_64.rpm")
        write_manifest(
            target_dir / "packages.yaml",
            {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm", "source": url}},
        )

        report = reconcile(context, resolver, validator)

        assert report.is_success
        assert resolver.fetch_calls == [url]
        assert resolver.resolve_calls == []
        assert known_manifest(target_dir)["foo"]["source"] == url

    def test_non_uri_source_resolved_by_name(self, context, resolver, validator, target_dir):
        resolver.publish("foo-1.0-1.x86_64.rpm")
        write_manifest(
            target_dir / "packages.yaml",
            {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm", "source": "EPEL"}},
        )

        report = reconcile(context, resolver, validator)

        assert report.is_success
        assert resolver.resolve_calls == ["foo-1.0-1.x86_64"]
        assert known_manifest(target_dir)["foo"]["source"] == "EPEL"

    def test_failure_without_substitution(self, context, resolver, validator, target_dir):
        """Nothing resolves: the key fails and its record is untouched."""
        original = {
            "foo": {
                "rpm_name": "foo-1.0-1.x86_64.rpm",
                "source": f"{MIRROR_URL}/foo-1.0-1.x86_64.rpm",
            }
        }
        write_manifest(target_dir / "packages.yaml", original)

        report = reconcile(context, resolver, validator)

        assert report.status == ReconcileStatus.PARTIAL_FAILURE
        assert list(report.failures) == ["foo"]
        assert "HTTP 404" in str(report.failures["foo"])
        assert known_manifest(target_dir) == original
        assert report.format_failures() == [f"  * foo => {report.failures['foo']}"]

    def test_substitution_by_key(self, target_dir, resolver, validator):
        """Broken recorded source falls back to the short key when allowed."""
        context = SyncContext(target_dir=target_dir, allow_substitution=True, max_parallel_fetches=1)
        write_manifest(
            target_dir / "packages.yaml",
            {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm", "source": f"{MIRROR_URL}/foo-1.0-1.x86_64.rpm"}},
        )
        url = resolver.publish("foo-1.1-1.x86_64.rpm", "foo")

        report = reconcile(context, resolver, validator)

        assert report.is_success
        assert known_manifest(target_dir) == {"foo": {"rpm_name": "foo-1.1-1.x86_64.rpm", "source": url}}
        assert len(report.substitutions) == 1
        assert report.substitutions[0].reason == "resolved to a different artifact"

    def test_update_fallback_without_substitution(self, context, resolver, validator, target_dir):
        """The update step still runs as last resort and is reported."""
        write_manifest(
            target_dir / "packages.yaml",
            {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm", "source": f"{MIRROR_URL}/foo-1.0-1.x86_64.rpm"}},
        )
        resolver.publish("foo-1.1-1.x86_64.rpm", "foo")

        report = reconcile(context, resolver, validator)

        assert report.is_success
        assert known_manifest(target_dir)["foo"]["rpm_name"] == "foo-1.1-1.x86_64.rpm"
        assert report.substitutions[0].reason.startswith("updated after:")

    def test_invalid_download_is_a_failure(self, context, resolver, validator, target_dir, packages_dir):
        write_manifest(target_dir / "packages.yaml", {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm"}})
        resolver.publish("foo-1.0-1.x86_64.rpm", payload=CORRUPT_RPM)

        report = reconcile(context, resolver, validator)

        assert report.status == ReconcileStatus.PARTIAL_FAILURE
        assert isinstance(report.failures["foo"], InvalidArtifact)
        assert not (packages_dir / "foo-1.0-1.x86_64.rpm").exists()
        assert known_manifest(target_dir) == {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm"}}

    def test_one_failure_does_not_block_others(self, context, resolver, validator, target_dir, packages_dir):
        write_manifest(
            target_dir / "packages.yaml",
            {
                "alpha": {"rpm_name": "alpha-1.0-1.x86_64.rpm"},
                "broken": {"rpm_name": "broken-1.0-1.x86_64.rpm"},
                "omega": {"rpm_name": "omega-1.0-1.noarch.rpm"},
            },
        )
        resolver.publish("alpha-1.0-1.x86_64.rpm")
        resolver.publish("omega-1.0-1.noarch.rpm")

        report = reconcile(context, resolver, validator)

        assert list(report.failures) == ["broken"]
        assert sorted(report.fetched) == ["alpha-1.0-1.x86_64.rpm", "omega-1.0-1.noarch.rpm"]
        assert sorted(known_manifest(target_dir)) == ["alpha", "broken", "omega"]

    def test_extra_fields_survive_update(self, context, resolver, validator, target_dir):
        write_manifest(
            target_dir / "packages.yaml",
            {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm", "comment": "needed by the installer"}},
        )
        resolver.publish("foo-2.0-1.x86_64.rpm", "foo")

        reconcile(context, resolver, validator)

        assert known_manifest(target_dir)["foo"]["comment"] == "needed by the installer"

    def test_parallel_fetches(self, target_dir, resolver, validator, packages_dir):
        context = SyncContext(target_dir=target_dir, max_parallel_fetches=4)
        names = [f"pkg{i:02d}" for i in range(12)]
        write_manifest(
            target_dir / "packages.yaml",
            {name: {"rpm_name": f"{name}-1.0-1.x86_64.rpm"} for name in names},
        )
        for name in names:
            resolver.publish(f"{name}-1.0-1.x86_64.rpm")

        report = ReconciliationEngine(context, resolver, validator).reconcile()

        assert report.is_success
        assert report.fetched == [f"{name}-1.0-1.x86_64.rpm" for name in names]
        assert sorted(p.name for p in packages_dir.glob("*.rpm")) == report.fetched


class TestIntegritySweep:
    """Tests for validating artifacts already on disk."""

    def test_corrupt_artifact_removed(self, context, resolver, validator, target_dir, packages_dir):
        write_rpm(packages_dir, "bar-1.0-1.x86_64.rpm", CORRUPT_RPM)
        write_rpm(packages_dir, "baz-1.0-1.x86_64.rpm")
        resolver.publish("baz-1.0-1.x86_64.rpm")

        report = reconcile(context, resolver, validator)

        assert not (packages_dir / "bar-1.0-1.x86_64.rpm").exists()
        assert isinstance(report.failures["bar-1.0-1.x86_64.rpm"], InvalidArtifact)
        # Gone from the downloaded set, so never recorded anywhere
        assert "bar" not in report.updated_known
        assert "bar" not in report.updated_unknown
        assert "baz" in report.updated_known

    def test_corrupt_known_artifact_fetched_again(self, context, resolver, validator, target_dir, packages_dir):
        write_manifest(target_dir / "packages.yaml", {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm"}})
        write_rpm(packages_dir, "foo-1.0-1.x86_64.rpm", CORRUPT_RPM)
        resolver.publish("foo-1.0-1.x86_64.rpm")

        report = reconcile(context, resolver, validator)

        assert list(report.failures) == ["foo-1.0-1.x86_64.rpm"]
        assert report.fetched == ["foo-1.0-1.x86_64.rpm"]
        assert validator.validated.count("foo-1.0-1.x86_64.rpm") == 2
        assert (packages_dir / "foo-1.0-1.x86_64.rpm").read_bytes()[:4] == b"\xed\xab\xee\xdb"

    def test_corrupt_older_version_removed(self, context, resolver, validator, target_dir, packages_dir):
        write_rpm(packages_dir, "foo-1.0-1.x86_64.rpm", CORRUPT_RPM)
        write_rpm(packages_dir, "foo-2.0-1.x86_64.rpm")
        resolver.publish("foo-2.0-1.x86_64.rpm")

        report = reconcile(context, resolver, validator)

        assert sorted(validator.validated) == ["foo-1.0-1.x86_64.rpm", "foo-2.0-1.x86_64.rpm"]
        assert not (packages_dir / "foo-1.0-1.x86_64.rpm").exists()
        assert isinstance(report.failures["foo-1.0-1.x86_64.rpm"], InvalidArtifact)
        assert known_manifest(target_dir)["foo"]["rpm_name"] == "foo-2.0-1.x86_64.rpm"

    def test_corrupt_known_artifact_behind_newer_one(self, context, resolver, validator, target_dir, packages_dir):
        write_manifest(target_dir / "packages.yaml", {"foo": {"rpm_name": "foo-1.0-1.x86_64.rpm"}})
        write_rpm(packages_dir, "foo-1.0-1.x86_64.rpm", CORRUPT_RPM)
        write_rpm(packages_dir, "foo-2.0-1.x86_64.rpm")
        resolver.publish("foo-1.0-1.x86_64.rpm")

        report = reconcile(context, resolver, validator)

        # Never reused as already present; fetched again after removal
        assert report.fetched == ["foo-1.0-1.x86_64.rpm"]
        assert isinstance(report.failures["foo-1.0-1.x86_64.rpm"], InvalidArtifact)
        assert (packages_dir / "foo-1.0-1.x86_64.rpm").read_bytes()[:4] == b"\xed\xab\xee\xdb"


class TestIdempotence:
    """Running twice without outside changes changes nothing."""

    def test_second_run_is_clean(self, context, resolver, validator, target_dir, packages_dir):
        write_manifest(
            target_dir / "packages.yaml",
            {
                "foo": {"rpm_name": "foo-1.5-1.x86_64.rpm"},
                "bar": {"rpm_name": "bar-1.0-1.noarch.rpm"},
            },
        )
        write_rpm(packages_dir, "foo-1.0-1.x86_64.rpm")
        write_rpm(packages_dir, "baz-3.0-1.x86_64.rpm")
        resolver.publish("foo-2.0-1.x86_64.rpm", "foo")
        resolver.publish("bar-1.0-1.noarch.rpm")
        resolver.publish("baz-3.0-1.x86_64.rpm")

        first = reconcile(context, resolver, validator)
        manifest_after_first = (target_dir / "packages.yaml").read_text()
        fetches_after_first = list(resolver.fetch_calls)

        second = reconcile(context, resolver, validator)

        assert first.is_success
        assert second.is_success
        assert second.failures == {}
        assert second.fetched == []
        assert second.retired == []
        assert second.substitutions == []
        assert (target_dir / "packages.yaml").read_text() == manifest_after_first
        assert resolver.fetch_calls == fetches_after_first

    def test_multiple_architectures_on_disk(self, context, resolver, validator, target_dir, packages_dir):
        write_manifest(
            target_dir / "packages.yaml",
            {
                "glibc": {"rpm_name": "glibc-2.28-1.x86_64.rpm"},
                "glibc-i686": {"rpm_name": "glibc-2.28-1.i686.rpm"},
            },
        )
        write_rpm(packages_dir, "glibc-2.28-1.x86_64.rpm")
        write_rpm(packages_dir, "glibc-2.28-1.i686.rpm")

        first = reconcile(context, resolver, validator)
        second = reconcile(context, resolver, validator)

        assert first.is_success and second.is_success
        assert resolver.resolve_calls == []
        assert resolver.fetch_calls == []

    def test_legacy_manifest_upgraded_once(self, context, resolver, validator, target_dir, packages_dir):
        url = resolver.publish("foo-1.0-1.x86_64.rpm")
        write_manifest(target_dir / "packages.yaml", {"foo-1.0-1.x86_64.rpm": {"source": url}})
        write_rpm(packages_dir, "foo-1.0-1.x86_64.rpm")

        first = reconcile(context, resolver, validator)
        second = reconcile(context, resolver, validator)

        expected = {"foo-1.0-1.x86_64.rpm": {"rpm_name": "foo-1.0-1.x86_64.rpm", "source": url}}
        assert first.is_success and second.is_success
        assert known_manifest(target_dir) == expected
        assert resolver.fetch_calls == []
