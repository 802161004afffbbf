"""Tests for push-webhook change detection."""

import pytest

from conftest import (
    FakeGitHubClient,
    FakeRepositoryStore,
    WEBHOOK_SECRET,
    make_commit,
    make_push,
    make_repository,
)
from security import WebhookSecretMissingError, sign_payload
from src.webhooks.change_detector import (
    ChangeDetector,
    ChangeSet,
    InvalidSignatureError,
    MalformedPayloadError,
    PushNotification,
    Skip,
    SkipReason,
    payload_changed_files,
)
from src.webhooks.deduplicator import DeliveryDeduplicator


def notify(body, event="push", delivery_id="d-1", secret=WEBHOOK_SECRET):
    return PushNotification(
        event=event,
        delivery_id=delivery_id,
        signature=sign_payload(body, secret),
        body=body,
    )


@pytest.fixture
def detector(repo_store):
    return ChangeDetector(repo_store, deduplicator=DeliveryDeduplicator(ttl_seconds=60))


class TestRejection:
    def test_bad_signature_raises(self, detector):
        body = make_push([make_commit(added=["a.md"])])
        with pytest.raises(InvalidSignatureError):
            detector.detect(notify(body, secret="wrong"))

    def test_missing_signature_raises(self, detector):
        body = make_push([make_commit(added=["a.md"])])
        with pytest.raises(InvalidSignatureError):
            detector.detect(PushNotification("push", "d-1", None, body))

    def test_missing_secret_is_configuration_error(self, repo_store):
        def no_secret():
            raise WebhookSecretMissingError("not set")

        detector = ChangeDetector(repo_store, secret_provider=no_secret)
        with pytest.raises(WebhookSecretMissingError):
            detector.detect(notify(b"{}"))

    @pytest.mark.parametrize("body", [b"not json", b"[]", b'{"ref": "refs/heads/main"}'])
    def test_malformed_payload(self, detector, body):
        with pytest.raises(MalformedPayloadError):
            detector.detect(notify(body))

    def test_rejected_delivery_does_not_poison_dedup_cache(self, detector):
        body = make_push([make_commit(added=["docs/a.md"])])
        with pytest.raises(InvalidSignatureError):
            detector.detect(notify(body, secret="wrong"))
        assert isinstance(detector.detect(notify(body)), ChangeSet)

    def test_failed_detection_releases_delivery_id(self):
        class FlakyStore(FakeRepositoryStore):
            failures = 1

            def find_by_github_id(self, github_repo_id):
                if self.failures:
                    self.failures -= 1
                    raise RuntimeError("mongo down")
                return super().find_by_github_id(github_repo_id)

        detector = ChangeDetector(
            FlakyStore([make_repository()]),
            deduplicator=DeliveryDeduplicator(ttl_seconds=60),
        )
        body = make_push([make_commit(added=["docs/a.md"])])
        with pytest.raises(RuntimeError):
            detector.detect(notify(body))
        assert isinstance(detector.detect(notify(body)), ChangeSet)


class TestSkips:
    def test_duplicate_delivery(self, detector):
        body = make_push([make_commit(added=["docs/a.md"])])
        assert isinstance(detector.detect(notify(body)), ChangeSet)
        result = detector.detect(notify(body))
        assert result == Skip(SkipReason.DUPLICATE_DELIVERY, "d-1")

    def test_non_push_event(self, detector):
        result = detector.detect(notify(b'{"zen": "hi"}', event="ping"))
        assert result.reason is SkipReason.EVENT_IGNORED

    def test_non_default_branch(self, detector):
        body = make_push([make_commit(added=["docs/a.md"])], ref="refs/heads/feature")
        assert detector.detect(notify(body)).reason is SkipReason.NON_DEFAULT_BRANCH

    def test_self_commit_anywhere_in_push(self, detector):
        commits = [
            make_commit(added=["docs/a.md"]),
            make_commit("[docs-translator] Translate docs/a.md to en",
                        added=["translations/en/docs/a.md"]),
            make_commit(modified=["docs/b.md"]),
        ]
        result = detector.detect(notify(make_push(commits)))
        assert result.reason is SkipReason.SELF_COMMIT

    def test_unknown_repository(self, detector):
        body = make_push([make_commit(added=["a.md"])])
        body = body.replace(b'"id": 1001', b'"id": 9999')
        assert detector.detect(notify(body)).reason is SkipReason.REPOSITORY_NOT_IMPORTED

    def test_not_configured(self):
        repository = make_repository()
        repository["config"] = None
        detector = ChangeDetector(FakeRepositoryStore([repository]))
        body = make_push([make_commit(added=["a.md"])])
        assert detector.detect(notify(body)).reason is SkipReason.NOT_CONFIGURED

    def test_auto_translate_disabled(self):
        detector = ChangeDetector(
            FakeRepositoryStore([make_repository(auto_translate=False)])
        )
        body = make_push([make_commit(added=["a.md"])])
        assert detector.detect(notify(body)).reason is SkipReason.AUTO_TRANSLATE_DISABLED

    def test_no_translatable_files(self, detector):
        body = make_push([make_commit(added=["src/app.py"], removed=["old.md"])])
        assert detector.detect(notify(body)).reason is SkipReason.NO_TRANSLATABLE_FILES

    def test_no_target_languages(self):
        detector = ChangeDetector(
            FakeRepositoryStore([make_repository(target_languages=[])])
        )
        body = make_push([make_commit(added=["a.md"])])
        assert detector.detect(notify(body)).reason is SkipReason.NO_TARGET_LANGUAGES


class TestChangeSet:
    def test_scenario_a_skip_directory_excluded(self, detector):
        body = make_push([make_commit(added=["docs/介绍.md", "node_modules/x.md"])])
        result = detector.detect(notify(body))
        assert result == ChangeSet(
            repository_id="repo_docs",
            user_id="user_1",
            files=("docs/介绍.md",),
            target_languages=("en", "ja"),
        )

    def test_scenario_d_include_paths(self):
        detector = ChangeDetector(
            FakeRepositoryStore([make_repository(include_paths=["docs/**"])])
        )
        body = make_push([make_commit(modified=["guide.md", "docs/setup.md"])])
        assert detector.detect(notify(body)).files == ("docs/setup.md",)

    def test_removed_files_ignored_and_union_taken(self):
        commits = [
            make_commit(added=["a.md"], removed=["gone.md"]),
            make_commit(modified=["b.md", "a.md"]),
        ]
        assert payload_changed_files(commits) == ["a.md", "b.md"]

    def test_large_push_uses_compare(self, repo_store):
        github = FakeGitHubClient()
        github.compare_files = [
            {"filename": "docs/a.md", "status": "added"},
            {"filename": "docs/b.md", "status": "removed"},
            {"filename": "docs/c.md", "status": "modified"},
        ]
        detector = ChangeDetector(repo_store, client_factory=lambda repo: github)
        commits = [make_commit(modified=["docs/only-in-payload.md"])] * 20
        result = detector.detect(notify(make_push(commits)))
        assert result.files == ("docs/a.md", "docs/c.md")

    def test_compare_failure_falls_back_to_payload(self, repo_store):
        def broken_factory(repository):
            raise RuntimeError("no credentials")

        detector = ChangeDetector(repo_store, client_factory=broken_factory)
        commits = [make_commit(modified=["docs/a.md"])] * 20
        assert detector.detect(notify(make_push(commits))).files == ("docs/a.md",)
