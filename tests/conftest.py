"""
Shared fixtures and in-memory fakes for the pipeline's collaborators.
"""

import json
import os
import tempfile
import threading

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault(
    "LOG_FILE_APP", os.path.join(tempfile.gettempdir(), "docs-translator-test.log")
)
os.environ.setdefault(
    "LOG_FILE_ERRORS",
    os.path.join(tempfile.gettempdir(), "docs-translator-test-errors.log"),
)

import pytest  # noqa: E402

from commons import generate_task_id, limiter, utcnow  # noqa: E402
from configs.config import get_config  # noqa: E402
from security import sign_payload  # noqa: E402
from src.github.client import GitHubAPIError, RepoFile  # noqa: E402
from src.translation.models import (  # noqa: E402
    JobStatus,
    RepositoryConfig,
    TERMINAL_STATUSES,
)
from src.translation.translator import TranslationError  # noqa: E402

cfg = get_config()

WEBHOOK_SECRET = "test-webhook-secret"
ADMIN_KEY = "test-admin-key"
GITHUB_REPO_ID = 1001
REPOSITORY_ID = "repo_docs"

_TERMINAL_VALUES = {s.value for s in TERMINAL_STATUSES}


# ── Fakes ────────────────────────────────────────────────────────────────


class FakeTaskStore:
    def __init__(self):
        self.tasks = {}
        self.files = {}
        self.snapshots = []
        self._lock = threading.Lock()

    def create_task(self, user_id, repository_id, target_languages, kind,
                    changed_files=None):
        task_id = generate_task_id()
        with self._lock:
            self.tasks[task_id] = {
                "task_id": task_id,
                "user_id": user_id,
                "repository_id": repository_id,
                "type": getattr(kind, "value", kind),
                "target_languages": list(target_languages),
                "changed_files": list(changed_files) if changed_files else None,
                "status": JobStatus.PENDING.value,
                "total_files": 0,
                "completed_files": 0,
                "failed_files": 0,
                "progress": 0,
                "pull_request_url": None,
                "pull_request_number": None,
                "error": None,
                "completed_at": None,
                "created_at": utcnow(),
            }
        return task_id

    def get_task(self, task_id):
        task = self.tasks.get(task_id)
        return dict(task) if task else None

    def list_tasks(self, repository_id, status=None):
        return [
            dict(t) for t in self.tasks.values()
            if t["repository_id"] == repository_id
            and (status is None or t["status"] == status)
        ]

    def update_progress(self, task_id, progress):
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None or task["status"] in _TERMINAL_VALUES:
                return False
            snapshot = progress.to_dict()
            self.snapshots.append(snapshot)
            snapshot = dict(snapshot)
            snapshot.pop("task_id")
            task.update(snapshot)
            return True

    def record_file_result(self, task_id, result):
        unit = result.unit
        with self._lock:
            self.files[(task_id, unit.source_path, unit.target_language)] = {
                "task_id": task_id,
                "source_path": unit.source_path,
                "target_language": unit.target_language,
                "target_path": unit.target_path,
                "status": result.status.value,
                "error": result.error,
                "model": result.model,
            }
        return True

    def list_task_files(self, task_id):
        return [
            dict(row) for key, row in sorted(self.files.items())
            if key[0] == task_id
        ]

    def mark_failed(self, task_id, error):
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None or task["status"] in _TERMINAL_VALUES:
                return False
            task.update(status=JobStatus.FAILED.value, error=error)
            return True

    def fail_orphaned_tasks(self):
        count = 0
        for task in self.tasks.values():
            if task["status"] in (JobStatus.PENDING.value, JobStatus.RUNNING.value):
                task.update(
                    status=JobStatus.FAILED.value,
                    error="interrupted by service restart",
                )
                count += 1
        return count


class FakeRepositoryStore:
    def __init__(self, repositories=None):
        self.repositories = {r["repository_id"]: r for r in repositories or []}

    def get_repository(self, repository_id):
        return self.repositories.get(repository_id)

    def find_by_github_id(self, github_repo_id):
        for repository in self.repositories.values():
            if repository.get("github_repo_id") == github_repo_id:
                return repository
        return None

    def read_config(self, repository_id):
        repository = self.repositories.get(repository_id)
        if not repository or not repository.get("config"):
            return None
        return RepositoryConfig.from_document(repository["config"])

    def upsert_config(self, repository_id, updates):
        repository = self.repositories[repository_id]
        config = repository.get("config") or RepositoryConfig(
            base_language=cfg.DEFAULT_BASE_LANGUAGE,
            target_languages=list(cfg.DEFAULT_TARGET_LANGUAGES),
        ).to_document()
        config = dict(config)
        config.update(updates)
        repository["config"] = config
        return RepositoryConfig.from_document(config)


class FakeGitHubClient:
    """Holds a default-branch tree and records everything written."""

    def __init__(self, files=None):
        self.files = dict(files or {})
        self.branches = {}
        self.reads = []
        self.writes = []
        self.pull_requests = []
        self.webhooks = {}
        self.deleted_webhooks = []
        self.compare_files = []
        self.fail_branch = False
        self.fail_pull_request = False
        self._lock = threading.Lock()

    def get_file(self, owner, repo, path, ref=None):
        self.reads.append(path)
        if path not in self.files:
            return None
        return RepoFile(path=path, content=self.files[path], sha=f"sha-{path}")

    def get_file_sha(self, owner, repo, path, ref=None):
        branch = self.branches.get(ref, {})
        return f"sha-{path}" if path in branch else None

    def walk_markdown_files(self, owner, repo, ref=None, skip_directories=None,
                            path=""):
        skip = set(skip_directories or ())
        return sorted(
            p for p in self.files
            if p.endswith((".md", ".mdx"))
            and not any(part in skip for part in p.split("/")[:-1])
        )

    def create_branch(self, owner, repo, branch, base_branch):
        if self.fail_branch:
            raise GitHubAPIError(422, "Reference already exists")
        with self._lock:
            self.branches[branch] = {}
        return {"ref": f"refs/heads/{branch}"}

    def create_or_update_file(self, owner, repo, path, content, message, branch,
                              sha=None):
        with self._lock:
            if branch not in self.branches:
                raise GitHubAPIError(404, "Branch not found")
            self.branches[branch][path] = content
            self.writes.append({
                "path": path, "content": content, "message": message,
                "branch": branch, "sha": sha,
            })
        return {"content": {"path": path}}

    def create_pull_request(self, owner, repo, title, body, head, base):
        if self.fail_pull_request:
            raise GitHubAPIError(422, "Validation Failed")
        number = len(self.pull_requests) + 1
        self.pull_requests.append(
            {"title": title, "body": body, "head": head, "base": base}
        )
        return {
            "number": number,
            "html_url": f"https://github.com/{owner}/{repo}/pull/{number}",
        }

    def compare_commits(self, owner, repo, base, head):
        return {"files": self.compare_files}

    def create_webhook(self, owner, repo, url, secret, events):
        hook_id = 500 + len(self.webhooks)
        self.webhooks[hook_id] = {"url": url, "secret": secret, "events": events}
        return hook_id

    def delete_webhook(self, owner, repo, hook_id):
        self.deleted_webhooks.append(hook_id)


class FakeTranslator:
    """Prefixes the text with the target language; fails on chosen texts."""

    def __init__(self, fail_texts=()):
        self.fail_texts = set(fail_texts)
        self.calls = []
        self._lock = threading.Lock()

    def translate(self, text, source_lang, target_lang, models):
        models = list(models)
        with self._lock:
            self.calls.append((text, source_lang, target_lang, models))
        if text in self.fail_texts:
            raise TranslationError(f"cannot translate {text!r}")
        return f"[{target_lang}] {text}", models[0]


# ── Builders ─────────────────────────────────────────────────────────────


def make_repository(**config_overrides):
    config = {
        "base_language": "zh-CN",
        "target_languages": ["en", "ja"],
        "include_paths": [],
        "exclude_paths": [],
        "auto_translate": True,
        "ai_model": None,
        "webhook_id": None,
    }
    config.update(config_overrides)
    return {
        "repository_id": REPOSITORY_ID,
        "user_id": "user_1",
        "github_repo_id": GITHUB_REPO_ID,
        "owner": "acme",
        "name": "handbook",
        "full_name": "acme/handbook",
        "default_branch": "main",
        "access_token": "gho_test",
        "config": config,
    }


def make_push(commits, ref="refs/heads/main", **extra):
    payload = {
        "ref": ref,
        "before": "a" * 40,
        "after": "b" * 40,
        "repository": {
            "id": GITHUB_REPO_ID,
            "full_name": "acme/handbook",
            "default_branch": "main",
        },
        "commits": commits,
        "head_commit": commits[-1] if commits else None,
    }
    payload.update(extra)
    return json.dumps(payload).encode("utf-8")


def make_commit(message="Update docs", added=(), modified=(), removed=()):
    return {
        "id": "c" * 40,
        "message": message,
        "added": list(added),
        "modified": list(modified),
        "removed": list(removed),
    }


def webhook_headers(body, delivery_id="delivery-1", event="push",
                    secret=WEBHOOK_SECRET):
    return {
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": delivery_id,
        "X-Hub-Signature-256": sign_payload(body, secret),
        "Content-Type": "application/json",
    }


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setattr(cfg, "GITHUB_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(cfg, "ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setattr(cfg, "ALLOWED_HOSTS", ["testserver", "localhost"])
    monkeypatch.setattr(cfg, "SWEEP_ORPHANED_TASKS_ON_STARTUP", True)
    monkeypatch.setattr(limiter, "enabled", False)
    limiter.reset()


@pytest.fixture
def task_store():
    return FakeTaskStore()


@pytest.fixture
def repository():
    return make_repository()


@pytest.fixture
def repo_store(repository):
    return FakeRepositoryStore([repository])


@pytest.fixture
def github():
    return FakeGitHubClient({
        "docs/介绍.md": "# 介绍",
        "docs/setup.md": "# 安装",
        "guide.md": "# 指南",
    })


@pytest.fixture
def translator():
    return FakeTranslator()


@pytest.fixture
def services(task_store, repo_store, github, translator):
    from src.jobs.service import build_services
    from src.webhooks.deduplicator import DeliveryDeduplicator

    built = build_services(
        tasks=task_store,
        repositories=repo_store,
        translator=translator,
        client_factory=lambda repository: github,
        deduplicator=DeliveryDeduplicator(ttl_seconds=60),
    )
    yield built
    built.shutdown(timeout=5)


@pytest.fixture
def client(services):
    from fastapi.testclient import TestClient
    from main import create_app

    return TestClient(create_app(services))


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}
