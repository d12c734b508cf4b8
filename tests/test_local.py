"""Tests for local project discovery and git inspection."""

from __future__ import annotations

from pathlib import Path

import pytest
from git import Actor, Repo

from projectdeck.relation import UnknownCommitError
from projectdeck_git.local import (
    BranchHistoryGraph,
    RemoteUrlType,
    RepoCommitGraph,
    list_local_projects,
    read_branch_commits,
    read_changes,
    read_remotes,
    remote_url_type,
    upstream_commit,
)

AUTHOR = Actor("Test", "test@example.com")


def _init(path: Path) -> Repo:
    path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(path)
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    return repo


def _commit(repo: Repo, name: str, text: str) -> str:
    Path(repo.working_tree_dir, name).write_text(text)
    repo.index.add([name])
    return repo.index.commit(f"Update {name}", author=AUTHOR, committer=AUTHOR).hexsha


@pytest.fixture
def repo(tmp_path: Path) -> Repo:
    repo = _init(tmp_path / "work")
    _commit(repo, "README.md", "# Work\n")
    yield repo
    repo.close()


@pytest.fixture
def published(tmp_path: Path, repo: Repo) -> Repo:
    """``repo`` with a bare origin; main pushed with tracking."""
    bare = tmp_path / "origin.git"
    Repo.init(bare, bare=True).close()
    repo.create_remote("origin", str(bare))
    repo.git.push("-u", "origin", "main")
    return repo


class TestRemoteUrlType:
    def test_http(self):
        assert remote_url_type("https://github.com/o/r.git") is RemoteUrlType.HTTP

    def test_ssh(self):
        assert remote_url_type("git@github.com:o/r.git") is RemoteUrlType.SSH

    def test_unsupported(self):
        assert remote_url_type("/srv/git/r.git") is None
        assert remote_url_type("ssh://git@host/r.git") is None


class TestReadRemotes:
    def test_keeps_matchable_remotes(self, repo):
        repo.create_remote("origin", "https://github.com/octo/work.git")
        repo.create_remote("mirror", "git@github.com:octo/work.git")
        repo.create_remote("disk", "/srv/git/work.git")

        remotes = {r.name: r for r in read_remotes(repo)}

        assert set(remotes) == {"origin", "mirror"}
        assert remotes["origin"].url_type is RemoteUrlType.HTTP
        assert remotes["mirror"].url == "git@github.com:octo/work.git"


class TestBranchCommits:
    def test_all_local_branches(self, repo):
        first = repo.head.commit.hexsha
        repo.git.branch("feature")
        second = _commit(repo, "a.txt", "a")

        assert read_branch_commits(repo) == {"main": second, "feature": first}


class TestUpstreamCommit:
    def test_tracking_branch(self, published):
        pushed = published.head.commit.hexsha
        _commit(published, "local.txt", "not pushed")

        assert upstream_commit(published, "main") == pushed

    def test_falls_back_to_remote_branch_of_same_name(self, published):
        published.git.checkout("-b", "dev")
        dev = _commit(published, "dev.txt", "dev")
        published.git.push("origin", "dev")

        assert published.heads["dev"].tracking_branch() is None
        assert upstream_commit(published, "dev") == dev

    def test_no_upstream(self, published):
        published.git.branch("lonely")
        assert upstream_commit(published, "lonely") is None

    def test_unknown_branch(self, repo):
        assert upstream_commit(repo, "nope") is None

    def test_other_remote_name(self, published):
        assert upstream_commit(published, "main", remote="upstream") == published.head.commit.hexsha
        published.heads["main"].set_tracking_branch(None)
        assert upstream_commit(published, "main", remote="upstream") is None


class TestReadChanges:
    def test_clean(self, repo):
        assert read_changes(repo) == []

    def test_modified_and_untracked(self, repo):
        (Path(repo.working_tree_dir) / "README.md").write_text("changed\n")
        (Path(repo.working_tree_dir) / "new.txt").write_text("new\n")

        changes = {(c.path, c.status) for c in read_changes(repo)}

        assert changes == {("README.md", "M"), ("new.txt", "??")}

    def test_ignored_files_not_reported(self, repo):
        _commit(repo, ".gitignore", "*.log\n")
        (Path(repo.working_tree_dir) / "debug.log").write_text("noise")
        assert read_changes(repo) == []


class TestListLocalProjects:
    def test_sorted_with_plain_dirs(self, tmp_path):
        root = tmp_path / "code"
        _commit(_init(root / "b-repo"), "x.txt", "x")
        (root / "a-notes").mkdir()
        (root / "file.txt").write_text("not a project")

        projects = list_local_projects(root)

        assert [p.name for p in projects] == ["a-notes", "b-repo"]
        assert projects[0].git is None
        assert list(projects[1].git.branch_commits) == ["main"]

    def test_git_only(self, tmp_path):
        root = tmp_path / "code"
        _init(root / "repo")
        (root / "plain").mkdir()

        projects = list_local_projects(root, include_plain_dirs=False)

        assert [p.name for p in projects] == ["repo"]

    def test_empty_repository_has_no_branches(self, tmp_path):
        root = tmp_path / "code"
        _init(root / "fresh")

        [project] = list_local_projects(root)

        assert project.git is not None
        assert project.git.branch_commits == {}

    def test_missing_root(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list_local_projects(tmp_path / "missing")

    def test_file_root(self, tmp_path):
        f = tmp_path / "file"
        f.write_text("")
        with pytest.raises(NotADirectoryError):
            list_local_projects(f)


class TestRepoCommitGraph:
    def test_ancestry(self, repo):
        first = repo.head.commit.hexsha
        second = _commit(repo, "a.txt", "a")
        graph = RepoCommitGraph(repo)

        assert graph.is_ancestor(first, second)
        assert not graph.is_ancestor(second, first)
        assert graph.is_ancestor(first, first)

    def test_unknown_commit(self, repo):
        graph = RepoCommitGraph(repo)
        with pytest.raises(UnknownCommitError):
            graph.is_ancestor("not-a-commit", repo.head.commit.hexsha)


class TestBranchHistoryGraph:
    def test_answers_only_for_head(self):
        graph = BranchHistoryGraph("c3", ["c3", "c2", "c1"])

        assert graph.is_ancestor("c1", "c3")
        assert not graph.is_ancestor("zz", "c3")
        with pytest.raises(UnknownCommitError):
            graph.is_ancestor("c3", "c1")

    def test_head_included(self):
        assert BranchHistoryGraph("h", []).is_ancestor("h", "h")
