import os
from pathlib import Path
from unittest.mock import patch

from nrepleval.core import paths


def test_sanitize() -> None:
    assert paths.sanitize("abc-1.2_x") == "abc-1.2_x"
    assert paths.sanitize("a b/c:d") == "a_b_c_d"
    assert paths.sanitize("a  //  b") == "a_b"


def test_scope_id_prefers_environment() -> None:
    with patch.dict(os.environ, {"NREPL_EVAL_SCOPE_ID": "agent-42"}):
        assert paths.scope_id() == "agent-42"


def test_scope_id_falls_back_to_parent_process() -> None:
    with patch.dict(os.environ, {"NREPL_EVAL_SCOPE_ID": ""}):
        scope = paths.scope_id()
    assert scope.startswith(f"ppid-{os.getppid()}-")


def test_scope_id_global_when_parent_unavailable() -> None:
    with patch.dict(os.environ, {"NREPL_EVAL_SCOPE_ID": ""}), patch.object(paths, "ppid_scope_id", return_value=None):
        assert paths.scope_id() == "global"


def test_session_dir_layout(tmp_path) -> None:
    with patch.dict(os.environ, {"XDG_RUNTIME_DIR": str(tmp_path)}):
        directory = paths.nrepl_session_dir(scope="my scope", project_root="/work/proj")

    assert directory.name == "nrepl"
    assert directory.parent.parent == Path(tmp_path) / "nrepl-eval"
    scope_dir = directory.parent.name
    assert scope_dir.startswith("my_scope-proj-")
    assert len(scope_dir.rsplit("-", 1)[1]) == 40
    assert not directory.exists()


def test_session_dir_differs_per_project_and_scope(tmp_path) -> None:
    with patch.dict(os.environ, {"XDG_RUNTIME_DIR": str(tmp_path)}):
        a = paths.nrepl_session_dir(scope="s", project_root="/a")
        b = paths.nrepl_session_dir(scope="s", project_root="/b")
        c = paths.nrepl_session_dir(scope="t", project_root="/a")
    assert len({a, b, c}) == 3


def test_target_file_name() -> None:
    assert paths.target_file_name("localhost", 7888) == "target-localhost-7888.json"
    assert paths.target_file_name("::1", 7888) == "target-_1-7888.json"
