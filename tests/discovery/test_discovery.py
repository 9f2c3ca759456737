"""Discovery against live fake servers."""

from nrepleval.discovery.ports import Candidate, PortSource
from nrepleval.discovery.service import DiscoveredServer, discover_servers, probe_server
from nrepleval.nrepl.envtypes import EnvType

FAST = {"connect_timeout": 0.5, "timeout": 0.5}


def test_probe_valid_clojure_server(make_server) -> None:
    server = make_server(cwd="/work/app")
    result = probe_server(Candidate(server.port, PortSource.PORT_FILE), "/work/app", host="127.0.0.1", **FAST)

    assert result.valid
    assert result.env_type == EnvType.CLJ
    assert result.project_dir == "/work/app"
    assert result.matches_cwd
    assert result.session_count == 0
    assert result.source == PortSource.PORT_FILE


def test_probe_other_directory(make_server) -> None:
    server = make_server(cwd="/work/other")
    result = probe_server(Candidate(server.port, PortSource.PROCESS_SCAN), "/work/app", host="127.0.0.1", **FAST)
    assert result.valid
    assert not result.matches_cwd
    assert result.project_dir == "/work/other"


def test_shadow_override_wins_over_describe(make_server) -> None:
    server = make_server(default_ns="shadow.user", versions={"clojure": {"major": 1}})
    result = probe_server(Candidate(server.port, PortSource.PROCESS_SCAN), "/", host="127.0.0.1", **FAST)
    assert result.env_type == EnvType.SHADOW


def test_basilisp_uses_its_own_directory_expression(make_server) -> None:
    server = make_server(versions={"basilisp": {"major": 0}}, cwd="/py/proj")
    result = probe_server(Candidate(server.port, PortSource.PROCESS_SCAN), "/py/proj", host="127.0.0.1", **FAST)

    assert result.env_type == EnvType.BASILISP
    assert result.project_dir == "/py/proj"
    assert server.ops_named("eval")[-1]["code"] == "(import os)\n(os/getcwd)"


def test_unknown_runtime_skips_directory_lookup(make_server) -> None:
    server = make_server(versions={"nrepl": {}})
    result = probe_server(Candidate(server.port, PortSource.PROCESS_SCAN), "/", host="127.0.0.1", **FAST)

    assert result.valid
    assert result.env_type == EnvType.UNKNOWN
    assert result.project_dir is None
    assert not result.matches_cwd
    # Only the shadow-cljs probe was evaluated
    assert [m["code"] for m in server.ops_named("eval")] == ["1"]


def test_discovery_isolates_bad_candidates(make_server, silent_server, closed_port) -> None:
    good = make_server(cwd="/work/app")
    candidates = [
        Candidate(silent_server.port, PortSource.PORT_FILE),
        Candidate(closed_port, PortSource.PROCESS_SCAN),
        Candidate(good.port, PortSource.PROCESS_SCAN),
    ]

    results = discover_servers("/work/app", host="127.0.0.1", candidates=candidates, **FAST)

    assert [(r.port, r.valid) for r in results] == [
        (silent_server.port, False),
        (closed_port, False),
        (good.port, True),
    ]
    assert results[0].env_type is None
    assert results[2].matches_cwd


def test_discovery_survives_probe_exceptions() -> None:
    def probe(candidate, cwd, **kwargs):
        if candidate.port == 1:
            raise RuntimeError("unexpected")
        return DiscoveredServer(host="h", port=candidate.port, source=candidate.source, valid=True)

    candidates = [Candidate(1, PortSource.PROCESS_SCAN), Candidate(2, PortSource.PROCESS_SCAN)]
    results = discover_servers("/", candidates=candidates, probe=probe)
    assert [(r.port, r.valid) for r in results] == [(1, False), (2, True)]


def test_discovery_reads_port_file(make_server, tmp_path, monkeypatch) -> None:
    server = make_server(cwd=str(tmp_path))
    (tmp_path / ".nrepl-port").write_text(str(server.port))
    monkeypatch.setattr("nrepleval.discovery.ports.listening_runtime_ports", lambda: [server.port])

    results = discover_servers(str(tmp_path), host="127.0.0.1", **FAST)

    assert len(results) == 1
    assert results[0].source == PortSource.PORT_FILE
    assert results[0].matches_cwd
