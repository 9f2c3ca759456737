"""Discovery and classification of local nREPL servers."""

from nrepleval.discovery.ports import Candidate, PortSource
from nrepleval.discovery.service import DiscoveredServer, discover_servers, probe_server

__all__ = ["Candidate", "DiscoveredServer", "PortSource", "discover_servers", "probe_server"]
