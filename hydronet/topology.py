"""
Derived network topology.

Connectivity is never stored, so the graph is rebuilt from coincidence on
demand: every cluster of coincident points becomes one junction node, every
vertex pair of a pipe segment becomes one edge.

    G = build_network_graph(model)
    G.nodes[j]   -> {"pos": (x, y), "objects": [NodeRef, ...]}
    G.edges[a, b, (segment_id, pair_index)] -> {"segment_id", "diameter", "name"}
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Set, Tuple

import networkx as nx

from hydronet.coincidence import Coord, SpatialIndex
from hydronet.model import NetworkModel, NodeRef, PipeSegment, VertexRef

logger = logging.getLogger(__name__)

EdgeKey = Tuple[int, int]


@dataclass
class Pipeline:
    """A named pipe reassembled from its segments into one ordered polyline."""
    name: str
    segment_ids: List[int] = field(default_factory=list)
    vertices: List[Coord] = field(default_factory=list)


def _junction_map(model: NetworkModel, graph: nx.MultiGraph) -> Dict[Hashable, int]:
    """Assign every node and vertex to a junction; the first point seen represents it."""
    representatives = SpatialIndex(model.matcher)
    junction_of: Dict[Hashable, int] = {}

    def assign(ref, position):
        junction = representatives.nearest(position)
        if junction is None:
            junction = graph.number_of_nodes()
            graph.add_node(junction, pos=position, objects=[])
            representatives.insert(junction, position)
        junction_of[ref] = junction
        return junction

    for node in model.iter_nodes():
        junction = assign(node.ref, node.position)
        graph.nodes[junction]["objects"].append(node.ref)
    for segment in model.segments:
        for i, vertex in enumerate(segment.vertices):
            assign(VertexRef(segment.id, i), vertex)
    return junction_of


def build_network_graph(model: NetworkModel) -> nx.MultiGraph:
    graph = nx.MultiGraph()
    junction_of = _junction_map(model, graph)
    graph.graph["junction_of"] = junction_of

    for segment in model.segments:
        for i in range(len(segment.vertices) - 1):
            a = junction_of[VertexRef(segment.id, i)]
            b = junction_of[VertexRef(segment.id, i + 1)]
            graph.add_edge(
                a, b, key=(segment.id, i),
                segment_id=segment.id, diameter=segment.diameter, name=segment.name,
            )
    logger.debug(
        f"Network graph: {graph.number_of_nodes()} junctions, {graph.number_of_edges()} edges"
    )
    return graph


def find_junctions(model: NetworkModel, min_degree: int = 3,
                   graph: Optional[nx.MultiGraph] = None) -> List[Coord]:
    """Positions where at least min_degree segment ends meet."""
    graph = graph if graph is not None else build_network_graph(model)
    return [
        data["pos"] for junction, data in graph.nodes(data=True)
        if graph.degree(junction) >= min_degree
    ]


def dangling_ends(model: NetworkModel, graph: Optional[nx.MultiGraph] = None) -> List[Coord]:
    """Pipe ends that touch neither another segment nor a point-object."""
    graph = graph if graph is not None else build_network_graph(model)
    return [
        data["pos"] for junction, data in graph.nodes(data=True)
        if graph.degree(junction) == 1 and not data["objects"]
    ]


def anchored_objects(model: NetworkModel, segment_id: int,
                     graph: Optional[nx.MultiGraph] = None) -> List[NodeRef]:
    """Point-objects sitting on any vertex of a segment."""
    segment = model.get_segment(segment_id)
    if segment is None:
        return []
    graph = graph if graph is not None else build_network_graph(model)
    junction_of = graph.graph["junction_of"]
    refs: List[NodeRef] = []
    for i in range(len(segment.vertices)):
        for ref in graph.nodes[junction_of[VertexRef(segment_id, i)]]["objects"]:
            if ref not in refs:
                refs.append(ref)
    return refs


# --- Pipeline reassembly ---

def _walk_chains(sub: nx.MultiGraph) -> List[List[Tuple[int, int, EdgeKey]]]:
    """Split a component into edge chains, starting each chain at an odd-degree end when possible."""
    used: Set[EdgeKey] = set()

    def free_edges(node):
        edges = [(u, v, k) for u, v, k in sub.edges(node, keys=True) if k not in used]
        return sorted(edges, key=lambda e: e[2])

    chains = []
    while len(used) < sub.number_of_edges():
        candidates = [n for n in sorted(sub.nodes) if free_edges(n)]
        odd = [n for n in candidates if len(free_edges(n)) % 2 == 1]
        current = odd[0] if odd else candidates[0]
        chain = []
        while True:
            edges = free_edges(current)
            if not edges:
                break
            _, other, key = edges[0]
            used.add(key)
            chain.append((current, other, key))
            current = other
        chains.append(chain)
    return chains


def _chain_vertices(chain, segments: Dict[int, PipeSegment],
                    junction_of: Dict[Hashable, int]) -> List[Coord]:
    vertices: List[Coord] = []
    for start, _, (segment_id, i) in chain:
        segment = segments[segment_id]
        a, b = segment.vertices[i], segment.vertices[i + 1]
        if junction_of[VertexRef(segment_id, i)] != start:
            a, b = b, a
        if not vertices:
            vertices.append(a)
        vertices.append(b)
    return vertices


def assemble_pipelines(model: NetworkModel) -> List[Pipeline]:
    """
    Group segments by their name property and chain each connected run
    into an ordered polyline. A branched run yields one pipeline per chain.
    """
    graph = build_network_graph(model)
    junction_of = graph.graph["junction_of"]
    segments = {s.id: s for s in model.segments}

    by_name: Dict[str, List[Tuple[int, int, EdgeKey]]] = {}
    for u, v, key, data in graph.edges(keys=True, data=True):
        by_name.setdefault(data["name"], []).append((u, v, key))

    pipelines = []
    for name in sorted(by_name):
        sub = nx.MultiGraph()
        for u, v, key in by_name[name]:
            sub.add_edge(u, v, key=key)
        for component in sorted(nx.connected_components(sub), key=min):
            for chain in _walk_chains(sub.subgraph(component)):
                segment_ids: List[int] = []
                for _, _, (segment_id, _) in chain:
                    if segment_id not in segment_ids:
                        segment_ids.append(segment_id)
                pipelines.append(Pipeline(
                    name=name,
                    segment_ids=segment_ids,
                    vertices=_chain_vertices(chain, segments, junction_of),
                ))
    return pipelines
