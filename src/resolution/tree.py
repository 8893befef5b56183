"""Install tree construction from resolved packages.

What matters here are dependency chains. Every node of the final tree is one
chain: the ordered package ids from a top-level root down to that package.
The builder enumerates all chains, then shortens them (hoisting) so packages
move toward the root wherever that cannot change which version any consumer
finds with a Node-style upward ``node_modules`` search.

Phases:

1. Enumerate chains breadth-first, rejecting unresolvable cycles.
2. Hoist singly-versioned packages whose own dependencies are all at the
   root, repeating until nothing moves.
3. Hoist every remaining singly-versioned package unconditionally.
4. Hoist the most popular version of each multiply-versioned name wherever
   no sibling path disagrees about that name.
5. Nest any dependency an upward search would no longer find.

Phases 3 and 4 are greedy and not optimal; deeper deduplication is left on
the table.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from errors import ManifestError, UnresolvableCycleError, UnsupportedPlatformError
from resolution.platform import current_platform, is_supported
from versioning.models import (
    DependencyChain,
    DependencyGraph,
    InstallTree,
    PackageId,
    PackageSpec,
    VersionRecord,
    package_name,
)

logger = logging.getLogger(__name__)

ChildIndex = Dict[DependencyChain, Dict[str, PackageId]]


def fold_chains(chains: Iterable[DependencyChain]) -> InstallTree:
    """Fold a set of chains into a nested forest."""
    tree: InstallTree = {}
    for chain in sorted(chains):
        node = tree
        for package_id in chain:
            node = node.setdefault(package_id, {})
    return tree


def tree_chains(tree: InstallTree, prefix: DependencyChain = ()) -> Iterator[DependencyChain]:
    """Yield the chain of every node in ``tree``, parents before children."""
    for package_id, subtree in tree.items():
        chain = prefix + (package_id,)
        yield chain
        yield from tree_chains(subtree, chain)


def _child_index(chains: Iterable[DependencyChain]) -> ChildIndex:
    index: ChildIndex = {}
    for chain in chains:
        index.setdefault(chain[:-1], {})[package_name(chain[-1])] = chain[-1]
    return index


def lookup(index: ChildIndex, chain: DependencyChain, name: str) -> Optional[PackageId]:
    """Return the id an upward search from ``chain``'s directory finds for ``name``."""
    for depth in range(len(chain), -1, -1):
        found = index.get(chain[:depth], {}).get(name)
        if found is not None:
            return found
    return None


def unreachable_dependencies(
    chains: Iterable[DependencyChain], graph: DependencyGraph
) -> List[Tuple[DependencyChain, PackageId]]:
    """List ``(chain, dependency)`` pairs an upward search would not resolve exactly."""
    chains = sorted(chains)
    index = _child_index(chains)
    missing = []
    for chain in chains:
        for dep in graph.get(chain[-1], ()):
            if lookup(index, chain, package_name(dep)) != dep:
                missing.append((chain, dep))
    return missing


class InstallTreeBuilder:
    """Turns a resolved dependency graph into a deduplicated install tree."""

    def __init__(self, graph: DependencyGraph):
        self.graph = graph
        self.chains: Set[DependencyChain] = set()
        # name -> distinct ids requested anywhere in the closure
        self.names: Dict[str, Set[PackageId]] = {}

    def build(self, roots: Iterable[PackageId]) -> InstallTree:
        """Run every phase for the given root ids and return the folded tree."""
        self.enumerate(roots)
        self.hoist_conservative()
        self.hoist_unconditional()
        self.hoist_popular()
        self.repair()
        tree = fold_chains(self.chains)
        nested = sum(1 for chain in self.chains if len(chain) > 1)
        logger.info(
            "Install tree has %d top-level and %d nested packages", len(tree), nested
        )
        return tree

    def enumerate(self, roots: Iterable[PackageId]) -> None:
        """Breadth-first expansion of every chain reachable from ``roots``.

        Raises:
            UnresolvableCycleError: When a dependency already on the chain is
                preceded there by a different version of the same name.
        """
        queue = deque((root,) for root in roots)
        while queue:
            chain = queue.popleft()
            package_id = chain[-1]
            self.names.setdefault(package_name(package_id), set()).add(package_id)
            if chain in self.chains:
                continue
            self.chains.add(chain)

            for dep in self.graph[package_id]:
                if dep in chain:
                    dep_name = package_name(dep)
                    if any(package_name(x) == dep_name and x != dep for x in chain):
                        raise UnresolvableCycleError(chain + (dep,))
                    continue
                queue.append(chain + (dep,))

    def _singly_versioned(self) -> List[PackageId]:
        return [next(iter(ids)) for ids in self.names.values() if len(ids) == 1]

    def _hoist(
        self,
        package_id: PackageId,
        accept: Optional[Callable[[DependencyChain, int], bool]] = None,
        on_move: Optional[Callable[[DependencyChain, Optional[DependencyChain]], None]] = None,
    ) -> bool:
        """Truncate every chain holding ``package_id`` below the root to start there.

        ``on_move(old, new)`` is told about each truncation; ``new`` is None
        when the shortened chain was already present.
        """
        changed = False
        for chain in sorted(self.chains):
            if chain not in self.chains:
                continue
            try:
                index = chain.index(package_id)
            except ValueError:
                continue
            if index == 0:
                continue
            if accept is not None and not accept(chain, index):
                continue
            shortened = chain[index:]
            self.chains.discard(chain)
            if on_move is not None:
                on_move(chain, None if shortened in self.chains else shortened)
            self.chains.add(shortened)
            changed = True
        return changed

    def hoist_conservative(self) -> None:
        """Hoist singly-versioned packages whose dependencies all sit at the root."""
        changed = True
        while changed:
            changed = False
            for package_id in self._singly_versioned():
                if any((dep,) not in self.chains for dep in self.graph[package_id]):
                    continue
                if self._hoist(package_id):
                    changed = True

    def hoist_unconditional(self) -> None:
        """Hoist every singly-versioned package regardless of its dependencies."""
        for package_id in self._singly_versioned():
            self._hoist(package_id)

    @staticmethod
    def _other_version_prefixes(
        chain: DependencyChain, name: str, package_id: PackageId
    ) -> Iterator[DependencyChain]:
        for i, other in enumerate(chain):
            if other != package_id and package_name(other) == name:
                yield chain[:i]

    def _blocked_prefixes(self, name: str, package_id: PackageId) -> Counter:
        """Count, per prefix, chain entries below it holding another version of ``name``."""
        blocked: Counter = Counter()
        for chain in self.chains:
            blocked.update(self._other_version_prefixes(chain, name, package_id))
        return blocked

    def hoist_popular(self) -> None:
        """Hoist multiply-versioned ids, most frequently nested first."""
        counts = Counter(chain[-1] for chain in self.chains)
        candidates = sorted(
            (
                (count, package_id)
                for package_id, count in counts.items()
                if count >= 2 and len(self.names[package_name(package_id)]) > 1
            ),
            key=lambda item: (-item[0], item[1]),
        )
        for _, package_id in candidates:
            if (package_id,) in self.chains:
                continue
            name = package_name(package_id)
            blocked = self._blocked_prefixes(name, package_id)

            def accept(chain: DependencyChain, index: int) -> bool:
                # Another version earlier on the same chain
                if any(package_name(x) == name for x in chain[:index]):
                    return False
                return not any(blocked[chain[:i]] > 0 for i in range(index))

            def on_move(old: DependencyChain, new: Optional[DependencyChain]) -> None:
                blocked.subtract(self._other_version_prefixes(old, name, package_id))
                if new is not None:
                    blocked.update(self._other_version_prefixes(new, name, package_id))

            self._hoist(package_id, accept, on_move)

    def repair(self) -> None:
        """Nest dependencies that an upward search no longer resolves exactly.

        Raises:
            UnresolvableCycleError: When the fix would repeat an id on its chain.
        """
        while True:
            missing = unreachable_dependencies(self.chains, self.graph)
            if not missing:
                return
            for chain, dep in missing:
                if dep in chain:
                    raise UnresolvableCycleError(chain + (dep,))
                self.chains.add(chain + (dep,))
            logger.debug("Nested %d dependencies after hoisting", len(missing))


def build_tree(
    top_level_specs: Iterable[PackageSpec],
    table: Dict[PackageId, VersionRecord],
    version_map: Dict[str, PackageId],
    graph: DependencyGraph,
    platform: Optional[str] = None,
) -> InstallTree:
    """Build the install tree for ``top_level_specs``.

    Args:
        top_level_specs: Specs requested by the user or manifest.
        table: Resolved package table.
        version_map: Spec key -> resolved id.
        graph: Platform-pruned dependency graph.
        platform: Platform identifier; defaults to the running platform.

    Raises:
        UnsupportedPlatformError: If a top-level package excludes the platform.
        UnresolvableCycleError: If two versions of a name cannot coexist on a chain.
        ManifestError: If two top-level specs resolve to different versions of one name.
    """
    platform = platform or current_platform()
    roots: Dict[str, PackageId] = {}
    for spec in top_level_specs:
        package_id = version_map[spec.key]
        if not is_supported(table[package_id], platform):
            raise UnsupportedPlatformError(package_id, platform)
        existing = roots.setdefault(package_name(package_id), package_id)
        if existing != package_id:
            raise ManifestError(
                f"Conflicting top-level requests: {existing} and {package_id}"
            )
    return InstallTreeBuilder(graph).build(roots.values())
