"""
Network Allocator.

Assigns VLAN tags per logical network name. Jobs of one Parallel cluster
share a tag; unrelated jobs never get the same one. The tag is claimed with
a conditional insert, so two allocators racing for the same number cannot
both win.
"""

import logging

from .errors import NetworkAllocationError
from .graph import DependencyGraph
from .persistence import PersistenceAdapter


logger = logging.getLogger(__name__)

# Upper bound on claim attempts, each attempt moves to a higher tag
MAX_ALLOCATION_ATTEMPTS = 4096


class NetworkAllocator:
    def __init__(self, persistence: PersistenceAdapter, graph: DependencyGraph):
        self.persistence = persistence
        self.graph = graph

    def allocate(self, job_id: int, name: str) -> int:
        """
        Return the VLAN tag for (job_id, name), allocating one if needed.

        The lookup of a tag already held by the job or its Parallel cluster
        and the claim of a new tag happen in the same transaction, so
        concurrent calls for one cluster end up on one tag.

        Args:
            job_id: Requesting job
            name: Logical network name

        Returns:
            VLAN tag

        Raises:
            NetworkAllocationError: No tag could be claimed
        """
        cluster = self.graph.parallel_cluster(job_id)
        used = self.persistence.used_vlans()
        candidate = 1
        for _ in range(MAX_ALLOCATION_ATTEMPTS):
            while candidate in used:
                candidate += 1
            vlan = self.persistence.claim_network(job_id, name, cluster, candidate)
            if vlan == candidate:
                logger.info(f"Allocated VLAN {vlan} for network '{name}' of job {job_id}")
                return vlan
            if vlan is not None:
                logger.debug(f"Job {job_id} joins network '{name}' on existing VLAN {vlan}")
                return vlan
            logger.debug(f"VLAN {candidate} taken concurrently, trying next")
            used.add(candidate)

        raise NetworkAllocationError(job_id, name)

    def release(self, job_id: int) -> int:
        """Drop all networks registered for job_id."""
        released = self.persistence.release_networks(job_id)
        if released:
            logger.debug(f"Released {released} network(s) of job {job_id}")
        return released
