"""
Versioned leave policy lookup.
"""

import logging
import threading
from collections import defaultdict
from datetime import date

from leave_engine.errors import PolicyNotFoundError
from leave_engine.models import LeavePolicy, Region
from leave_engine.repository import Repository

logger = logging.getLogger(__name__)


class PolicyCatalog:
    """
    Read-only index of leave policies by (leave type, region).

    A region without its own version of a leave type falls back to the GLOBAL
    version. The fallback replaces the lookup, it never merges fields.
    """

    def __init__(self, repository: Repository):
        self._repository = repository
        self._lock = threading.Lock()
        self._index: dict[tuple[str, Region], list[LeavePolicy]] = {}
        self.reload()

    def reload(self) -> int:
        """Re-read policies from the repository. Returns the number loaded."""
        policies = self._repository.load_policies()

        index: dict[tuple[str, Region], list[LeavePolicy]] = defaultdict(list)
        for policy in policies:
            index[(policy.leave_type_code, policy.region)].append(policy)
        for versions in index.values():
            versions.sort(key=lambda p: p.effective_from, reverse=True)

        with self._lock:
            self._index = dict(index)

        logger.info(f"Policy catalog loaded {len(policies)} policies")
        return len(policies)

    def _effective(self, leave_type_code: str, region: Region, as_of: date) -> LeavePolicy | None:
        with self._lock:
            versions = self._index.get((leave_type_code, region), [])
        for policy in versions:
            if policy.is_effective_on(as_of):
                return policy
        return None

    def lookup(self, leave_type_code: str, region: Region, as_of: date) -> LeavePolicy:
        policy = self._effective(leave_type_code, region, as_of)
        if policy is None and region != Region.GLOBAL:
            policy = self._effective(leave_type_code, Region.GLOBAL, as_of)
        if policy is None:
            raise PolicyNotFoundError(
                f"No {leave_type_code} policy for {region.value} effective on {as_of.isoformat()}",
                details={"leave_type_code": leave_type_code, "region": region.value},
            )
        return policy

    def policies_for_region(self, region: Region, as_of: date) -> list[LeavePolicy]:
        """Effective policy of every leave type visible to ``region``."""
        with self._lock:
            codes = sorted(
                {code for code, policy_region in self._index if policy_region in (region, Region.GLOBAL)}
            )

        policies = []
        for code in codes:
            try:
                policies.append(self.lookup(code, region, as_of))
            except PolicyNotFoundError:
                continue
        return policies
