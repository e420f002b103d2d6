"""
Stitch the member ways of a route relation into one ordered polyline.

Route relations list their member ways in no guaranteed order or direction.
The assembler performs a greedy chain walk: starting from the first usable
fragment, it repeatedly appends whichever unused fragment touches the current
tail (reversing it when needed). When the chain cannot be extended, the
remaining fragments are appended in their original order.

The walk never backtracks to try alternative joins, so on branching or gapped
relations the result is a best-effort path. Fragment counts per route are in
the tens, which keeps the quadratic scan cheap.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from config.settings import config
from scripts.domain.models import Coordinate, PathFragment


class FragmentAssembler:
    """Greedy endpoint-matching stitcher for path fragments."""

    def __init__(
        self, tolerance: float | None = None, logger: logging.Logger | None = None
    ):
        """
        Args:
            tolerance (float, optional): Maximum per-axis difference in degrees for two
                                         endpoints to be considered the same point.
                                         Defaults to config.FRAGMENT_ENDPOINT_TOLERANCE_DEG
            logger (logging.Logger, optional): Defaults to the module logger
        """
        self.tolerance = (
            tolerance if tolerance is not None else config.FRAGMENT_ENDPOINT_TOLERANCE_DEG
        )
        self.logger = logger or logging.getLogger(__name__)

    def coordinates_match(self, a: Coordinate, b: Coordinate) -> bool:
        """True when both axes differ by strictly less than the tolerance."""
        return abs(a.lon - b.lon) < self.tolerance and abs(a.lat - b.lat) < self.tolerance

    def assemble(
        self,
        fragment_ids: Iterable[int],
        fragments: Mapping[int, PathFragment],
    ) -> list[Coordinate]:
        """
        Stitch fragments into a single coordinate sequence.

        Args:
            fragment_ids: Fragment ids in the order the route lists them
            fragments: Resolved fragments keyed by id; missing ids are ignored

        Returns:
            list[Coordinate]: The stitched polyline, empty if nothing resolves
        """
        # Usable fragments in requested order, each id visited once
        order = [
            fid
            for fid in dict.fromkeys(fragment_ids)
            if fid in fragments and not fragments[fid].is_empty
        ]
        if not order:
            return []

        chain = list(fragments[order[0]].coordinates)
        used = {order[0]}

        while len(used) < len(order):
            tail = chain[-1]
            next_id = None
            reverse = False

            for fid in order:
                if fid in used:
                    continue
                fragment = fragments[fid]
                if self.coordinates_match(tail, fragment.start):
                    next_id = fid
                    break
                if self.coordinates_match(tail, fragment.end):
                    next_id = fid
                    reverse = True
                    break

            if next_id is None:
                remaining = [fid for fid in order if fid not in used]
                self.logger.debug(
                    f"Chain broken after {len(used)} fragments; appending {len(remaining)} unconnected"
                )
                for fid in remaining:
                    chain.extend(fragments[fid].coordinates)
                break

            coords = fragments[next_id].coordinates
            chain.extend(reversed(coords) if reverse else coords)
            used.add(next_id)

        return chain
