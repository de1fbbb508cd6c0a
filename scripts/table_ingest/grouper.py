"""
Groups parsed records by partition key.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .models import FlightRecord


@dataclass
class PartitionGroup:
    """Records sharing one partition key, in input order."""
    partition_key: str
    records: List[FlightRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)


def group_by_partition(records: Iterable[FlightRecord]) -> List[PartitionGroup]:
    """
    Partition records by their partition key.

    Groups come out in order of first appearance; records keep their
    input order within a group.
    """
    groups: Dict[str, PartitionGroup] = {}
    for record in records:
        group = groups.get(record.partition_key)
        if group is None:
            group = PartitionGroup(partition_key=record.partition_key)
            groups[record.partition_key] = group
        group.records.append(record)
    return list(groups.values())
