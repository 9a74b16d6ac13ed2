"""
Container/pool model.

A container stands for a wet-lab tube: one or more sequences that coexist,
each with a multiplicity. Containers reference sequences by id only.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Collection, Dict, Iterable, List, Optional


class ContainerKind(Enum):
    SINGLETON = "singleton"
    POOL = "pool"
    SELECTION = "selection"


@dataclass
class ContainerMember:
    seq_id: str
    multiplicity: int = 1


@dataclass
class Container:
    """Logical tube holding sequences with multiplicities."""
    container_id: str
    kind: ContainerKind
    members: List[ContainerMember] = field(default_factory=list)
    name: Optional[str] = None
    created_by_op: Optional[str] = None

    def member_ids(self) -> List[str]:
        return [m.seq_id for m in self.members]

    def expanded_member_ids(self) -> List[str]:
        """Member ids repeated by multiplicity."""
        out = []
        for m in self.members:
            out.extend([m.seq_id] * m.multiplicity)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            'container_id': self.container_id,
            'kind': self.kind.value,
            'name': self.name,
            'members': [[m.seq_id, m.multiplicity] for m in self.members],
            'created_by_op': self.created_by_op,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Container':
        members = []
        for entry in d.get('members', []):
            if isinstance(entry, str):
                members.append(ContainerMember(entry, 1))
            else:
                members.append(ContainerMember(entry[0], int(entry[1])))
        return cls(
            container_id=d['container_id'],
            kind=ContainerKind(d.get('kind', 'singleton')),
            members=members,
            name=d.get('name'),
            created_by_op=d.get('created_by_op'),
        )


def collapse_members(seq_ids: Iterable[str], multiplicities: Optional[Dict[str, int]] = None) -> List[ContainerMember]:
    """Collapse repeated ids into members, keeping first-seen order."""
    counts: Dict[str, int] = {}
    for seq_id in seq_ids:
        weight = (multiplicities or {}).get(seq_id, 1)
        counts[seq_id] = counts.get(seq_id, 0) + weight
    return [ContainerMember(seq_id, count) for seq_id, count in counts.items()]


@dataclass
class ContainerState:
    """All containers plus the latest-membership index."""
    containers: Dict[str, Container] = field(default_factory=dict)
    seq_to_latest_container: Dict[str, str] = field(default_factory=dict)
    next_container_counter: int = 0

    def next_container_id(self) -> str:
        while True:
            self.next_container_counter += 1
            container_id = f"container-{self.next_container_counter}"
            if container_id not in self.containers:
                return container_id

    def add(
        self,
        members: List[ContainerMember],
        kind: ContainerKind,
        name: Optional[str] = None,
        created_by_op: Optional[str] = None,
    ) -> Optional[str]:
        """Register a container; returns None when there are no members."""
        if not members:
            return None
        container_id = self.next_container_id()
        self.containers[container_id] = Container(
            container_id=container_id,
            kind=kind,
            members=list(members),
            name=name,
            created_by_op=created_by_op,
        )
        for member in members:
            self.seq_to_latest_container[member.seq_id] = container_id
        return container_id

    def get(self, container_id: str) -> Optional[Container]:
        return self.containers.get(container_id)

    def validate(self, live_seq_ids: Iterable[str]) -> List[str]:
        """Return invariant violations (dangling members or index entries)."""
        errors = _check_members(self.containers.values(), set(live_seq_ids))
        for seq_id, container_id in self.seq_to_latest_container.items():
            if container_id not in self.containers:
                errors.append(f"Index maps '{seq_id}' to unknown container '{container_id}'")
        return errors

    def validate_since(self, container_counter: int, live_seq_ids: Collection[str]) -> List[str]:
        """Check only containers registered after a next_container_counter mark."""
        new_ids = (f"container-{i}" for i in range(container_counter + 1, self.next_container_counter + 1))
        new = [self.containers[cid] for cid in new_ids if cid in self.containers]
        errors = _check_members(new, live_seq_ids)
        for container in new:
            for member in container.members:
                if self.seq_to_latest_container.get(member.seq_id) not in self.containers:
                    errors.append(f"Index entry for '{member.seq_id}' does not name a known container")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'containers': {
                cid: c.to_dict() for cid, c in sorted(self.containers.items(), key=lambda kv: container_order(kv[0]))
            },
            'seq_to_latest_container': dict(sorted(self.seq_to_latest_container.items())),
            'next_container_counter': self.next_container_counter,
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> 'ContainerState':
        d = d or {}
        return cls(
            containers={cid: Container.from_dict(c) for cid, c in d.get('containers', {}).items()},
            seq_to_latest_container=dict(d.get('seq_to_latest_container', {})),
            next_container_counter=int(d.get('next_container_counter', 0)),
        )


def _check_members(containers: Iterable[Container], live_seq_ids: Collection[str]) -> List[str]:
    errors = []
    for container in containers:
        for member in container.members:
            if member.seq_id not in live_seq_ids:
                errors.append(
                    f"Container '{container.container_id}' references unknown sequence '{member.seq_id}'"
                )
            if member.multiplicity < 1:
                errors.append(
                    f"Container '{container.container_id}' has multiplicity {member.multiplicity} "
                    f"for '{member.seq_id}'"
                )
    return errors


def container_order(container_id: str):
    """Sort key placing container-2 before container-10."""
    prefix, _, number = container_id.rpartition('-')
    return (prefix, int(number), '') if number.isdigit() else (container_id, -1, container_id)
