"""
Ordered Index Model for the StableBase protocol.

This module simulates the doubly linked lists the protocol keeps its positions
in. Nodes are stored in an id-keyed map and linked by id, with id 0 acting as
the sentinel for an absent head, tail or neighbour. Keys ascend from head to
tail; a caller-supplied hint lets an insertion start its search close to the
final splice point, which makes re-keying a position O(1) when the hint is good.

Two instances exist in a running protocol:
1. The liquidation queue, keyed by debt per unit of collateral. Its tail holds
   the riskiest position and is consumed by liquidations.
2. The redemption queue, keyed by accumulated fee weight. Its head holds the
   position that paid the least and is consumed by redemptions.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import InvalidInput, NotFound, QueueInconsistency
from .events import EventLog, EventType

logger = logging.getLogger(__name__)

SENTINEL = 0


class ConsumeEnd(Enum):
    """End of a queue its consuming engine draws from."""
    HEAD = "head"  # lowest key first
    TAIL = "tail"  # highest key first


@dataclass
class Node:
    id: int
    key: int
    prev: int = SENTINEL
    next: int = SENTINEL


class OrderedIndex:
    """
    Key-ordered doubly linked list over position ids.
    """

    def __init__(self, name: str, consume_end: ConsumeEnd, events: Optional[EventLog] = None):
        self.name = name
        self.consume_end = consume_end
        self.events = events

        self.nodes: Dict[int, Node] = {}
        self.head = SENTINEL
        self.tail = SENTINEL

    def __contains__(self, node_id) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[int]:
        """Iterates ids from head to tail."""
        node_id = self.head
        while node_id != SENTINEL:
            node = self.nodes[node_id]
            yield node_id
            node_id = node.next

    def iter_reverse(self) -> Iterator[int]:
        """Iterates ids from tail to head."""
        node_id = self.tail
        while node_id != SENTINEL:
            node = self.nodes[node_id]
            yield node_id
            node_id = node.prev

    def items(self) -> List[Tuple[int, int]]:
        """Returns (id, key) pairs from head to tail."""
        return [(node_id, self.nodes[node_id].key) for node_id in self]

    def get(self, node_id: int) -> Node:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise NotFound(f"Node {node_id} is not in the {self.name} queue") from None

    def key_of(self, node_id: int) -> int:
        return self.get(node_id).key

    def next_of(self, node_id: int) -> int:
        return self.get(node_id).next

    def prev_of(self, node_id: int) -> int:
        return self.get(node_id).prev

    def peek_next(self) -> Optional[int]:
        """Returns the id at the consuming end, or None when the queue is empty."""
        node_id = self.head if self.consume_end == ConsumeEnd.HEAD else self.tail
        return node_id if node_id != SENTINEL else None

    def pop_next(self) -> Optional[int]:
        """Removes and returns the id at the consuming end."""
        node_id = self.peek_next()
        if node_id is not None:
            self.remove(node_id)
        return node_id

    def after(self, node_id: int) -> Optional[int]:
        """
        Returns the id that follows ``node_id`` in consumption order.

        Args:
            node_id: Id of a node currently in the queue

        Returns:
            The following id, or None when ``node_id`` is the last one
        """
        node = self.get(node_id)
        following = node.next if self.consume_end == ConsumeEnd.HEAD else node.prev
        return following if following != SENTINEL else None

    def upsert(self, node_id: int, key: int, hint: int = SENTINEL) -> Node:
        """
        Inserts a node, or moves an existing one to the position of its new key.

        The search for the splice point starts at ``hint`` when it names another
        node of this queue and at the head otherwise. It walks forward while the
        visited key is smaller than ``key``, then backward while the previous key
        is greater than or equal to it, so a new node lands before any existing
        nodes with an equal key.

        Args:
            node_id: Position id, must be positive
            key: Sort key, must not be negative
            hint: Id of a node expected to sit close to the final position

        Returns:
            The inserted node
        """
        if node_id <= SENTINEL:
            raise InvalidInput(f"Invalid node id {node_id}")
        if key < 0:
            raise InvalidInput(f"Invalid key {key}")

        updated = node_id in self.nodes
        if updated:
            self._unlink(node_id)

        prev_id, next_id = self._find_insert_position(key, hint)
        node = Node(id=node_id, key=key, prev=prev_id, next=next_id)
        self.nodes[node_id] = node

        if prev_id == SENTINEL:
            self.head = node_id
        else:
            self.nodes[prev_id].next = node_id
        if next_id == SENTINEL:
            self.tail = node_id
        else:
            self.nodes[next_id].prev = node_id

        self._check_links(node)

        logger.debug("%s queue: %s node %d key=%d prev=%d next=%d", self.name,
                     "updated" if updated else "inserted", node_id, key, prev_id, next_id)
        if self.events is not None:
            self.events.emit(EventType.NODE_UPDATED if updated else EventType.NODE_INSERTED,
                             queue=self.name, id=node_id, key=key, prev=prev_id, next=next_id)
        return node

    def remove(self, node_id: int) -> Node:
        """
        Splices a node out of the queue.

        Args:
            node_id: Id of the node to remove

        Returns:
            The removed node
        """
        if node_id not in self.nodes:
            raise NotFound(f"Node {node_id} is not in the {self.name} queue")

        node = self._unlink(node_id)

        logger.debug("%s queue: removed node %d", self.name, node_id)
        if self.events is not None:
            self.events.emit(EventType.NODE_REMOVED, queue=self.name, id=node_id, key=node.key)
        return node

    def check_invariants(self):
        """
        Walks the whole queue verifying links, ordering and size.

        Raises:
            QueueInconsistency: If any of them is broken
        """
        count = 0
        prev_id = SENTINEL
        prev_key = None
        node_id = self.head
        while node_id != SENTINEL:
            node = self.nodes.get(node_id)
            if node is None:
                raise QueueInconsistency(f"{self.name} queue links to unknown node {node_id}")
            if node.prev != prev_id:
                raise QueueInconsistency(f"{self.name} queue node {node_id} has a stale prev link")
            if prev_key is not None and node.key < prev_key:
                raise QueueInconsistency(f"{self.name} queue keys are out of order at node {node_id}")
            count += 1
            if count > len(self.nodes):
                raise QueueInconsistency(f"{self.name} queue contains a cycle")
            prev_id, prev_key = node_id, node.key
            node_id = node.next

        if prev_id != self.tail:
            raise QueueInconsistency(f"{self.name} queue tail does not match the last node")
        if count != len(self.nodes):
            raise QueueInconsistency(f"{self.name} queue holds {len(self.nodes)} nodes but links {count}")

    def _find_insert_position(self, key: int, hint: int) -> Tuple[int, int]:
        # The cursor is the node the new one will be inserted before
        cursor = hint if hint in self.nodes else self.head

        while cursor != SENTINEL and self.nodes[cursor].key < key:
            cursor = self.nodes[cursor].next

        prev_id = self.tail if cursor == SENTINEL else self.nodes[cursor].prev
        while prev_id != SENTINEL and self.nodes[prev_id].key >= key:
            cursor = prev_id
            prev_id = self.nodes[cursor].prev

        return prev_id, cursor

    def _unlink(self, node_id: int) -> Node:
        node = self.nodes[node_id]
        self._check_links(node)

        if node.prev == SENTINEL:
            self.head = node.next
        else:
            self.nodes[node.prev].next = node.next
        if node.next == SENTINEL:
            self.tail = node.prev
        else:
            self.nodes[node.next].prev = node.prev

        del self.nodes[node_id]

        for neighbour_id in (node.prev, node.next):
            neighbour = self.nodes.get(neighbour_id)
            if neighbour is not None and node_id in (neighbour.prev, neighbour.next):
                raise QueueInconsistency(f"{self.name} queue node {neighbour_id} still references {node_id}")
        if node_id in (self.head, self.tail):
            raise QueueInconsistency(f"{self.name} queue still ends at removed node {node_id}")
        return node

    def _check_links(self, node: Node):
        if node.prev == SENTINEL:
            if self.head != node.id:
                raise QueueInconsistency(f"{self.name} queue head is not node {node.id}")
        else:
            prev = self.nodes.get(node.prev)
            if prev is None or prev.next != node.id or prev.key > node.key:
                raise QueueInconsistency(f"{self.name} queue link {node.prev} -> {node.id} is broken")

        if node.next == SENTINEL:
            if self.tail != node.id:
                raise QueueInconsistency(f"{self.name} queue tail is not node {node.id}")
        else:
            following = self.nodes.get(node.next)
            if following is None or following.prev != node.id or following.key < node.key:
                raise QueueInconsistency(f"{self.name} queue link {node.id} -> {node.next} is broken")
