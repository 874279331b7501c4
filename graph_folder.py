#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
Fold the object graph down to its structural components.

Three rules are applied until the graph stops shrinking:
- leaves: objects without outbound references go to their referrers
- linked lists: chains of one type collapse into a single node
- helpers: single-owner nested classes, arrays, infrastructure and
  multi-instance types go to their owner

The first pass folds a leaf only into a single referrer ("hard"); the
second splits a shared leaf's size evenly among its referrers ("soft").
"""

import sys
from collections import Counter, deque

from object_node import combine


def is_leaf(node, soft):
    """No outbound edges, and one referrer unless soft. Seeds never fold."""
    if node.out_refs or not node.in_refs:
        return False
    if any(parent.is_root for parent in node.in_refs):
        return False
    return soft or len(node.in_refs) == 1


def is_helper(node, parent, components, config):
    name = node.type_name
    return ('$' in name or
            '[]' in name or
            name == parent.type_name or
            name not in components or
            config.is_infrastructure(name))


def same_type_ref(node):
    for ref in node.out_refs:
        if ref.type_name == node.type_name:
            return ref
    return None


def fold_leaves(graph, soft, leaf_hook=None):
    """
    Fold hanging nodes into the nodes referencing them.

    Each of the n referrers gets size / n and retains the leaf. A referrer
    left without outbound edges becomes a leaf in turn. leaf_hook, when
    given, is called as leaf_hook(parent, leaf, label) for every folded edge.
    """
    queue = deque(node for node in graph if is_leaf(node, soft))

    while queue:
        node = queue.popleft()
        if node not in graph:
            continue

        parents = node.in_refs
        node.in_refs = {}
        denom = len(parents)

        # The leaf has no outbound references, so there is nothing to rewire.
        for parent in parents:
            name = parent.out_refs.pop(node)
            parent.size += node.size / denom

            for ret, ret_name in node.retains.items():
                parent.retain(ret, combine(name, ret_name))
            parent.retain(node, name)

            if leaf_hook is not None:
                leaf_hook(parent, node, name)

            if not soft:
                node.folded_into = parent

            if is_leaf(parent, soft):
                queue.append(parent)

        del graph[node]


def fold_linked_lists(graph):
    """Merge nodes that reference a node of their own type"""
    queue = deque(node for node in graph if same_type_ref(node) is not None)

    while queue:
        node = queue.popleft()
        if node not in graph:
            # Drained into another entry already.
            continue

        following = same_type_ref(node)
        if following is None:
            continue

        node.merge(following)
        del graph[following]

        # Keep draining the chain into its first entry.
        if same_type_ref(node) is not None:
            queue.appendleft(node)


def fold_helpers(graph, components, config):
    """
    Fold single-referrer helpers into their owner.

    components holds the type names with exactly one instance in the graph.
    """
    queue = deque()

    for node in graph:
        if len(node.in_refs) == 1:
            parent = next(iter(node.in_refs))
            if not parent.is_root and is_helper(node, parent, components, config):
                queue.append(node)

    # For A -> A$B -> A$B$C both links are queued; the owner is looked up
    # again since it may have been folded meanwhile.
    while queue:
        node = queue.popleft()
        parent = next(iter(node.in_refs))
        parent.fold(node)
        del graph[node]


def singleton_types(graph):
    """Type names with exactly one instance in the graph"""
    counts = Counter(node.type_name for node in graph)
    return {name for name, count in counts.items() if count == 1}


def fold_pass(graph, soft, config, leaf_hook=None):
    """Apply leaves -> linked lists -> helpers until the graph stops shrinking"""
    components = singleton_types(graph)
    prev_size = -1
    while len(graph) != prev_size:
        prev_size = len(graph)
        fold_leaves(graph, soft, leaf_hook)
        fold_linked_lists(graph)
        fold_helpers(graph, components, config)
        if config.verbose:
            print("  %s: %d -> %d 节点" % ('soft' if soft else 'hard', prev_size, len(graph)),
                  file=sys.stderr)


def aggregate_retention(graph):
    """
    Attribute retained objects to survivors.

    Returns the survivors sorted by weighted size, largest first. Sets on
    every survivor all_size (own plus all retained bytes), ret_size (own
    plus bytes retained by no other survivor) and unique; sets retained_by
    on every retained object.
    """
    nodes = sorted(graph, key=lambda node: node.size, reverse=True)

    for node in nodes:
        node.all_size = node.self_size
        node.ret_size = node.self_size
        node.unique = []
        for ret in node.retains:
            ret.retained_by = []

    ret_count = Counter()
    for node in nodes:
        for ret in node.retains:
            ret_count[ret] += 1
            ret.retained_by.append(node)
            node.all_size += ret.self_size

    for node in nodes:
        for ret in node.retains:
            if ret_count[ret] == 1:
                node.ret_size += ret.ret_size
                node.unique.append(ret)

    return nodes


def fold_graph(graph, config, leaf_hook=None):
    """Fold the flattened graph in place and return the sorted survivors"""
    if config.verbose:
        total = sum(node.size for node in graph)
        print("折叠前节点: %d, 总大小: %d" % (len(graph), round(total)), file=sys.stderr)

    fold_pass(graph, False, config, leaf_hook)
    fold_pass(graph, True, config, leaf_hook)

    if config.verbose:
        print("折叠后节点: %d" % len(graph), file=sys.stderr)

    return aggregate_retention(graph)
