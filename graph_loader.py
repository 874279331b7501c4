#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
Build the object graph reachable from instances of the root class.
"""

import sys
from collections import deque

from object_node import ObjectNode
from snapshot import open_snapshot

ROOT_EDGE_NAME = '#'


def load_graph(snapshot, config):
    """
    Breadth-first walk from every instance of config.root_class_name.

    Returns the synthetic root node whose children are those instances.
    References to skipped types (weak references, finalizer entries,
    class loaders ...) are not followed.
    """
    root = ObjectNode()
    visited = {}
    queue = deque()

    for clazz in snapshot.classes_by_name(config.root_class_name, config.include_subclasses):
        for instance_id in clazz.instance_ids():
            if instance_id in visited:
                continue
            instance = snapshot.object(instance_id)
            if instance is None:
                continue
            visited[instance_id] = ObjectNode(instance, root, ROOT_EDGE_NAME)
            queue.append(instance)

    while queue:
        instance = queue.popleft()
        parent = visited[instance.object_id]

        for ref_name, field in instance.outbound_references():
            if config.is_skipped_type(field.clazz.name):
                continue

            node = visited.get(field.object_id)
            if node is not None:
                parent.link(node, ref_name)
            else:
                visited[field.object_id] = ObjectNode(field, parent, ref_name)
                queue.append(field)

    if config.verbose:
        print("根实例: %d, 加载对象: %d" % (len(root.out_refs), len(visited)), file=sys.stderr)
    return root


def load_file(path, config):
    """Parse the dump and load its graph. Raises SnapshotError or OSError."""
    snapshot = open_snapshot(path, verbose=config.verbose)
    return load_graph(snapshot, config)


def flatten_graph(root):
    """All nodes reachable from root, except root, in BFS order"""
    graph = {}
    queue = deque([root])

    # The root has no inbound links, so it never re-enters the queue.
    while queue:
        instance = queue.popleft()
        for field in instance.out_refs:
            if field not in graph:
                graph[field] = None
                queue.append(field)

    return graph


def total_size(graph):
    """Self bytes of the graph plus every distinct object it retains"""
    size = 0
    retained = {}
    for node in graph:
        size += node.self_size
        for ret in node.retains:
            retained[ret] = None
    for ret in retained:
        size += ret.self_size
    return size
