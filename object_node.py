#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
Nodes of the folded object graph.

Every edge mutation goes through link / unlink / fold / merge so that
a.out_refs contains b exactly when b.in_refs contains a. in_refs is a dict
used as an insertion-ordered set, which keeps fold order (and therefore
every label path) identical between runs.
"""

from typing import Dict, List, Optional


def combine(parent, child):
    """Join two field paths: 'a' + 'b' -> 'a.b', 'a' + '[3]' -> 'a[3]'"""
    if child.startswith('['):
        return parent + child
    return parent + '.' + child


def object_self_size(obj):
    """Bytes the object occupies: element_size * length for arrays"""
    clazz = obj.clazz
    if clazz.is_array_type:
        return obj.element_size * obj.length
    return clazz.heap_size_per_instance


class ObjectNode:
    """
    A surviving (possibly merged) heap object, or the synthetic root.

    Attributes:
        object: snapshot handle of the first constituent, None for the root
        type_name: class name of that handle
        self_size: bytes of the prototype object
        size: weighted size including bytes folded in from neighbours
        out_refs: {child: label} of the first discovered edge to child
        in_refs: {parent: None}
        retains: {folded object: label path from this node}
        folded_into: single parent a hard leaf was folded into
        retained_by, unique, ret_size, all_size: filled by aggregate_retention
    """

    def __init__(self, obj=None, parent=None, name=None):
        self.object = obj
        self.folded_into: Optional['ObjectNode'] = None
        self.out_refs: Dict['ObjectNode', str] = {}
        self.in_refs: Dict['ObjectNode', None] = {}
        self.retains: Dict['ObjectNode', str] = {}
        self.retained_by: List['ObjectNode'] = []
        self.unique: List['ObjectNode'] = []
        if obj is None:
            self.type_name = None
            self.self_size = 0
        else:
            self.type_name = obj.clazz.name
            self.self_size = object_self_size(obj)
        self.size = float(self.self_size)
        self.ret_size = self.self_size
        self.all_size = self.self_size

        if parent is not None:
            parent.link(self, name)

    @property
    def is_root(self):
        return self.object is None

    def link(self, child, name):
        """Add self -> child. An existing edge keeps its label."""
        if child is self:
            return
        if child not in self.out_refs:
            self.out_refs[child] = name
        child.in_refs[self] = None

    def unlink(self, child):
        """Remove self -> child and return its label"""
        name = self.out_refs.pop(child)
        child.in_refs.pop(self, None)
        return name

    def retain(self, ret, name):
        if ret not in self.retains:
            self.retains[ret] = name

    def fold(self, child):
        """Absorb child, which is reached through self -> child.

        The child's outbound edges move to self with their labels prefixed
        by the folded edge, and the child with everything it retains
        becomes retained by self.
        """
        name = self.unlink(child)

        for ref, ref_name in list(child.out_refs.items()):
            child.unlink(ref)
            self.link(ref, combine(name, ref_name))

        self.size += child.size

        for ret, ret_name in child.retains.items():
            self.retain(ret, combine(name, ret_name))
        self.retain(child, name)

    def merge(self, other):
        """Drain other into self, using the self -> other edge for labels.

        Used for chains of objects of one type (linked list entries). The
        edges between the two are dropped; every external edge of other is
        rewired to self. A neighbour that already links to self keeps that
        label.
        """
        name = self.unlink(other)
        if self in other.out_refs:
            other.unlink(self)

        self.size += other.size

        for ret, ret_name in other.retains.items():
            self.retain(ret, combine(name, ret_name))
        self.retain(other, name)

        for ref in list(other.in_refs):
            ref.link(self, ref.unlink(other))
        for ref, ref_name in list(other.out_refs.items()):
            other.unlink(ref)
            self.link(ref, combine(name, ref_name))
        return self

    def __repr__(self):
        if self.object is None:
            return '<ObjectNode root>'
        return '<ObjectNode %s 0x%x size=%d>' % (self.type_name, self.object.object_id, round(self.size))
