#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
Group surviving nodes into a class-name hierarchy.

'com.x.Foo$Bar' is a child of 'com.x.Foo', which is a child of 'com.x',
then 'com', then the unnamed root.
"""

from typing import Dict, List

NAME_SEPARATORS = '$.['


def parent_name_end(name):
    """Index of the last '$', '.' or '[' in name, -1 when there is none"""
    return max(name.rfind(sep) for sep in NAME_SEPARATORS)


class ComponentNode:
    """A class name or a prefix of one, with sizes summed over its subtree"""

    def __init__(self, name):
        self.name = name
        self.objects: List = []
        self.retains: Dict = {}
        self.unique: List = []
        self.children: Dict[str, 'ComponentNode'] = {}
        self.soft_size = 0.0
        self.self_size = 0
        self.ret_size = 0
        self.all_size = 0
        self.is_class = False

    def add_object(self, node):
        self.objects.append(node)
        for ret in node.retains:
            self.retains[ret] = None
        self.soft_size += node.size
        self.self_size += node.self_size
        self.is_class = True

    def add_child(self, child):
        self.children[child.name] = child
        for ret in child.retains:
            self.retains[ret] = None

    def recalc_size(self):
        """Compute sizes bottom-up and return soft_size.

        An object is unique to this component when every survivor retaining
        it has a type name starting with this component's name.
        """
        for ret in self.retains:
            self.all_size += ret.self_size
            if all(ref.type_name.startswith(self.name) for ref in ret.retained_by):
                self.unique.append(ret)

        for ret in self.unique:
            self.ret_size += ret.self_size

        for child in self.children.values():
            self.soft_size += child.recalc_size()
            self.self_size += child.self_size

        self.ret_size += self.self_size
        self.all_size += self.self_size

        return self.soft_size

    def walk(self, level=0):
        """Yield (component, depth) in pre-order"""
        yield self, level
        for child in self.children.values():
            yield from child.walk(level + 1)

    def __repr__(self):
        return '<ComponentNode %r objects=%d children=%d>' % (
            self.name, len(self.objects), len(self.children))


def calculate_components(nodes):
    """Build the component tree over the survivors and size it"""
    components = {}
    root = ComponentNode('')

    for node in nodes:
        name = node.type_name
        comp = components.get(name)
        if comp is None:
            comp = ComponentNode(name)
            components[name] = comp
        comp.add_object(node)

        end = parent_name_end(name)
        while end >= 0:
            part = name[:end]
            end = parent_name_end(part)
            parent = components.get(part)
            if parent is None:
                parent = ComponentNode(part)
                components[part] = parent
            parent.add_child(comp)
            comp = parent
        root.add_child(comp)

    root.recalc_size()

    return root
