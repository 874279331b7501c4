#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
Object-level view of a parsed heap dump.

Wraps HprofParser's raw maps into class and object handles that can be
walked field by field:

    snapshot = open_snapshot('app.hprof')
    for clazz in snapshot.classes_by_name('android.app.Application', True):
        for object_id in clazz.instance_ids():
            obj = snapshot.object(object_id)
            for label, target in obj.outbound_references():
                ...
"""

import struct
from collections import defaultdict
from typing import Dict, List, Optional

from hprof_parser import HprofParser, SnapshotError

OBJECT_ARRAY_ELEMENT_SIZE = 4

PRIMITIVE_ELEMENT_SIZES = {
    type_name: size for size, type_name in HprofParser.PRIMITIVE_TYPES.values()
}

CLASS_CLASS_NAME = 'java.lang.Class'

__all__ = [
    'ClassHandle', 'ObjectHandle', 'InstanceHandle', 'ObjectArrayHandle',
    'PrimitiveArrayHandle', 'ClassObjectHandle', 'Snapshot', 'SnapshotError',
    'open_snapshot',
]


def decode_value(type_id, raw):
    """Decode a big-endian field value of the given HPROF basic type."""
    if type_id == HprofParser.TYPE_OBJECT:
        return int.from_bytes(raw, byteorder='big', signed=False)
    if type_id == HprofParser.TYPE_BOOLEAN:
        return raw[0] != 0
    if type_id == HprofParser.TYPE_CHAR:
        return chr(int.from_bytes(raw, byteorder='big', signed=False))
    if type_id == HprofParser.TYPE_FLOAT:
        return struct.unpack('>f', raw)[0]
    if type_id == HprofParser.TYPE_DOUBLE:
        return struct.unpack('>d', raw)[0]
    return int.from_bytes(raw, byteorder='big', signed=True)


class ClassHandle:
    """A class in the snapshot (possibly synthetic for primitive arrays)."""

    def __init__(self, snapshot, class_id, name, super_class_id=0, instance_size=0):
        self.snapshot = snapshot
        self.class_id = class_id
        self.name = name
        self.super_class_id = super_class_id
        self.is_array_type = name.endswith('[]')
        self.heap_size_per_instance = 0 if self.is_array_type else instance_size

    @property
    def super_class(self) -> Optional['ClassHandle']:
        if not self.super_class_id:
            return None
        return self.snapshot.class_handle(self.super_class_id)

    def instance_ids(self) -> List[int]:
        # Primitive arrays carry no class id in the dump.
        if self.is_array_type and self.name[:-2] in PRIMITIVE_ELEMENT_SIZES:
            return self.snapshot.primitive_array_ids(self.name)
        return list(self.snapshot.parser.instances_by_class.get(self.class_id, ()))

    def subclasses(self) -> List['ClassHandle']:
        return [self.snapshot.class_handle(class_id)
                for class_id in self.snapshot.subclass_ids(self.class_id)]

    def __repr__(self):
        return '<ClassHandle %s @0x%x>' % (self.name, self.class_id)


class ObjectHandle:
    """Base class for every object found in the heap dump."""

    def __init__(self, snapshot, object_id, clazz):
        self.snapshot = snapshot
        self.object_id = object_id
        self.clazz = clazz

    @property
    def type_name(self):
        return self.clazz.name

    def outbound_references(self):
        return []

    def resolve_field(self, name):
        return None

    def __eq__(self, other):
        return isinstance(other, ObjectHandle) and other.object_id == self.object_id

    def __hash__(self):
        return hash(self.object_id)

    def __repr__(self):
        return '<%s 0x%x>' % (self.clazz.name, self.object_id)


class InstanceHandle(ObjectHandle):

    def __init__(self, snapshot, object_id, clazz, fields_data):
        super().__init__(snapshot, object_id, clazz)
        self.fields_data = fields_data

    def fields(self):
        """Yield (name, type_id, value) in dump order: own class first, then supers."""
        offset = 0
        for name, type_id, size in self.snapshot.field_layout(self.clazz.class_id):
            if offset + size > len(self.fields_data):
                break
            yield name, type_id, decode_value(type_id, self.fields_data[offset:offset + size])
            offset += size

    def outbound_references(self):
        refs = []
        for name, type_id, value in self.fields():
            if type_id == HprofParser.TYPE_OBJECT and value:
                target = self.snapshot.object(value)
                if target is not None:
                    refs.append((name, target))
        return refs

    def resolve_field(self, name):
        for field_name, type_id, value in self.fields():
            if field_name == name:
                if type_id == HprofParser.TYPE_OBJECT:
                    return self.snapshot.object(value) if value else None
                return value
        return None


class ObjectArrayHandle(ObjectHandle):
    element_size = OBJECT_ARRAY_ELEMENT_SIZE

    def __init__(self, snapshot, object_id, clazz, elements):
        super().__init__(snapshot, object_id, clazz)
        self.elements = elements
        self.length = len(elements)

    def outbound_references(self):
        refs = []
        for index, element_id in enumerate(self.elements):
            if element_id:
                target = self.snapshot.object(element_id)
                if target is not None:
                    refs.append(('[%d]' % index, target))
        return refs

    def resolve_field(self, name):
        if not (name.startswith('[') and name.endswith(']')):
            return None
        try:
            element_id = self.elements[int(name[1:-1])]
        except (ValueError, IndexError):
            return None
        return self.snapshot.object(element_id) if element_id else None


class PrimitiveArrayHandle(ObjectHandle):

    def __init__(self, snapshot, object_id, clazz, type_name, length, data):
        super().__init__(snapshot, object_id, clazz)
        self.element_type = type_name
        self.element_size = PRIMITIVE_ELEMENT_SIZES[type_name]
        self.length = length
        self.array_data = data


class ClassObjectHandle(ObjectHandle):
    """The java.lang.Class object of a class; its references are the statics."""

    def __init__(self, snapshot, object_id, clazz, described_class, static_fields):
        super().__init__(snapshot, object_id, clazz)
        self.described_class = described_class
        self.static_fields = static_fields

    def fields(self):
        strings = self.snapshot.parser.strings
        for name_id, type_id, raw in self.static_fields:
            yield strings.get(name_id, '?'), type_id, decode_value(type_id, raw)

    def outbound_references(self):
        refs = []
        for name, type_id, value in self.fields():
            if type_id == HprofParser.TYPE_OBJECT and value:
                target = self.snapshot.object(value)
                if target is not None:
                    refs.append((name, target))
        return refs

    def resolve_field(self, name):
        for field_name, type_id, value in self.fields():
            if field_name == name:
                if type_id == HprofParser.TYPE_OBJECT:
                    return self.snapshot.object(value) if value else None
                return value
        return None

    def __repr__(self):
        return '<class %s 0x%x>' % (self.described_class.name, self.object_id)


class Snapshot:
    """Handles over a parsed HprofParser."""

    def __init__(self, parser: HprofParser):
        self.parser = parser
        self._class_handles: Dict[int, ClassHandle] = {}
        self._synthetic_classes: Dict[str, ClassHandle] = {}
        self._layouts = {}
        self._by_name = defaultdict(list)
        self._subclasses = defaultdict(list)
        self._primitive_arrays_by_type = None
        for class_id, class_info in parser.classes.items():
            self._by_name[class_info['name']].append(class_id)
            if class_info['super_class_id']:
                self._subclasses[class_info['super_class_id']].append(class_id)

    def class_handle(self, class_id) -> Optional[ClassHandle]:
        handle = self._class_handles.get(class_id)
        if handle is None:
            class_info = self.parser.classes.get(class_id)
            if class_info is None:
                return None
            handle = ClassHandle(self, class_id, class_info['name'],
                                 class_info['super_class_id'], class_info['instance_size'])
            self._class_handles[class_id] = handle
        return handle

    def class_by_name(self, name) -> ClassHandle:
        """First class with this name, or a synthetic one when the dump has none."""
        class_ids = self._by_name.get(name)
        if class_ids:
            return self.class_handle(class_ids[0])
        handle = self._synthetic_classes.get(name)
        if handle is None:
            handle = ClassHandle(self, 0, name)
            self._synthetic_classes[name] = handle
        return handle

    def classes_by_name(self, name, include_subclasses=False) -> List[ClassHandle]:
        class_ids = list(self._by_name.get(name, ()))
        if include_subclasses:
            seen = set(class_ids)
            pending = list(class_ids)
            while pending:
                for sub_id in self._subclasses.get(pending.pop(0), ()):
                    if sub_id not in seen:
                        seen.add(sub_id)
                        class_ids.append(sub_id)
                        pending.append(sub_id)
        return [self.class_handle(class_id) for class_id in class_ids]

    def subclass_ids(self, class_id):
        return list(self._subclasses.get(class_id, ()))

    def primitive_array_ids(self, type_name):
        if self._primitive_arrays_by_type is None:
            self._primitive_arrays_by_type = defaultdict(list)
            for array_id, array in self.parser.primitive_arrays.items():
                self._primitive_arrays_by_type[array['type_name'] + '[]'].append(array_id)
        return list(self._primitive_arrays_by_type.get(type_name, ()))

    def field_layout(self, class_id):
        """[(name, type_id, size)] for all instance fields, own class first."""
        layout = self._layouts.get(class_id)
        if layout is None:
            layout = []
            current = class_id
            while current and current in self.parser.classes:
                class_info = self.parser.classes[current]
                for name_id, type_id in class_info['instance_fields']:
                    layout.append((self.parser.strings.get(name_id, '?'), type_id,
                                   self.parser.type_size(type_id)))
                current = class_info['super_class_id']
            self._layouts[class_id] = layout
        return layout

    def object(self, object_id) -> Optional[ObjectHandle]:
        parser = self.parser
        instance = parser.instances.get(object_id)
        if instance is not None:
            clazz = self.class_handle(instance['class_id'])
            if clazz is None:
                return None
            return InstanceHandle(self, object_id, clazz, instance['fields_data'])

        array = parser.object_arrays.get(object_id)
        if array is not None:
            clazz = self.class_handle(array['class_id']) or self.class_by_name('java.lang.Object[]')
            return ObjectArrayHandle(self, object_id, clazz, array['elements'])

        array = parser.primitive_arrays.get(object_id)
        if array is not None:
            clazz = self.class_by_name(array['type_name'] + '[]')
            return PrimitiveArrayHandle(self, object_id, clazz, array['type_name'],
                                        array['length'], array['data'])

        class_info = parser.classes.get(object_id)
        if class_info is not None:
            return ClassObjectHandle(self, object_id, self.class_by_name(CLASS_CLASS_NAME),
                                     self.class_handle(object_id), class_info['static_fields'])
        return None


def open_snapshot(path, verbose=False) -> Snapshot:
    """Parse an HPROF file. Raises SnapshotError or OSError."""
    return Snapshot(HprofParser(path, verbose=verbose).parse())
