#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
Analyzer configuration.

Defaults target an Android app dump. A JSON file can override any field:

    {
        "root_class_name": "com.example.MyApplication",
        "include_subclasses": false,
        "infrastructure_prefixes": ["java.", "android.", "androidx."]
    }
"""

import json
from dataclasses import dataclass, fields, replace
from typing import Tuple


@dataclass
class AnalyzerConfig:
    """Settings for loading and folding the object graph"""
    # Loader
    root_class_name: str = 'android.app.Application'
    include_subclasses: bool = True
    skipped_reference_types: Tuple[str, ...] = (
        'java.lang.ref.WeakReference',
        'java.lang.ref.FinalizerReference',
        'java.lang.reflect.ArtMethod',
    )
    skipped_reference_substrings: Tuple[str, ...] = ('ClassLoader',)

    # Folder
    infrastructure_prefixes: Tuple[str, ...] = ('java.', 'android.')

    # Bitmap hook
    bitmap_class_name: str = 'android.graphics.Bitmap'
    bitmap_buffer_field: str = 'mBuffer'
    bitmap_width_field: str = 'mWidth'
    bitmap_height_field: str = 'mHeight'
    pixel_array_type: str = 'byte[]'

    verbose: bool = False

    def is_skipped_type(self, type_name):
        """True for referents the loader must not follow"""
        if type_name in self.skipped_reference_types:
            return True
        return any(part in type_name for part in self.skipped_reference_substrings)

    def is_infrastructure(self, type_name):
        return type_name.startswith(tuple(self.infrastructure_prefixes))

    def with_overrides(self, **overrides):
        """Copy with the non-None overrides applied"""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError("Unknown config keys: %s" % ', '.join(sorted(unknown)))
        values = {}
        for key, value in data.items():
            values[key] = tuple(value) if isinstance(value, list) else value
        return cls(**values)

    @classmethod
    def from_file(cls, path):
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("Config file %s must contain a JSON object" % path)
        return cls.from_dict(data)
