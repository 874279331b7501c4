#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
Text and JSON reports over the folded graph.
"""

import json
from collections import defaultdict


def type_totals(nodes):
    """{type: (weighted size, unique retained size)} sorted by weighted size"""
    type_size = defaultdict(float)
    ret_size = defaultdict(int)
    for node in nodes:
        type_size[node.type_name] += node.size
        ret_size[node.type_name] += node.ret_size
    ordered = sorted(type_size, key=lambda name: type_size[name], reverse=True)
    return {name: (type_size[name], ret_size[name]) for name in ordered}


def print_stats(nodes, bitmap_class_name='android.graphics.Bitmap'):
    """One line per survivor, with the bitmaps it retains"""
    print("\n" + "=" * 80)
    print("存活节点 (按加权大小排序)")
    print("=" * 80)
    total_size = 0.0
    for node in nodes:
        print(f"{node.type_name}, weighted_size={round(node.size)}, "
              f"inRefs={len(node.in_refs)}, outRefs={len(node.out_refs)}, "
              f"retain_size={node.ret_size} ({len(node.unique)} objects)")

        for ret, path in node.retains.items():
            if ret.type_name == bitmap_class_name:
                print(f"  Bitmap {ret.object.object_id} ({round(ret.size)} bytes):")
                print(f"    {path}")

        total_size += node.size
    print(f"Total size: {round(total_size)}")


def print_type_table(nodes):
    """Weighted size, share and unique retained size per type"""
    totals = type_totals(nodes)
    total_size = sum(node.size for node in nodes)

    print("\n" + "=" * 80)
    print(f"Components count: {len(totals)}")
    print("=" * 80)
    for name, (size, ret_size) in totals.items():
        share = size * 100 / total_size if total_size else 0.0
        print(f"{name} => {round(size)} ({share:.2f}%) / {ret_size}")


def print_components(root, max_depth=None):
    print("\n" + "=" * 80)
    print("组件树")
    print("=" * 80)
    for comp, level in root.walk():
        if max_depth is not None and level > max_depth:
            continue
        print("  " * level +
              f"{comp.name or '*'}: {len(comp.children)} children, {len(comp.objects)} instances, "
              f"{comp.ret_size} bytes unique in {len(comp.unique)} objects of "
              f"{comp.all_size} bytes and {len(comp.retains)} objects")


def component_to_dict(comp):
    return {
        'name': comp.name,
        'is_class': comp.is_class,
        'instances': len(comp.objects),
        'soft_size': round(comp.soft_size),
        'self_size': comp.self_size,
        'ret_size': comp.ret_size,
        'all_size': comp.all_size,
        'retained_objects': len(comp.retains),
        'unique_objects': len(comp.unique),
        'children': [component_to_dict(child) for child in comp.children.values()],
    }


def to_json(nodes, comp_root, indent=2):
    """Type table and component tree as a JSON document"""
    total_size = sum(node.size for node in nodes)
    data = {
        'total_size': round(total_size),
        'survivors': len(nodes),
        'types': [
            {
                'name': name,
                'weighted_size': round(size),
                'percent': round(size * 100 / total_size, 2) if total_size else 0.0,
                'ret_size': ret_size,
            }
            for name, (size, ret_size) in type_totals(nodes).items()
        ],
        'components': component_to_dict(comp_root),
    }
    return json.dumps(data, indent=indent, ensure_ascii=False)


def export_json(nodes, comp_root, output_file):
    with open(output_file, 'w', encoding='utf-8') as f:
        f.write(to_json(nodes, comp_root))
