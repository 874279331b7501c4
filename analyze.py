#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
Summarize which components of an app dominate its Java heap.

Loads the objects reachable from the Application instance of a heap dump,
folds leaves, linked lists and helper objects into their owners, then
prints the remaining components by type and by package hierarchy.
"""

import argparse
import os
import sys
import traceback

from analyzer_config import AnalyzerConfig
from bitmap_decoder import BitmapCollector
from component_node import calculate_components
from graph_folder import fold_graph
from graph_loader import flatten_graph, load_file, total_size
from heap_report import export_json, print_components, print_stats, print_type_table
from hprof_parser import SnapshotError

USAGE = "Usage: heap-components <dump>.hprof"


def build_arg_parser():
    parser = argparse.ArgumentParser(
        description="Fold an Android heap dump into a summary of its components.",
        epilog="Examples:\n"
               "  python3 analyze.py heapdump.hprof\n"
               "  python3 analyze.py heapdump.hprof -r com.example.MyApplication --exact-class\n"
               "  python3 analyze.py heapdump.hprof --nodes --depth 3 --bitmaps ./bitmaps",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument('dump', nargs='?', help='Path to the .hprof file')
    parser.add_argument('-r', '--root-class', help='Class whose instances seed the walk')
    parser.add_argument('--exact-class', action='store_true',
                        help='Do not seed from subclasses of the root class')
    parser.add_argument('-c', '--config', help='JSON file with analyzer settings')
    parser.add_argument('--nodes', action='store_true', help='Print every surviving node')
    parser.add_argument('--depth', type=int, help='Maximum depth of the component tree')
    parser.add_argument('--bitmaps', metavar='DIR', help='Write decoded bitmaps as PNG into DIR')
    parser.add_argument('--json', metavar='FILE', help='Export the summary as JSON')
    parser.add_argument('-v', '--verbose', action='store_true', help='Progress output on stderr')
    return parser


def load_config(args):
    config = AnalyzerConfig.from_file(args.config) if args.config else AnalyzerConfig()
    return config.with_overrides(
        root_class_name=args.root_class,
        include_subclasses=False if args.exact_class else None,
        verbose=True if args.verbose else None,
    )


def main(argv=None):
    args = build_arg_parser().parse_args(argv)

    if not args.dump:
        print(USAGE)
        return 1

    if not os.path.exists(args.dump):
        print(f"File {args.dump} not found")
        return 1

    try:
        config = load_config(args)
    except (OSError, ValueError) as e:
        print(f"Invalid config: {e}", file=sys.stderr)
        return 1

    try:
        root = load_file(args.dump, config)
    except (SnapshotError, OSError) as e:
        print(f"解析HPROF文件失败: {e}", file=sys.stderr)
        traceback.print_exc()
        return 1

    if not root.out_refs:
        print(f"No instances of {config.root_class_name} found in {args.dump}", file=sys.stderr)
        return 1

    graph = flatten_graph(root)
    if config.verbose:
        print(f"展开节点: {len(graph)}, size: {total_size(graph)}", file=sys.stderr)

    bitmaps = BitmapCollector(config)
    nodes = fold_graph(graph, config, leaf_hook=bitmaps)
    if config.verbose:
        print(f"size: {total_size(graph)}", file=sys.stderr)
    comp_root = calculate_components(nodes)
    if config.verbose:
        print(f"组件: {sum(1 for _ in comp_root.walk()) - 1}", file=sys.stderr)

    if args.nodes:
        print_stats(nodes, config.bitmap_class_name)
    print_type_table(nodes)
    print_components(comp_root, args.depth)

    if args.bitmaps:
        paths = bitmaps.write_pngs(args.bitmaps)
        print(f"\n{len(paths)} bitmaps written to {args.bitmaps}")

    if args.json:
        export_json(nodes, comp_root, args.json)
        print(f"\nJSON 报告已保存到: {args.json}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
