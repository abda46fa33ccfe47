"""CLI runner for the glTF importer."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from gltf_engines.common.errors import GltfImportError
from gltf_engines.gltf_import.renderer import InMemoryRenderer
from gltf_engines.gltf_import.service import (
    GltfImportOptions,
    import_gltf_from_path,
    import_gltf_from_path_sync,
    summarize_node,
)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Import a .gltf/.glb/.zip asset and print its node hierarchy")
    parser.add_argument("path", help="Path or http(s) URL of the asset")
    parser.add_argument("--sync", action="store_true", help="Load synchronously on the calling thread")
    parser.add_argument("--inactive", action="store_true", help="Leave the root node inactive")
    parser.add_argument("--default-scene", action="store_true", help="Only build the default scene")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log stage transitions")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    options = GltfImportOptions(set_active=not args.inactive, only_default_scene=args.default_scene)
    renderer = InMemoryRenderer()
    try:
        if args.sync:
            result = import_gltf_from_path_sync(args.path, renderer=renderer, options=options)
        else:
            options.load_async = True
            result = asyncio.run(import_gltf_from_path(args.path, renderer=renderer, options=options))
    except GltfImportError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summarize_node(result.root), indent=2))
    for warning in result.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
