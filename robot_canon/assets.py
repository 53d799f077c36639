import io
import logging
import posixpath
import re
import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from types import MappingProxyType

import numpy as np
import trimesh

__all__ = [
    "UNIT_LOCK_THRESHOLD",
    "MILLIMETER_SCALE",
    "PLACEHOLDER_SIZE",
    "PLACEHOLDER_COLOR",
    "AssetIndex",
    "LoadedMesh",
    "Placeholder",
    "UnitScaleDetector",
    "MeshLoader",
    "clean_file_path",
    "build_asset_index",
    "resolve_asset",
    "resolve_package_uri",
]

logger = logging.getLogger(__name__)

UNIT_LOCK_THRESHOLD = 10.0
MILLIMETER_SCALE = 0.001

PLACEHOLDER_SIZE = 0.05
PLACEHOLDER_COLOR = (1.0, 0.42, 0.42)

MESH_EXTENSIONS = ("stl", "dae", "obj", "glb", "gltf", "ply")

PackageResolver = Mapping[str, str] | str | Callable[[str], str]

# a named segment followed by "..", never ".." itself
_PARENT_SEGMENT = re.compile(r"(?:^|(?<=/))(?!\.\.(?:/|$))[^/]+/\.\.(?:/|$)")
_URL_PREFIX = re.compile(r"^[a-z][a-z0-9+.-]*://[^/]*/", re.IGNORECASE)


def clean_file_path(path: str) -> str:
    """Normalize separators and relative segments of an asset path

    Args:
        path: Path as written in a description or an asset bundle

    Returns:
        Path with forward slashes, without "./" segments, with every "segment/.."
        pair removed, without leading "../" and without duplicate slashes
    """
    result = re.sub(r"/+", "/", path.replace("\\", "/"))
    result = "/".join(segment for segment in result.split("/") if segment != ".")

    # nested ../../ needs repeated passes
    previous = None
    while previous != result:
        previous = result
        result = _PARENT_SEGMENT.sub("", result, count=1)

    while result.startswith("../"):
        result = result[3:]

    return result


@dataclass(frozen=True)
class AssetIndex:
    """Read-only lookup tables mapping path variants to asset bundle keys

    Attributes:
        direct: Raw and cleaned keys, also prefixed with the base directory
        case_insensitive: Lower-cased raw and cleaned keys
        by_filename: Final path segment
        by_filename_case_insensitive: Lower-cased final path segment
        by_suffix: Lower-cased trailing paths that identify exactly one asset
    """

    direct: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    case_insensitive: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    by_filename: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    by_filename_case_insensitive: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    by_suffix: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __len__(self) -> int:
        return len(set(self.direct.values()))


def _trailing_suffixes(path: str) -> list[str]:
    """Trailing segment paths of path, shortest first"""
    parts = path.split("/")
    return ["/".join(parts[i:]) for i in range(len(parts) - 1, -1, -1)]


def build_asset_index(assets: Iterable[str], base_dir: str = "") -> AssetIndex:
    """Index asset bundle keys under every lookup variant

    Later keys never replace earlier entries in the fallback tables.

    Args:
        assets: Keys of the asset bundle (a mapping works too)
        base_dir: Directory of the description inside the bundle, with trailing slash

    Returns:
        Immutable AssetIndex
    """
    direct = {}
    case_insensitive = {}
    by_filename = {}
    by_filename_case_insensitive = {}
    suffix_owners: dict[str, set[str]] = {}
    suffix_order = []

    for key in assets:
        cleaned = clean_file_path(key)

        direct.setdefault(key, key)
        direct.setdefault(cleaned, key)
        if base_dir:
            direct.setdefault(base_dir + cleaned, key)
            direct.setdefault(base_dir + key, key)

        case_insensitive.setdefault(key.lower(), key)
        case_insensitive.setdefault(cleaned.lower(), key)

        filename = key.rsplit("/", 1)[-1]
        by_filename.setdefault(filename, key)
        by_filename_case_insensitive.setdefault(filename.lower(), key)

        for suffix in _trailing_suffixes(cleaned.lower()):
            if suffix not in suffix_owners:
                suffix_owners[suffix] = set()
                suffix_order.append(suffix)
            suffix_owners[suffix].add(key)

    by_suffix = {s: next(iter(suffix_owners[s])) for s in suffix_order if len(suffix_owners[s]) == 1}

    return AssetIndex(
        direct=MappingProxyType(direct),
        case_insensitive=MappingProxyType(case_insensitive),
        by_filename=MappingProxyType(by_filename),
        by_filename_case_insensitive=MappingProxyType(by_filename_case_insensitive),
        by_suffix=MappingProxyType(by_suffix),
    )


def _strip_markers(path: str) -> str:
    """Remove blob:/data: markers, package://pkg/ prefixes and a leading ./"""
    result = path.replace("\\", "/")

    for marker in ("blob:", "data:"):
        if result.startswith(marker):
            result = _URL_PREFIX.sub("", result[len(marker) :])

    if result.startswith("package://"):
        result = result[len("package://") :]
        slash = result.find("/")
        if slash != -1:
            result = result[slash + 1 :]

    while result.startswith("./"):
        result = result[2:]

    return result


def resolve_asset(path: str, index: AssetIndex, base_dir: str = "") -> str | None:
    """Find the asset bundle key for a path written in a description

    Strategies, first hit wins: raw path, normalized path, base directory plus
    normalized path, case-insensitive path, filename, case-insensitive filename,
    and finally the longest trailing path that names exactly one asset.

    Args:
        path: Path as written in the description
        index: Index built from the bundle
        base_dir: Directory of the description inside the bundle, with trailing slash

    Returns:
        Asset bundle key, or None if nothing matched
    """
    if path in index.direct:
        return index.direct[path]

    stripped = _strip_markers(path)
    normalized = clean_file_path(stripped)

    if normalized in index.direct:
        return index.direct[normalized]

    if base_dir and base_dir + normalized in index.direct:
        return index.direct[base_dir + normalized]

    if stripped in index.direct:
        return index.direct[stripped]

    lowered = normalized.lower()
    if lowered in index.case_insensitive:
        return index.case_insensitive[lowered]

    filename = normalized.rsplit("/", 1)[-1]
    if filename in index.by_filename:
        return index.by_filename[filename]

    if filename.lower() in index.by_filename_case_insensitive:
        return index.by_filename_case_insensitive[filename.lower()]

    for suffix in reversed(_trailing_suffixes(lowered)):
        if suffix in index.by_suffix:
            return index.by_suffix[suffix]

    return None


def resolve_package_uri(uri: str, packages: PackageResolver | None, working_path: str = "") -> str | None:
    """Turn a description path into a bundle or filesystem path

    Args:
        uri: Path as written in the description, possibly package://pkg/rel
        packages: Package name to directory mapping, a single base directory, or a
            callable returning the directory of a package name
        working_path: Directory of the description, joined to non-package paths

    Returns:
        Resolved path, or None if a package mapping does not know the package
    """
    if not uri.startswith("package://"):
        if working_path and not uri.startswith("/") and "://" not in uri:
            return posixpath.join(working_path, uri)
        return uri

    remainder = uri[len("package://") :]
    package, _, relative = remainder.partition("/")

    if packages is None:
        return posixpath.join(working_path, relative) if working_path else relative

    if isinstance(packages, Mapping):
        if package not in packages:
            logger.warning("Unknown package '%s' in '%s'", package, uri)
            return None
        return posixpath.join(packages[package], relative)

    if isinstance(packages, str):
        base = packages.rstrip("/")
        if base.endswith(package):
            return posixpath.join(base, relative)
        return posixpath.join(base, package, relative)

    return posixpath.join(packages(package), relative)


class UnitScaleDetector:
    """Per-session guess of whether mesh coordinates are millimeters

    A mesh whose largest bounding-box dimension exceeds UNIT_LOCK_THRESHOLD locks
    MILLIMETER_SCALE for the rest of the session. Smaller meshes decide nothing.

    Attributes:
        scale: Locked scale factor, None while undecided
    """

    def __init__(self):
        self.scale: float | None = None
        self._lock = threading.Lock()

    def observe(self, max_dimension: float) -> float:
        """Report a mesh size and get the scale to apply to that mesh

        Args:
            max_dimension: Largest bounding-box extent of the raw mesh

        Returns:
            Scale factor for the mesh
        """
        with self._lock:
            if self.scale is not None:
                return self.scale

            if max_dimension > UNIT_LOCK_THRESHOLD:
                self.scale = MILLIMETER_SCALE
                logger.warning("Detected millimeter units (size %.2f), scaling meshes by %s", max_dimension, self.scale)
                return self.scale

            return 1.0

    def reset(self) -> None:
        with self._lock:
            self.scale = None


@dataclass
class LoadedMesh:
    """Decoded mesh with the session scale already applied

    Attributes:
        path: Path as requested
        key: Asset bundle key the path resolved to
        mesh: Decoded geometry
        scale: Unit scale applied to the vertices
    """

    path: str
    key: str
    mesh: trimesh.Trimesh
    scale: float = 1.0


@dataclass
class Placeholder:
    """Stand-in box for a mesh that could not be found or decoded

    Attributes:
        path: Path as requested
        mesh: Small box geometry
        color: RGB color marking the placeholder
    """

    path: str
    mesh: trimesh.Trimesh = field(default_factory=lambda: trimesh.creation.box(extents=(PLACEHOLDER_SIZE,) * 3))
    color: tuple[float, float, float] = PLACEHOLDER_COLOR


class MeshLoader:
    """Load session resolving mesh paths against one asset bundle

    Attributes:
        assets: Mapping of bundle paths to file contents
        index: Lookup index over the bundle keys
        base_dir: Directory of the description inside the bundle
        packages: Package resolution used for package:// paths
        units: Unit scale detector shared by every load in this session
    """

    def __init__(
        self,
        assets: Mapping[str, bytes],
        base_dir: str = "",
        packages: PackageResolver | None = None,
        index: AssetIndex | None = None,
    ):
        self.assets = assets
        self.base_dir = base_dir
        self.packages = packages
        self.index = index if index is not None else build_asset_index(assets, base_dir)
        self.units = UnitScaleDetector()

    def resolve(self, path: str) -> str | None:
        """Bundle key for path, trying the package-resolved path first"""
        if self.packages is not None and path.startswith("package://"):
            resolved = resolve_package_uri(path, self.packages)
            if resolved is not None and (key := resolve_asset(resolved, self.index, self.base_dir)):
                return key
        return resolve_asset(path, self.index, self.base_dir)

    def load(self, path: str) -> LoadedMesh | Placeholder:
        """Resolve and decode one mesh

        Args:
            path: Mesh path as written in the description

        Returns:
            LoadedMesh, or Placeholder if the mesh is missing, unsupported or unreadable
        """
        key = self.resolve(path)
        if key is None:
            logger.warning("Mesh not found, using placeholder: %s", path)
            return Placeholder(path=path)

        extension = key.rsplit(".", 1)[-1].lower() if "." in key else ""
        if extension not in MESH_EXTENSIONS:
            logger.warning("Unsupported mesh format '%s', using placeholder: %s", extension, path)
            return Placeholder(path=path)

        try:
            mesh = trimesh.load(io.BytesIO(self.assets[key]), file_type=extension, force="mesh")
        except Exception:
            logger.exception("Failed to decode mesh, using placeholder: %s", path)
            return Placeholder(path=path)

        if not isinstance(mesh, trimesh.Trimesh) or mesh.is_empty:
            logger.warning("Mesh has no geometry, using placeholder: %s", path)
            return Placeholder(path=path)

        max_dimension = float(np.max(mesh.extents))
        logger.debug("Loaded %s raw size %s", key, mesh.extents)

        scale = self.units.observe(max_dimension)
        if scale != 1.0:
            mesh.apply_scale(scale)

        return LoadedMesh(path=path, key=key, mesh=mesh, scale=scale)

    def load_many(self, paths: Iterable[str], max_workers: int | None = None) -> dict[str, LoadedMesh | Placeholder]:
        """Load several meshes concurrently

        The unit scale locks on whichever mesh finishes decoding first above the threshold.

        Args:
            paths: Mesh paths as written in the description
            max_workers: Thread pool size, the executor default if None

        Returns:
            Dict mapping each path to its LoadedMesh or Placeholder
        """
        results = {}
        unique_paths = list(dict.fromkeys(paths))

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self.load, path): path for path in unique_paths}

            for future in as_completed(futures):
                results[futures[future]] = future.result()

        return {path: results[path] for path in unique_paths}
