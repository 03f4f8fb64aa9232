"""User declaration loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES, MAX_SPECS_PER_CYCLE
from .models import UserSpec

logger = logging.getLogger(__name__)

SPEC_SUFFIXES = (".yaml", ".yml")
SPEC_KIND = "DirectoryUser"


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


def discover_specs(specs_dir: Path) -> dict[str, Path]:
    """Find declaration files in a directory.

    Args:
        specs_dir: Directory containing ``*.yaml`` / ``*.yml`` files.

    Returns:
        Mapping of spec name (file stem) to path, sorted by name.

    Raises:
        SpecLoadError: If the directory is missing, holds too many specs, or
            two files share a stem.
    """
    if not specs_dir.is_dir():
        raise SpecLoadError(f"Specs directory not found: {specs_dir}")

    found: dict[str, Path] = {}
    for path in sorted(specs_dir.iterdir()):
        if not path.is_file() or path.suffix not in SPEC_SUFFIXES:
            continue
        if path.stem in found:
            raise SpecLoadError(f"Duplicate spec name '{path.stem}': {found[path.stem]} and {path}")
        found[path.stem] = path

    if len(found) > MAX_SPECS_PER_CYCLE:
        raise SpecLoadError(
            f"Found {len(found)} specs in {specs_dir}, exceeding limit of {MAX_SPECS_PER_CYCLE}"
        )
    return found


def load_spec(spec_path: Path) -> UserSpec:
    """Load and validate a user declaration from YAML.

    Both a flat mapping and the wrapped form
    (``apiVersion`` / ``kind`` / ``metadata`` / ``spec``) are accepted.

    Args:
        spec_path: Path to the YAML file.

    Returns:
        Validated declaration.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = spec_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {spec_path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {spec_path}"
        )

    try:
        content = spec_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {spec_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {spec_path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        kind = raw_data.get("kind")
        if kind is not None and kind != SPEC_KIND:
            raise SpecLoadError(f"Unsupported kind '{kind}' in {spec_path}, expected {SPEC_KIND}")
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {spec_path}")
    else:
        spec_data = raw_data

    try:
        spec = UserSpec.model_validate(spec_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {spec_path}:\n{error_list}") from e

    logger.info("Loaded spec for user '%s' from %s", spec.username, spec_path)
    return spec
