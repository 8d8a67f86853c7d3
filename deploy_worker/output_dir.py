"""
Locate the static build output directory of a JavaScript project.

The build script in package.json decides where the framework writes its
output. Next.js is only accepted when configured for static export.
"""

import json
import logging
from pathlib import Path

from deploy_common.errors import UnsupportedProject

logger = logging.getLogger(__name__)

NEXT_CONFIG_FILES = ("next.config.js", "next.config.mjs")


def _is_next_static_export(project_dir: Path) -> bool:
    for name in NEXT_CONFIG_FILES:
        config = project_dir / name
        if config.exists():
            try:
                content = config.read_text()
            except OSError as e:
                logger.warning(f"Could not read {name}: {e}")
                return False
            return "output" in content and "export" in content
    return False


def detect_output_dir(project_dir: Path) -> Path:
    """
    Determine where the build will place its static files.

    Args:
        project_dir: Root of the checked-out project

    Returns:
        Expected output directory (it does not exist until the build has run)

    Raises:
        UnsupportedProject: If package.json is missing or unreadable, or the
            project is a Next.js server build
    """
    package_json = project_dir / "package.json"
    if not package_json.exists():
        raise UnsupportedProject("package.json not found in project directory.")

    try:
        manifest = json.loads(package_json.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise UnsupportedProject(f"Could not parse package.json: {e}") from e

    scripts = manifest.get("scripts") if isinstance(manifest, dict) else None
    build_script = ""
    if isinstance(scripts, dict):
        build_script = str(scripts.get("build") or "")

    if "next build" in build_script:
        if _is_next_static_export(project_dir):
            logger.info("Detected Next.js static export. Using 'out' directory.")
            return project_dir / "out"
        raise UnsupportedProject(
            "Unsupported build type: only static sites can be deployed. "
            "Add 'output: \"export\"' to next.config.js to deploy this Next.js project."
        )
    if "vite build" in build_script:
        return project_dir / "dist"
    if "react-scripts build" in build_script:
        return project_dir / "build"

    logger.warning(
        f"Could not determine build type from script {build_script!r}. "
        "Falling back to 'build' folder."
    )
    return project_dir / "build"
