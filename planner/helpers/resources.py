from functools import cache
from pathlib import Path


@cache  # Cache results in memory as resources are not expected to change
def resources_dir(folder: str) -> str:
    """
    Get the absolute path to a folder of the package resources.

    Resolved from the package location, so it does not depend on the working directory.
    """
    return str((Path(__file__).parent.parent / "resources" / folder).resolve())
