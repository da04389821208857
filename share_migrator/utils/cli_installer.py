import platform
import shutil
from dataclasses import dataclass, field
from typing import Dict, Literal, Optional

from ..exceptions import ToolNotFoundError

# Registry of the external command line tools the migrator shells out to.


@dataclass
class Tool:
    name: str
    windows_only: bool = False
    installers: Dict[str, str] = field(default_factory=dict)


TOOL_REGISTRY: Dict[str, Tool] = {}


def register_tool(tool: Tool) -> None:
    """Register a CLI tool in the global registry."""
    TOOL_REGISTRY[tool.name] = tool


def detect_installer() -> Optional[Literal["brew", "apt", "winget", "choco"]]:
    """Detect the system's package manager."""
    system = platform.system()
    if system == "Darwin":
        if shutil.which("brew"):
            return "brew"
    elif system == "Linux":
        if shutil.which("apt"):
            return "apt"
    elif system == "Windows":
        if shutil.which("winget"):
            return "winget"
        if shutil.which("choco"):
            return "choco"
    return None


def install_hint(name: str) -> str:
    """Return an install command for the tool on this system, if one is known."""
    tool = TOOL_REGISTRY.get(name)
    if tool is None:
        return f"Install '{name}' manually"
    if tool.windows_only and platform.system() != "Windows":
        return f"'{name}' is only available on Windows"
    installer = detect_installer()
    if installer and installer in tool.installers:
        return tool.installers[installer]
    return f"Install '{name}' manually and add it to PATH"


def ensure_tool(name: str, executable: Optional[str] = None) -> str:
    """
    Ensure the given CLI tool is available.

    Args:
        name: Registered tool name
        executable: Explicit executable path overriding the tool name

    Returns:
        The resolved executable path

    Raises:
        ToolNotFoundError: If the tool cannot be found
    """
    if name not in TOOL_REGISTRY:
        raise ValueError(f"Tool '{name}' is not registered in TOOL_REGISTRY.")
    resolved = shutil.which(executable or name)
    if resolved is None:
        raise ToolNotFoundError(
            f"'{executable or name}' was not found",
            tool=name,
            recovery_suggestion=install_hint(name),
        )
    return resolved


# Pre-register core tools
register_tool(
    Tool(
        name="azcopy",
        installers={
            "brew": "brew install azcopy",
            "apt": "sudo apt-get update && sudo apt-get install -y azcopy",
            "winget": "winget install Microsoft.Azure.AZCopy.10",
            "choco": "choco install azcopy10 -y",
        },
    )
)

register_tool(Tool(name="icacls", windows_only=True))

register_tool(Tool(name="takeown", windows_only=True))
