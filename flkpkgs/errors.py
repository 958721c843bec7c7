"""Error kinds raised by the composition engine.

Every error names the component that detected it so the CLI can report
``<component>: <Kind>: <message>``. Nothing here is retried or replaced
with a fallback: a substitute toolchain or lock would silently change
what gets built.
"""


class FlakeError(Exception):
    component = "flake"

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigError(FlakeError):
    component = "config"


class OverlayConflict(FlakeError):
    """An overlay is malformed (not merely overriding a name)."""

    component = "overlay"


class ToolchainNotFound(FlakeError):
    component = "toolchain"

    def __init__(self, channel, system):
        super().__init__(f"no toolchain for channel {channel} on {system}")
        self.channel = channel
        self.system = system


class SystemMismatch(FlakeError):
    """A value resolved for one system was handed to another."""

    component = "toolchain"


class LockFileInvalid(FlakeError):
    component = "package"


class NoOutputArtifact(FlakeError):
    component = "app"


class OutputNotFound(FlakeError):
    component = "app"

    def __init__(self, name: str, available):
        listed = ", ".join(sorted(available)) or "none"
        super().__init__(f"no output named {name!r} (declared: {listed})")
        self.name = name


class ToolUnavailable(FlakeError):
    component = "shell"


class RealizationError(FlakeError):
    component = "runtime"
